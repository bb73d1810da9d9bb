"""Order creation rules: what the storefront may submit and how it is stored."""

import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from libs.auth.models import AuthUser
from libs.common.currency import to_number
from libs.common.order_utils import OrderStatus, shipping_text

ADDRESS_FIELDS = ("street", "number", "city", "province", "postalCode")

# field -> (minimum length, message)
_ADDRESS_RULES = {
    "street": (2, "Falta street"),
    "number": (1, "Falta number"),
    "city": (2, "Falta city"),
    "province": (2, "Falta province"),
    "postalCode": (4, "Falta postalCode"),
}


# Never taken from the client as-is
_SERVER_OWNED = {
    "name",
    "email",
    "phone",
    "total",
    "items",
    "shippingAddress",
    "mpExternalReference",
    "user",
    "orderNumber",
    "orderStatus",
}


class OrderValidationError(Exception):
    def __init__(self, message: str, fields: Optional[dict] = None):
        self.message = message
        self.fields = fields
        super().__init__(message)


@dataclass
class OrderDraft:
    name: str
    email: str
    phone: str
    total: float
    items: list
    shipping_address: dict
    mp_external_reference: str
    user_id: Optional[str] = None
    extra: dict = field(default_factory=dict)

    def to_strapi(self) -> dict:
        # Client extras are kept, normalized fields always win
        data = {
            **self.extra,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "total": self.total,
            "items": self.items,
            "shippingAddress": self.shipping_address,
            "mpExternalReference": self.mp_external_reference,
            "orderStatus": OrderStatus.PENDING.value,
        }
        if self.user_id:
            data["user"] = self.user_id
        return data


def _text(value: Any) -> str:
    if isinstance(value, bool) or value is None:
        return ""
    if isinstance(value, (int, float)):
        return str(value)
    return value.strip() if isinstance(value, str) else ""


def unwrap_payload(body: Any) -> dict:
    """Accept ``{"data": {...}}`` or the bare order object."""
    data = body.get("data") if isinstance(body, dict) and "data" in body else body
    if not isinstance(data, dict):
        raise OrderValidationError(
            "Body inválido: se esperaba un objeto con datos de la orden"
        )
    return data


def build_order_draft(body: Any, user: Optional[AuthUser]) -> OrderDraft:
    """Validate a checkout submission. Raises OrderValidationError on the first bad field."""
    data = unwrap_payload(body)

    name = _text(data.get("name"))
    # A logged-in customer always orders under their account email
    email = user.normalized_email if user and user.email else _text(data.get("email")).lower()
    phone = _text(data.get("phone"))

    if len(name) < 2:
        raise OrderValidationError("Nombre inválido", {"name": name})
    if "@" not in email:
        raise OrderValidationError("Email inválido", {"email": email})
    if len(phone) < 6:
        raise OrderValidationError("Teléfono inválido", {"phone": phone})

    raw_address = data.get("shippingAddress")
    raw_address = raw_address if isinstance(raw_address, dict) else {}
    address = {key: _text(raw_address.get(key)) for key in ADDRESS_FIELDS}
    for key, (minimum, message) in _ADDRESS_RULES.items():
        if len(address[key]) < minimum:
            raise OrderValidationError(message, {key: address[key]})

    items = data.get("items") if isinstance(data.get("items"), list) else []
    if not items:
        raise OrderValidationError("Tu carrito está vacío (items).")

    total = to_number(data.get("total"), float("nan"))
    if not total > 0:
        raise OrderValidationError("Total inválido", {"total": data.get("total")})

    notes = _text(raw_address.get("notes"))
    address["notes"] = notes or None
    address["text"] = _text(raw_address.get("text")) or shipping_text(address)

    reference = _text(data.get("mpExternalReference")) or uuid.uuid4().hex

    extra = {k: v for k, v in data.items() if k not in _SERVER_OWNED}

    return OrderDraft(
        name=name,
        email=email,
        phone=phone,
        total=total,
        items=items,
        shipping_address=address,
        mp_external_reference=reference,
        user_id=str(user.user_id) if user else None,
        extra=extra,
    )


def summarize_order(order: dict) -> dict:
    return {
        "id": order.get("documentId") or (str(order["id"]) if order.get("id") is not None else None),
        "order_number": order.get("orderNumber"),
        "order_status": order.get("orderStatus"),
        "total": to_number(order.get("total")) if order.get("total") is not None else None,
        "created_at": order.get("createdAt"),
        "shipping_address": order.get("shippingAddress"),
        "items": order.get("items"),
    }
