"""Order helpers shared across services.

Order status is a plain string on the Strapi order (``orderStatus``); the
enum here is the one vocabulary every service compares against.
"""

import enum
import re
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import store_now
from libs.common.strapi import pick_relation

if TYPE_CHECKING:
    from libs.auth.models import AuthUser
    from libs.common.strapi import StrapiClient


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


_PROVIDER_STATUS_MAP = {
    "approved": OrderStatus.PAID,
    "rejected": OrderStatus.FAILED,
    "cancelled": OrderStatus.CANCELLED,
}


def map_provider_status(mp_status: Optional[str]) -> OrderStatus:
    """MercadoPago payment status -> order status. Unknown values stay pending."""
    return _PROVIDER_STATUS_MAP.get(mp_status or "", OrderStatus.PENDING)


def normalize_status(value: Any) -> str:
    return str(value or "").strip().lower()


def is_numeric_id(value: str) -> bool:
    return bool(re.fullmatch(r"\d+", value or ""))


def make_order_number(numeric_id: Any) -> str:
    """``AMG-0033`` from Strapi's numeric id."""
    prefix = get_settings().ORDER_NUMBER_PREFIX
    raw = str(numeric_id).strip()
    padded = str(int(raw)).zfill(4) if is_numeric_id(raw) else raw.zfill(4)
    return f"{prefix}-{padded}"


def build_invoice_number(
    order_number: Optional[str], issued_at: Optional[datetime] = None
) -> str:
    """``RC_YYYYMMDD_AMG-0172``: deterministic for an order on a given day."""
    prefix = get_settings().ORDER_NUMBER_PREFIX
    day = (issued_at or store_now()).strftime("%Y%m%d")
    base = re.sub(r"\s+", "", order_number or "") or f"{prefix}-XXXX"
    return f"RC_{day}_{base}"


def extract_order_number(invoice_number: Any) -> Optional[str]:
    """Pull ``AMG-0001`` out of ``RC_20260131_AMG-0001`` (or ``RC-...-AMG-0001``)."""
    prefix = re.escape(get_settings().ORDER_NUMBER_PREFIX)
    match = re.search(rf"({prefix}-\d{{4,}})", str(invoice_number or ""), re.IGNORECASE)
    return match.group(1).upper() if match else None


def shipping_text(address: dict) -> str:
    return (
        f"{address.get('street', '')} {address.get('number', '')}, "
        f"{address.get('city', '')}, {address.get('province', '')} "
        f"({address.get('postalCode', '')})"
    )


# ---------------------------------------------------------------------------
# Lookup and ownership (content backend)
# ---------------------------------------------------------------------------

READ_LOOKUP_FIELDS = ("documentId", "orderNumber", "id")
PAYMENT_LOOKUP_FIELDS = ("mpExternalReference", "documentId", "orderNumber", "id")


async def find_order(
    strapi: "StrapiClient",
    ref: str,
    fields: tuple[str, ...] = READ_LOOKUP_FIELDS,
) -> Optional[dict]:
    """First order whose field equals ``ref``, trying ``fields`` in order.

    ``id`` is only tried for numeric refs. Raises StrapiError when a lookup fails.
    """
    ref = str(ref or "").strip()
    if not ref:
        return None
    for field in fields:
        if field == "id" and not is_numeric_id(ref):
            continue
        order = await strapi.find_first(
            "orders", {field: ref}, extra=[("populate", "*")]
        )
        if order:
            return order
    return None


def order_owner_id(order: dict) -> Optional[str]:
    user = pick_relation(order.get("user"))
    if user and user.get("id") is not None:
        return str(user["id"])
    return None


def user_owns_order(user: "AuthUser", order: dict) -> bool:
    """Owner by the user relation; orders without one fall back to email."""
    owner_id = order_owner_id(order)
    if owner_id is not None:
        return owner_id == str(user.user_id)
    order_email = str(order.get("email") or "").strip().lower()
    return bool(order_email) and order_email == user.normalized_email
