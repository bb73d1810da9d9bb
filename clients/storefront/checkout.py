"""Storefront checkout: form -> order -> payment redirect -> status polling.

The flow talks to the public gateway only. After the shopper comes back from
MercadoPago the order status is polled until the webhook has marked it paid
(or failed), giving up after a fixed wall-clock budget.
"""

import asyncio
import enum
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx
from libs.cart.storage import JsonFileCartStorage
from libs.cart.store import CartStore
from libs.common.currency import round_half_up, to_number
from libs.common.logging import get_logger

logger = get_logger(__name__)

POLL_INTERVAL_SECONDS = 2.5
POLL_TIMEOUT_SECONDS = 30.0


class CheckoutPhase(str, enum.Enum):
    FORM = "form"
    CHECKING = "checking"
    PAID = "paid"
    FAILED = "failed"
    TIMEOUT = "timeout"


class CheckoutError(Exception):
    """Checkout could not start; ``message`` is meant for the shopper."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


def pick_error_message(payload: Any, fallback: str) -> str:
    if not isinstance(payload, dict):
        return fallback
    if isinstance(payload.get("error"), str):
        return payload["error"]
    nested = payload.get("mp") or payload.get("error") or payload
    if isinstance(nested, dict):
        for key in ("message", "error"):
            if isinstance(nested.get(key), str):
                return nested[key]
    return fallback


@dataclass
class CheckoutForm:
    name: str
    email: str
    phone: str
    street: str
    number: str
    city: str
    province: str
    postal_code: str
    notes: str = ""
    coupon: str = ""

    def __post_init__(self):
        for f in self.__dataclass_fields__:
            setattr(self, f, str(getattr(self, f) or "").strip())

    def validation_error(self, cart: CartStore) -> Optional[str]:
        """First problem with the form, in the order the fields are shown."""
        if not cart.items:
            return "Tu carrito está vacío."
        checks = (
            (len(self.name) >= 2, "Ingresá un nombre válido."),
            ("@" in self.email, "Ingresá un email válido."),
            (len(self.phone) >= 6, "Ingresá un teléfono válido."),
            (len(self.street) >= 2, "Ingresá la calle."),
            (len(self.number) >= 1, "Ingresá el número/altura."),
            (len(self.city) >= 2, "Ingresá la ciudad."),
            (len(self.province) >= 2, "Ingresá la provincia."),
            (len(self.postal_code) >= 4, "Ingresá un código postal válido."),
        )
        return next((message for ok, message in checks if not ok), None)

    def shipping_address(self) -> dict:
        return {
            "street": self.street,
            "number": self.number,
            "city": self.city,
            "province": self.province,
            "postalCode": self.postal_code,
            "notes": self.notes or None,
            "text": (
                f"{self.street} {self.number}, {self.city}, "
                f"{self.province} ({self.postal_code})"
            ),
        }


class CheckoutFlow:
    """Drives one checkout against the gateway (``api_url`` ends before ``/api/v1``)."""

    def __init__(
        self,
        api_url: str,
        storage: JsonFileCartStorage,
        *,
        session_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        poll_timeout: float = POLL_TIMEOUT_SECONDS,
    ):
        self.api_url = api_url.rstrip("/")
        self.storage = storage
        self.session_token = session_token
        self._transport = transport
        self._clock = clock
        self._sleep = sleep
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout

        self.phase = CheckoutPhase.FORM
        self.order_id: Optional[str] = None
        self.redirect_status: Optional[str] = None
        self.failure_reason: Optional[str] = None

    def _client(self) -> httpx.AsyncClient:
        headers = {}
        if self.session_token:
            headers["Authorization"] = f"Bearer {self.session_token}"
        return httpx.AsyncClient(
            base_url=self.api_url,
            headers=headers,
            timeout=30.0,
            transport=self._transport,
        )

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    async def fetch_final_quote(
        self, client: httpx.AsyncClient, cart: CartStore, coupon: str
    ) -> dict:
        """Server quote; the local subtotal when the quote cannot be had."""
        fallback = round_half_up(cart.total_price())
        fallback_quote = {
            "subtotal": fallback,
            "discountTotal": 0,
            "total": fallback,
            "appliedPromotions": [],
        }
        items = [{"id": i.id, "qty": max(1, i.qty)} for i in cart.items if i.id > 0]
        if not items:
            return fallback_quote
        try:
            response = await client.post(
                "/api/v1/store/promotions/quote",
                json={"items": items, "coupon": coupon, "shipping": 0},
            )
        except httpx.HTTPError as e:
            logger.warning("Quote request failed, using local subtotal: %s", e)
            return fallback_quote
        data = self._json(response)
        if not response.is_success or not isinstance(data, dict):
            return fallback_quote
        subtotal = round_half_up(to_number(data.get("subtotal"), fallback))
        discount = round_half_up(to_number(data.get("discountTotal")))
        total = round_half_up(to_number(data.get("total"))) or max(0, subtotal - discount)
        return {
            "subtotal": subtotal,
            "discountTotal": discount,
            "total": total,
            "appliedPromotions": data.get("appliedPromotions") or [],
        }

    async def submit(self, form: CheckoutForm) -> str:
        """Create the order and its preference; returns the URL to send the shopper to.

        The phase only moves to ``checking`` once a checkout URL is in hand.
        """
        cart = self.storage.load()
        error = form.validation_error(cart)
        if error:
            raise CheckoutError(error)

        try:
            async with self._client() as client:
                quote = await self.fetch_final_quote(client, cart, form.coupon)
                reference = uuid.uuid4().hex

                created_res = await client.post(
                    "/api/v1/store/orders",
                    json={
                        "name": form.name,
                        "email": form.email,
                        "phone": form.phone,
                        "shippingAddress": form.shipping_address(),
                        "subtotal": quote["subtotal"],
                        "discountTotal": quote["discountTotal"],
                        "appliedPromotions": quote["appliedPromotions"],
                        "coupon": form.coupon or None,
                        "total": quote["total"],
                        "mpExternalReference": reference,
                        "items": cart.order_lines(),
                    },
                )
                created = self._json(created_res)
                if not created_res.is_success:
                    raise CheckoutError(
                        pick_error_message(created, "No se pudo crear la orden")
                    )
                created = created if isinstance(created, dict) else {}
                order_id = created.get("orderDocumentId") or created.get("orderId")
                if not order_id:
                    raise CheckoutError(
                        "No se recibió orderDocumentId/orderId desde la creación de la orden"
                    )

                pref_res = await client.post(
                    "/api/v1/payments/mp/create-preference",
                    json={
                        "orderId": order_id,
                        "mpExternalReference": created.get("mpExternalReference") or reference,
                    },
                )
                pref = self._json(pref_res)
                if not pref_res.is_success:
                    raise CheckoutError(
                        pick_error_message(pref, "No se pudo crear la preferencia MP")
                    )
        except httpx.HTTPError as e:
            logger.error("Checkout request failed: %s", e)
            raise CheckoutError("Error iniciando el pago") from e

        pref = pref if isinstance(pref, dict) else {}
        checkout_url = pref.get("sandbox_init_point") or pref.get("init_point")
        if not checkout_url:
            raise CheckoutError("MercadoPago no devolvió init_point / sandbox_init_point.")

        self.order_id = order_id
        self.phase = CheckoutPhase.CHECKING
        logger.info("Checkout started for order %s", order_id)
        return checkout_url

    # ------------------------------------------------------------------
    # Return and polling
    # ------------------------------------------------------------------

    def resume(self, status: Optional[str], order_id: Optional[str]) -> None:
        """Back from the payment page with ``?status=..&orderId=..``."""
        if status and order_id:
            self.order_id = order_id
            self.redirect_status = status
            self.phase = CheckoutPhase.CHECKING

    async def fetch_status(self, client: httpx.AsyncClient) -> Optional[str]:
        response = await client.get(f"/api/v1/store/orders/{self.order_id}/status")
        data = self._json(response)
        if not response.is_success or not isinstance(data, dict):
            return None
        return data.get("orderStatus")

    async def poll(self) -> CheckoutPhase:
        """Poll until paid, failed or out of time. Request errors only count against the clock."""
        if self.phase != CheckoutPhase.CHECKING or not self.order_id:
            return self.phase

        started = self._clock()
        async with self._client() as client:
            while True:
                status = None
                try:
                    status = await self.fetch_status(client)
                except httpx.HTTPError as e:
                    logger.debug("Status poll failed: %s", e)

                if status == "paid":
                    self.storage.clear()
                    self.phase = CheckoutPhase.PAID
                    return self.phase
                if status in ("failed", "cancelled"):
                    self.failure_reason = status
                    self.phase = CheckoutPhase.FAILED
                    return self.phase
                if self._clock() - started > self.poll_timeout:
                    self.phase = CheckoutPhase.TIMEOUT
                    return self.phase

                await self._sleep(self.poll_interval)
