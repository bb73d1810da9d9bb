"""
MercadoPago API client.

Provides async methods for:
- Creating checkout preferences
- Fetching a payment
- Fetching a merchant order (to resolve its payments)
"""

from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
from libs.common.config import get_settings
from libs.common.errors import UpstreamError
from libs.common.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Preference:
    """Checkout preference as created by MercadoPago."""

    id: str
    init_point: Optional[str]
    sandbox_init_point: Optional[str]


@dataclass
class Payment:
    """The fields of a MercadoPago payment the storefront reconciles on."""

    id: str
    status: Optional[str]
    status_detail: Optional[str]
    external_reference: Optional[str]
    metadata: dict = field(default_factory=dict)
    merchant_order_id: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict) -> "Payment":
        order = data.get("order") if isinstance(data.get("order"), dict) else {}
        merchant_order_id = order.get("id") or data.get("merchant_order_id")
        return cls(
            id=str(data.get("id")),
            status=data.get("status"),
            status_detail=data.get("status_detail"),
            external_reference=data.get("external_reference"),
            metadata=data.get("metadata") if isinstance(data.get("metadata"), dict) else {},
            merchant_order_id=str(merchant_order_id) if merchant_order_id else None,
        )


@dataclass
class MerchantOrder:
    id: str
    payments: list[dict] = field(default_factory=list)

    def pick_payment_id(self) -> Optional[str]:
        """First approved payment, else the first payment at all."""
        approved = next(
            (p for p in self.payments if p.get("status") == "approved" and p.get("id")),
            None,
        )
        chosen = approved or next((p for p in self.payments if p.get("id")), None)
        return str(chosen["id"]) if chosen else None


class MercadoPagoError(UpstreamError):
    """MercadoPago answered with an error or could not be reached."""


def pick_error_message(payload: Any, fallback: str) -> str:
    if not payload:
        return fallback
    if isinstance(payload, str):
        return payload
    if isinstance(payload, dict):
        if payload.get("message"):
            return str(payload["message"])
        if payload.get("error"):
            return str(payload["error"])
        cause = payload.get("cause")
        if isinstance(cause, list) and cause and isinstance(cause[0], dict):
            if cause[0].get("description"):
                return str(cause[0]["description"])
    return fallback


class MercadoPagoClient:
    """Async client for the MercadoPago checkout and payments APIs."""

    def __init__(
        self,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.access_token = (
            access_token if access_token is not None else settings.MP_ACCESS_TOKEN
        )
        self.base_url = (base_url or settings.MP_API_URL).rstrip("/")
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.access_token)

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: Optional[dict] = None,
        error_message: str = "MercadoPago request failed",
    ) -> dict:
        """Make an async request to the MercadoPago API."""
        url = f"{self.base_url}{endpoint}"
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(
                timeout=30.0, transport=self._transport
            ) as client:
                response = await client.request(
                    method=method, url=url, headers=headers, json=json_data
                )
        except httpx.HTTPError as e:
            logger.error("MercadoPago unreachable: %s", e)
            raise MercadoPagoError("Error conectando con MercadoPago", None) from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.is_success:
            message = pick_error_message(data, error_message)
            logger.error(
                "MercadoPago API error: %s - %s", response.status_code, message
            )
            raise MercadoPagoError(message, response.status_code, data)

        return data if isinstance(data, dict) else {}

    async def create_preference(self, body: dict) -> Preference:
        data = await self._request(
            "POST",
            "/checkout/preferences",
            json_data=body,
            error_message="MercadoPago rechazó la preferencia",
        )
        return Preference(
            id=str(data.get("id")),
            init_point=data.get("init_point"),
            sandbox_init_point=data.get("sandbox_init_point"),
        )

    async def get_payment(self, payment_id: str) -> Payment:
        data = await self._request(
            "GET", f"/v1/payments/{payment_id}", error_message="Payment fetch failed"
        )
        return Payment.from_api(data)

    async def get_merchant_order(self, merchant_order_id: str) -> MerchantOrder:
        data = await self._request(
            "GET",
            f"/merchant_orders/{merchant_order_id}",
            error_message="Merchant order fetch failed",
        )
        payments = data.get("payments")
        return MerchantOrder(
            id=str(data.get("id", merchant_order_id)),
            payments=[p for p in payments if isinstance(p, dict)]
            if isinstance(payments, list)
            else [],
        )


def get_mercadopago_client() -> MercadoPagoClient:
    """Get a MercadoPagoClient bound to the configured access token."""
    return MercadoPagoClient()
