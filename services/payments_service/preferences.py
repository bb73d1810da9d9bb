"""Checkout preference body for a stored order."""

from typing import Any, Optional
from urllib.parse import quote

from libs.common.config import get_settings
from libs.common.currency import round_half_up, to_number

DEFAULT_ITEM_TITLE = "Producto"


def normalize_order_lines(items: list, currency: str) -> list[dict]:
    """Order lines in provider shape; lines without a positive price or quantity are dropped."""
    lines = []
    for item in items:
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or DEFAULT_ITEM_TITLE).strip() or DEFAULT_ITEM_TITLE
        qty = to_number(item.get("qty", item.get("quantity", 1)), 1.0)
        quantity = max(1, int(qty))
        unit_price = to_number(item.get("unit_price", item.get("price", 0)))
        if unit_price > 0:
            lines.append(
                {
                    "title": title,
                    "quantity": quantity,
                    "unit_price": unit_price,
                    "currency_id": currency,
                }
            )
    return lines


def clean_metadata(values: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v not in (None, "")}


def back_urls(site_url: str, order_id: str) -> dict[str, str]:
    ref = quote(order_id, safe="")
    return {
        status: f"{site_url}/gracias?status={status}&orderId={ref}"
        for status in ("success", "failure", "pending")
    }


def build_preference_body(
    *,
    order_id: str,
    order_number: Optional[str],
    external_reference: str,
    total: float,
) -> dict:
    """One charge line for the whole order; the provider never sees per-item prices."""
    settings = get_settings()
    site_url = settings.SITE_URL.rstrip("/")
    amount = round_half_up(total)
    title = f"Pedido {order_number}" if order_number else f"Compra {settings.STORE_NAME}"
    return {
        "items": [
            {
                "title": title,
                "quantity": 1,
                "unit_price": amount,
                "currency_id": settings.CURRENCY,
            }
        ],
        "external_reference": external_reference,
        "back_urls": back_urls(site_url, order_id),
        "auto_return": "approved",
        "notification_url": f"{site_url}/api/v1/payments/mp/webhook",
        "metadata": clean_metadata(
            {
                "orderId": order_id,
                "orderNumber": order_number,
                "mpExternalReference": external_reference,
                "total": str(amount),
            }
        ),
    }
