"""
Store email templates.
"""

from html import escape
from typing import Any, Optional

from libs.common.config import get_settings
from libs.common.currency import format_ars, to_number


def _address_text(shipping_address: Any) -> str:
    if isinstance(shipping_address, dict):
        text = shipping_address.get("text") or shipping_address.get("address")
        if text:
            return str(text)
        return ", ".join(f"{k}: {v}" for k, v in shipping_address.items() if v)
    return str(shipping_address or "")


def order_confirmation_subject(order_number: str) -> str:
    return f"Confirmación de pedido {order_number}"


def render_order_confirmation_html(
    order_number: str,
    name: Optional[str] = None,
    total: Any = 0,
    items: Optional[list[dict]] = None,
    phone: Optional[str] = None,
    shipping_address: Any = None,
    invoice_number: Optional[str] = None,
    invoice_pdf_url: Optional[str] = None,
) -> str:
    """
    Order confirmation body. Every user-supplied value is HTML-escaped.
    """
    store_name = get_settings().STORE_NAME

    items_html = "".join(
        f"<li>{int(to_number(it.get('qty'), 1))} x {escape(str(it.get('title') or 'Item'))}"
        f" - {escape(format_ars(it.get('unit_price', it.get('price', 0))))}</li>"
        for it in (items or [])
        if isinstance(it, dict)
    )

    invoice_block = ""
    if invoice_number or invoice_pdf_url:
        number_line = (
            f"N° <b>{escape(str(invoice_number))}</b><br/>" if invoice_number else ""
        )
        link_line = (
            f'Descarga: <a href="{escape(str(invoice_pdf_url))}">PDF</a>'
            if invoice_pdf_url
            else ""
        )
        invoice_block = f"<h3>Factura</h3><p>{number_line}{link_line}</p>"

    greeting = f", {escape(name)}" if name else ""

    return f"""
<div style="font-family:Arial,sans-serif;line-height:1.5">
  <h2>¡Gracias por tu compra{greeting}!</h2>
  <p>Confirmamos tu pedido <b>{escape(str(order_number))}</b>.</p>

  {invoice_block}

  <h3>Dirección de envío</h3>
  <p>{escape(_address_text(shipping_address) or "-")}</p>

  <h3>Teléfono</h3>
  <p>{escape(phone or "-")}</p>

  <h3>Items</h3>
  <ul>{items_html or "<li>-</li>"}</ul>

  <h3>Total</h3>
  <p><b>{escape(format_ars(total))}</b></p>

  <p style="margin-top:24px;color:#666">
    Si tenés dudas, respondé este email. {escape(store_name)}
  </p>
</div>
"""
