"""
PDF generation utilities using ReportLab.
"""

import io
from datetime import datetime
from typing import Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from libs.common.config import get_settings
from libs.common.currency import format_ars, to_number
from libs.common.datetime_utils import parse_iso, store_now, to_store_tz

DATE_FORMAT = "%d/%m/%Y %H:%M:%S"

DISCLAIMER = (
    "Este comprobante no constituye factura fiscal. "
    "Conservá este documento como constancia de tu compra."
)


def _text(value) -> str:
    # Paragraph parses a small XML dialect; customer data must not break it
    return escape(str(value if value not in (None, "") else "-"))


def delivery_line(order: dict) -> str:
    method = order.get("shippingMethod") or "delivery"
    if method == "pickup":
        point = order.get("pickupPoint")
        where = f" ({point})" if point else ""
        return f"Retiro en sucursal{where} - GRATIS"
    return f"Envío a domicilio - {format_ars(order.get('shippingCost', 0))}"


def receipt_lines(order: dict) -> list[list[str]]:
    """[title, "qty x unit", line total] rows of the receipt body."""
    rows = []
    for item in order.get("items") or []:
        if not isinstance(item, dict):
            continue
        qty = to_number(item.get("qty", item.get("quantity", 1)), 1)
        unit = to_number(
            item.get("unit_price", item.get("unitPrice", item.get("price", 0)))
        )
        qty_text = str(int(qty)) if qty == int(qty) else str(qty)
        rows.append(
            [
                str(item.get("title") or "Producto"),
                f"{qty_text} x {format_ars(unit)}",
                format_ars(qty * unit),
            ]
        )
    return rows


def generate_receipt_pdf(order: dict, issued_at: Optional[datetime] = None) -> bytes:
    """
    Generate the purchase receipt for a paid order.

    ``order`` is a flat order row from the content backend. Dates are printed
    in the store timezone, 24 h clock.

    Returns PDF as bytes for upload or email attachment.
    """
    settings = get_settings()
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=0.7 * inch,
        leftMargin=0.7 * inch,
        topMargin=0.7 * inch,
        bottomMargin=0.7 * inch,
        title=f"Recibo {order.get('orderNumber') or ''}".strip(),
    )

    styles = getSampleStyleSheet()
    elements = []

    title_style = ParagraphStyle(
        "StoreTitle",
        parent=styles["Heading1"],
        fontSize=18,
        spaceAfter=4,
    )
    subtitle_style = ParagraphStyle(
        "StoreSubtitle",
        parent=styles["Normal"],
        fontSize=12,
        textColor=colors.HexColor("#444444"),
        spaceAfter=16,
    )
    heading_style = ParagraphStyle(
        "Section",
        parent=styles["Heading2"],
        fontSize=12,
        spaceBefore=14,
        spaceAfter=6,
    )
    normal_style = styles["Normal"]

    elements.append(Paragraph(_text(settings.STORE_NAME), title_style))
    elements.append(Paragraph("Comprobante / Recibo", subtitle_style))

    order_number = str(order.get("orderNumber") or "").strip() or (
        f"{settings.ORDER_NUMBER_PREFIX}-XXXX"
    )
    created_at = parse_iso(order.get("createdAt"))
    created_local = to_store_tz(created_at) if created_at else store_now()
    issued_local = to_store_tz(issued_at) if issued_at else store_now()

    info_data = [
        ["Pedido:", order_number],
        ["Fecha pedido:", created_local.strftime(DATE_FORMAT)],
        ["Fecha emisión:", issued_local.strftime(DATE_FORMAT)],
        ["Cliente:", str(order.get("name") or "-")],
        ["Email:", str(order.get("email") or "-")],
        ["Tel:", str(order.get("phone") or "-")],
        ["Entrega:", delivery_line(order)],
    ]
    info_table = Table(info_data, colWidths=[1.4 * inch, 5 * inch])
    info_table.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 10),
                ("TEXTCOLOR", (0, 0), (0, -1), colors.HexColor("#64748b")),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
            ]
        )
    )
    elements.append(info_table)

    elements.append(Paragraph("Detalle", heading_style))
    lines = receipt_lines(order)
    if lines:
        detail_table = Table(
            [["Producto", "Cantidad", "Importe"]] + lines,
            colWidths=[3.4 * inch, 1.7 * inch, 1.4 * inch],
        )
        detail_table.setStyle(
            TableStyle(
                [
                    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                    ("FONTSIZE", (0, 0), (-1, -1), 9),
                    ("LINEBELOW", (0, 0), (-1, 0), 0.5, colors.HexColor("#94a3b8")),
                    ("ALIGN", (2, 0), (2, -1), "RIGHT"),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
                ]
            )
        )
        elements.append(detail_table)
    else:
        elements.append(Paragraph("Sin items.", normal_style))

    elements.append(Spacer(1, 14))

    shipping = (
        0 if (order.get("shippingMethod") == "pickup") else order.get("shippingCost", 0)
    )
    totals_data = [
        ["Subtotal:", format_ars(order.get("subtotal", 0))],
        ["Descuento:", f"-{format_ars(order.get('discountTotal', 0))}"],
        ["Envío:", format_ars(shipping)],
        ["TOTAL:", format_ars(order.get("total", 0))],
    ]
    totals_table = Table(totals_data, colWidths=[5.1 * inch, 1.4 * inch])
    totals_table.setStyle(
        TableStyle(
            [
                ("ALIGN", (0, 0), (-1, -1), "RIGHT"),
                ("FONTSIZE", (0, 0), (-1, -2), 10),
                ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
                ("FONTSIZE", (0, -1), (-1, -1), 12),
                ("LINEABOVE", (0, -1), (-1, -1), 0.5, colors.HexColor("#94a3b8")),
            ]
        )
    )
    elements.append(totals_table)

    elements.append(Spacer(1, 24))
    footer_style = ParagraphStyle(
        "Footer",
        parent=normal_style,
        fontSize=8,
        textColor=colors.HexColor("#666666"),
    )
    elements.append(Paragraph(DISCLAIMER, footer_style))

    doc.build(elements)
    buffer.seek(0)
    return buffer.getvalue()
