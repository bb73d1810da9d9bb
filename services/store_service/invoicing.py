"""Receipt generation for paid orders.

The invoice number is deterministic per order and issue day, so a second
request for the same order finds the existing row instead of creating
another one. Strapi versions disagree on how a media relation is populated
and how it is written, hence the fallbacks below.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Sequence

from libs.common.config import get_settings
from libs.common.currency import to_number
from libs.common.datetime_utils import store_now
from libs.common.errors import InvoiceError
from libs.common.logging import get_logger
from libs.common.order_utils import (
    OrderStatus,
    build_invoice_number,
    normalize_status,
)
from libs.common.pdf import generate_receipt_pdf
from libs.common.strapi import (
    StrapiClient,
    StrapiError,
    pick_document_id,
    pick_media_url,
)

logger = get_logger(__name__)

# Tried in order; only a 400 (unknown populate syntax) moves on to the next.
POPULATE_VARIANTS: tuple[tuple[tuple[str, str], ...], ...] = (
    (("populate[0]", "pdf"),),
    (("populate", "pdf"),),
    (),
)

# How the uploaded file is referenced from the invoice's ``pdf`` field.
MEDIA_REFERENCE_SHAPES: tuple[Callable[[Any], Any], ...] = (
    lambda file_id: file_id,
    lambda file_id: {"connect": [file_id]},
    lambda file_id: {"data": file_id},
)


@dataclass
class InvoiceResult:
    invoice_number: str
    already_exists: bool
    invoice_id: Optional[str] = None
    pdf_url: Optional[str] = None


async def find_with_populate_fallback(
    strapi: StrapiClient,
    collection: str,
    params: Sequence[tuple[str, Any]],
    variants: Sequence[Sequence[tuple[str, str]]] = POPULATE_VARIANTS,
) -> list[dict]:
    """List rows, retrying with simpler populate syntax when the backend rejects it."""
    last_error: Optional[StrapiError] = None
    for variant in variants:
        try:
            return await strapi.find(collection, list(params) + list(variant))
        except StrapiError as e:
            if e.status_code != 400:
                raise
            last_error = e
    if last_error is None:
        raise StrapiError(f"No populate variants to list {collection}", 500)
    raise last_error


async def find_invoice_by_number(strapi: StrapiClient, number: str) -> Optional[dict]:
    rows = await find_with_populate_fallback(
        strapi,
        "invoices",
        [("pagination[pageSize]", "1"), ("filters[number][$eq]", number)],
    )
    return rows[0] if rows else None


async def fetch_order_by_document_id(
    strapi: StrapiClient, document_id: str
) -> Optional[dict]:
    try:
        return await strapi.find_first(
            "orders", {"documentId": document_id}, extra=[("populate", "*")]
        )
    except StrapiError as e:
        raise InvoiceError(
            "No se pudo obtener la orden",
            status_code=e.status_code or 500,
            details=e.details,
        ) from e


async def create_invoice_record(
    strapi: StrapiClient, data: dict, file_id: Any
) -> dict:
    """Create the invoice row, trying each media reference shape until one sticks."""
    failures = []
    last_error: Optional[StrapiError] = None
    for shape in MEDIA_REFERENCE_SHAPES:
        payload = {**data, "pdf": shape(file_id)}
        try:
            return await strapi.create("invoices", payload)
        except StrapiError as e:
            failures.append({"status": e.status_code, "pdf": payload["pdf"]})
            logger.warning(
                "Invoice create rejected, trying next pdf shape",
                extra={"extra_fields": {"status": e.status_code, "number": data["number"]}},
            )
            last_error = e
    raise InvoiceError(
        "Strapi error (create invoice)",
        status_code=500,
        details={"attempts": failures, "last": last_error.details if last_error else None},
    )


async def generate_invoice(
    strapi: StrapiClient,
    order_document_id: str,
    issued_at: Optional[datetime] = None,
) -> InvoiceResult:
    """Create the receipt for a paid order, or return the one already issued today."""
    order = await fetch_order_by_document_id(strapi, order_document_id)
    if order is None:
        raise InvoiceError(
            "Orden no encontrada", status_code=404, details={"orderId": order_document_id}
        )

    status = normalize_status(order.get("orderStatus"))
    if status != OrderStatus.PAID.value:
        raise InvoiceError(
            "La orden no está pagada",
            status_code=409,
            details={"orderStatus": status or None},
        )

    issued_at = issued_at or store_now()
    number = build_invoice_number(order.get("orderNumber"), issued_at)

    try:
        existing = await find_invoice_by_number(strapi, number)
    except StrapiError as e:
        raise InvoiceError(
            "Strapi error (find invoice by number)", status_code=502, details=e.details
        ) from e

    if existing:
        logger.info("Invoice already exists", extra={"extra_fields": {"number": number}})
        return InvoiceResult(
            invoice_number=number,
            already_exists=True,
            invoice_id=pick_document_id(existing) or _str_id(existing),
            pdf_url=strapi.absolute_url(pick_media_url(existing.get("pdf"))),
        )

    pdf_bytes = generate_receipt_pdf(order, issued_at)
    try:
        uploaded = await strapi.upload(f"{number}.pdf", pdf_bytes, "application/pdf")
    except StrapiError as e:
        raise InvoiceError(
            "Strapi error (upload pdf)", status_code=500, details=e.details
        ) from e

    created = await create_invoice_record(
        strapi,
        {
            "number": number,
            "issuedAt": issued_at.isoformat(),
            "total": to_number(order.get("total")),
            "currency": get_settings().CURRENCY,
        },
        uploaded["id"],
    )

    pdf_url = None
    try:
        refetched = await find_invoice_by_number(strapi, number)
        pdf_url = pick_media_url(refetched.get("pdf")) if refetched else None
    except StrapiError as e:
        logger.warning("Invoice re-fetch failed: %s", e.message)

    logger.info(
        "Invoice created",
        extra={"extra_fields": {"number": number, "order_document_id": order_document_id}},
    )
    return InvoiceResult(
        invoice_number=number,
        already_exists=False,
        invoice_id=pick_document_id(created) or _str_id(created),
        pdf_url=strapi.absolute_url(pdf_url or uploaded.get("url")),
    )


def _str_id(row: dict) -> Optional[str]:
    return str(row["id"]) if row.get("id") is not None else None
