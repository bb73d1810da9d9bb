"""Customer-facing invoice endpoints: history and PDF download."""

import re
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.common.currency import to_number
from libs.common.logging import get_logger
from libs.common.order_utils import extract_order_number, order_owner_id
from libs.common.strapi import (
    StrapiClient,
    StrapiError,
    get_strapi_client,
    pick_document_id,
    pick_media_url,
    pick_relation,
)
from services.store_service.invoicing import (
    POPULATE_VARIANTS,
    find_with_populate_fallback,
)
from services.store_service.schemas import InvoiceSummary
from starlette.background import BackgroundTask

logger = get_logger(__name__)

router = APIRouter(prefix="/invoices", tags=["store"])

LIST_PAGE_SIZE = 200

# The last variant has no populate, so it cannot sort on issuedAt either.
_LIST_VARIANTS = (
    (("sort[0]", "issuedAt:desc"), ("populate[0]", "pdf")),
    (("sort[0]", "issuedAt:desc"), ("populate", "pdf")),
    (("sort[0]", "createdAt:desc"),),
)

_DOWNLOAD_VARIANTS = (
    (("populate", "pdf"), ("populate", "order"), ("populate", "order.user")),
) + POPULATE_VARIANTS


def invoice_filename(invoice_number: Optional[str], invoice_id: str) -> str:
    """``RC_20260131_AMG-0155`` -> ``RC_20260131_AMG_0155.pdf``."""
    base = str(invoice_number or "").strip()
    base = re.sub(r"\s+", "_", base)
    base = re.sub(r"[^\w-]+", "_", base)
    base = re.sub(r"_+", "_", base).strip("_")
    base = base.replace("-", "_") if base else f"RC_{invoice_id}"
    return base if base.lower().endswith(".pdf") else f"{base}.pdf"


async def my_order_numbers(strapi: StrapiClient, user: AuthUser) -> set[str]:
    """Order numbers of the user: by relation first, by email when that finds nothing."""
    base = [
        ("pagination[pageSize]", str(LIST_PAGE_SIZE)),
        ("fields[0]", "orderNumber"),
    ]
    rows: list[dict] = []
    try:
        rows = await strapi.find(
            "orders", base + [("filters[user][id][$eq]", str(user.user_id))]
        )
    except StrapiError as e:
        if not user.normalized_email:
            raise
        logger.warning("Order numbers by user relation failed, trying email: %s", e.message)
    if not rows and user.normalized_email:
        rows = await strapi.find(
            "orders", base + [("filters[email][$eq]", user.normalized_email)]
        )
    return {
        str(r["orderNumber"]).strip().upper() for r in rows if r.get("orderNumber")
    }


def _matches_user(user: AuthUser, order: dict) -> bool:
    owner_id = order_owner_id(order)
    if owner_id is not None and owner_id == str(user.user_id):
        return True
    email = str(order.get("email") or "").strip().lower()
    return bool(email) and email == user.normalized_email


async def user_owns_invoice(strapi: StrapiClient, user: AuthUser, invoice: dict) -> bool:
    order = pick_relation(invoice.get("order"))
    owner_id = order_owner_id(order) if order else None
    if owner_id is not None:
        return owner_id == str(user.user_id)

    order_number = extract_order_number(invoice.get("number"))
    if not order_number:
        return False
    linked = await strapi.find_first(
        "orders", {"orderNumber": order_number}, extra=[("populate", "user")]
    )
    return bool(linked) and _matches_user(user, linked)


@router.get("/my")
async def list_my_invoices(
    user: AuthUser = Depends(get_current_user),
    strapi: StrapiClient = Depends(get_strapi_client),
):
    """Invoices whose number embeds one of the customer's order numbers."""
    numbers = await my_order_numbers(strapi, user)
    if not numbers:
        return {"invoices": []}

    rows = await find_with_populate_fallback(
        strapi,
        "invoices",
        [("pagination[pageSize]", str(LIST_PAGE_SIZE))],
        variants=_LIST_VARIANTS,
    )

    currency = get_settings().CURRENCY
    invoices = []
    for row in rows:
        order_number = extract_order_number(row.get("number"))
        if not order_number or order_number not in numbers:
            continue
        summary = InvoiceSummary(
            id=pick_document_id(row) or (str(row["id"]) if row.get("id") is not None else None),
            number=row.get("number"),
            issued_at=row.get("issuedAt") or row.get("createdAt"),
            total=to_number(row.get("total")) if row.get("total") is not None else None,
            currency=row.get("currency") or currency,
            pdf_url=strapi.absolute_url(pick_media_url(row.get("pdf"))),
            order_number=order_number,
        )
        invoices.append(summary.model_dump(by_alias=True))
    return {"invoices": invoices}


@router.get("/{invoice_id}/download")
async def download_invoice(
    invoice_id: str,
    user: AuthUser = Depends(get_current_user),
    strapi: StrapiClient = Depends(get_strapi_client),
):
    """Stream the invoice PDF to its owner as an attachment."""
    invoice_id = invoice_id.strip()
    rows = await find_with_populate_fallback(
        strapi,
        "invoices",
        [("pagination[pageSize]", "1"), ("filters[documentId][$eq]", invoice_id)],
        variants=_DOWNLOAD_VARIANTS,
    )
    if not rows:
        raise HTTPException(status_code=404, detail={"error": "Invoice not found", "id": invoice_id})
    invoice = rows[0]

    if not await user_owns_invoice(strapi, user, invoice):
        raise HTTPException(status_code=403, detail="Prohibido")

    file_url = strapi.absolute_url(pick_media_url(invoice.get("pdf")))
    if not file_url:
        raise HTTPException(status_code=404, detail="Esta invoice no tiene PDF")

    try:
        upstream, close = await strapi.open_file(file_url)
    except httpx.HTTPError as e:
        logger.error("File host unreachable: %s", e)
        raise HTTPException(
            status_code=502, detail="No se pudo conectar al servidor de archivos."
        )

    if not upstream.is_success:
        status = upstream.status_code
        await close()
        raise HTTPException(
            status_code=502,
            detail=f"No se pudo descargar el archivo (status {status}).",
        )

    headers = {
        "Content-Disposition": (
            f'attachment; filename="{invoice_filename(invoice.get("number"), invoice_id)}"'
        ),
        "Cache-Control": "no-store",
    }

    return StreamingResponse(
        upstream.aiter_bytes(),
        media_type=upstream.headers.get("content-type") or "application/pdf",
        headers=headers,
        background=BackgroundTask(close),
    )
