"""Internal service-to-service endpoints for the store service.

Only reachable with a service-role JWT; the payments webhook calls these
once an order turns paid.
"""

from fastapi import APIRouter, Depends
from libs.auth.dependencies import require_service_role
from libs.auth.models import ServicePrincipal
from libs.common.strapi import StrapiClient, get_strapi_client
from services.store_service.invoicing import generate_invoice
from services.store_service.schemas import (
    InvoiceGenerateRequest,
    InvoiceGenerateResponse,
)

router = APIRouter(prefix="/internal", tags=["internal"])


@router.post("/invoices/generate", response_model=InvoiceGenerateResponse)
async def generate_order_invoice(
    body: InvoiceGenerateRequest,
    _principal: ServicePrincipal = Depends(require_service_role),
    strapi: StrapiClient = Depends(get_strapi_client),
):
    """Issue the receipt for a paid order. Safe to call repeatedly."""
    result = await generate_invoice(strapi, body.order_id.strip())
    return InvoiceGenerateResponse(
        already_exists=result.already_exists,
        invoice_number=result.invoice_number,
        invoice_id=result.invoice_id,
        pdf_url=result.pdf_url,
    )
