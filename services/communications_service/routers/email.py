"""Transactional email endpoints (service-to-service)."""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from libs.auth.dependencies import require_service_role
from libs.auth.models import ServicePrincipal
from libs.common.config import get_settings
from libs.common.emails.client import (
    Attachment,
    EmailProviderError,
    ResendClient,
    get_email_client,
)
from libs.common.emails.store import (
    order_confirmation_subject,
    render_order_confirmation_html,
)
from libs.common.logging import get_logger
from services.communications_service.attachments import (
    AttachmentError,
    PdfFetcher,
    get_pdf_fetcher,
    safe_filename,
)
from services.communications_service.dedupe import RecentSends, get_recent_sends
from services.communications_service.schemas import OrderConfirmationRequest

router = APIRouter(prefix="/email", tags=["email"])
logger = get_logger(__name__)


@router.post("/order-confirmation")
async def send_order_confirmation(
    body: OrderConfirmationRequest,
    _principal: ServicePrincipal = Depends(require_service_role),
    client: ResendClient = Depends(get_email_client),
    recent: RecentSends = Depends(get_recent_sends),
    fetcher: PdfFetcher = Depends(get_pdf_fetcher),
):
    """Mail the order confirmation, with the invoice PDF attached when it can be fetched."""
    settings = get_settings()
    if not client.configured:
        raise HTTPException(status_code=500, detail="Falta RESEND_API_KEY")
    if not settings.EMAIL_FROM:
        raise HTTPException(status_code=500, detail="Falta EMAIL_FROM")
    if not body.email or not body.order_number:
        raise HTTPException(status_code=400, detail="Faltan email u orderNumber")

    key = body.idempotency_key
    to = settings.TEST_EMAIL_TO or body.email

    if recent.check_and_mark(key):
        logger.info("Confirmation deduped", extra={"extra_fields": {"key": key}})
        return {"ok": True, "deduped": True, "to": to}

    html = render_order_confirmation_html(
        body.order_number,
        name=body.name,
        total=body.total,
        items=body.items,
        phone=body.phone,
        shipping_address=body.shipping_address,
        invoice_number=body.invoice_number,
        invoice_pdf_url=body.invoice_pdf_url,
    )

    attachments = None
    if body.invoice_pdf_url:
        try:
            content = await fetcher.fetch_base64(body.invoice_pdf_url)
            attachments = [
                Attachment(
                    filename=safe_filename(body.invoice_filename or body.invoice_number),
                    content=content,
                )
            ]
        except AttachmentError as e:
            # The body still links to the PDF
            logger.warning("Sending without attachment: %s", e)

    logger.info(
        "Sending order confirmation",
        extra={
            "extra_fields": {
                "order_number": body.order_number,
                "to": to,
                "forced_recipient": bool(settings.TEST_EMAIL_TO),
                "key": key,
                "attached_pdf": bool(attachments),
            }
        },
    )

    try:
        await client.send(
            from_email=settings.EMAIL_FROM,
            to_email=to,
            subject=order_confirmation_subject(body.order_number),
            html_body=html,
            attachments=attachments,
            idempotency_key=key,
        )
    except EmailProviderError as e:
        if e.rate_limited:
            return JSONResponse(
                status_code=202,
                content={"ok": False, "error": e.message, "rateLimited": True, "to": to},
            )
        raise HTTPException(status_code=502, detail=e.message)

    return {
        "ok": True,
        "to": to,
        "idempotencyKey": key,
        "attachedPdf": bool(attachments),
    }
