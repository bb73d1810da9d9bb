"""MercadoPago webhook: notifications in, order reconciliation out."""

import json

from fastapi import APIRouter, Depends, Request
from libs.common.logging import get_logger
from libs.common.strapi import StrapiClient, get_strapi_client
from libs.db.session import get_async_db
from services.payments_service.mercadopago_client import (
    MercadoPagoClient,
    get_mercadopago_client,
)
from services.payments_service.reconciliation import parse_notification, reconcile
from services.payments_service.schemas import WebhookAck
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/payments/mp", tags=["payments"])
logger = get_logger(__name__)


@router.api_route("/webhook", methods=["GET", "POST"], response_model=WebhookAck)
async def mercadopago_webhook(
    request: Request,
    strapi: StrapiClient = Depends(get_strapi_client),
    mp: MercadoPagoClient = Depends(get_mercadopago_client),
    db: AsyncSession = Depends(get_async_db),
):
    """
    MercadoPago notification endpoint (no auth; the payment is re-read from the API).

    Always answers 200 so the provider stops retrying; failures are only logged.
    """
    body = None
    raw = await request.body()
    if raw:
        try:
            body = json.loads(raw.decode("utf-8"))
        except ValueError:
            logger.warning("Webhook body is not JSON; using query only")

    notification = parse_notification(request.query_params, body)
    try:
        outcome = await reconcile(notification, strapi=strapi, mp=mp, db=db)
    except Exception:
        logger.exception("Webhook: fatal error")
        return WebhookAck()

    logger.info(
        "Webhook handled",
        extra={
            "extra_fields": {
                "type": notification.type,
                "resource_id": notification.resource_id,
                "outcome": outcome,
            }
        },
    )
    return WebhookAck()
