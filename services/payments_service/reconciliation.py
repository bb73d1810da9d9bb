"""Payment notification reconciliation.

A notification only carries an id; the payment itself is always re-read
from MercadoPago. The order is then brought in line with the payment, and
the first delivery that moves an order to ``paid`` fires the side effects
(stock, invoice, email). MercadoPago retries and duplicates notifications,
so two guards keep those side effects single:

- an ``asyncio.Lock`` per correlation reference inside this process
- a unique ``payment_transitions`` row per (order, status) across processes
"""

import asyncio
import weakref
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from libs.common.logging import get_logger
from libs.common.order_utils import (
    PAYMENT_LOOKUP_FIELDS,
    OrderStatus,
    find_order,
    map_provider_status,
    normalize_status,
)
from libs.common.service_client import (
    generate_invoice_for_order,
    send_order_confirmation_email,
)
from libs.common.stock import decrement_stock
from libs.common.strapi import StrapiClient, StrapiError
from services.payments_service.mercadopago_client import (
    MercadoPagoClient,
    MercadoPagoError,
    Payment,
)
from services.payments_service.models import PaymentTransition
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

CALLING_SERVICE = "payments"

_QUERY_TYPE_KEYS = ("type", "topic", "action")
_QUERY_ID_KEYS = ("data.id", "id", "data[id]", "payment_id", "collection_id")

# Entries vanish once no delivery holds or awaits the lock
_order_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
    weakref.WeakValueDictionary()
)


def _order_lock(reference: str) -> asyncio.Lock:
    lock = _order_locks.get(reference)
    if lock is None:
        lock = asyncio.Lock()
        _order_locks[reference] = lock
    return lock


@dataclass
class Notification:
    type: Optional[str]
    resource_id: Optional[str]

    @property
    def is_merchant_order(self) -> bool:
        return bool(self.type) and "merchant_order" in self.type

    @property
    def is_payment(self) -> bool:
        return not self.type or "payment" in self.type


def parse_notification(query: Mapping[str, str], body: Any) -> Notification:
    """Type and id from the query string first, then the JSON body."""
    body = body if isinstance(body, dict) else {}
    data = body.get("data") if isinstance(body.get("data"), dict) else {}

    type_ = next((query[k] for k in _QUERY_TYPE_KEYS if query.get(k)), None)
    type_ = type_ or body.get("type") or body.get("topic") or body.get("action")

    resource_id = next((query[k] for k in _QUERY_ID_KEYS if query.get(k)), None)
    resource_id = resource_id or data.get("id") or body.get("id")

    return Notification(
        type=str(type_) if type_ else None,
        resource_id=str(resource_id) if resource_id else None,
    )


def correlation_reference(payment: Payment) -> Optional[str]:
    meta = payment.metadata
    for value in (
        payment.external_reference,
        meta.get("mpExternalReference"),
        meta.get("orderId"),
        meta.get("orderNumber"),
    ):
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def order_update_payload(payment: Payment, reference: str) -> dict:
    return {
        "orderStatus": map_provider_status(payment.status).value,
        "mpPaymentId": payment.id,
        "mpStatus": payment.status,
        "mpStatusDetail": payment.status_detail,
        "mpMerchantOrderId": payment.merchant_order_id,
        "mpExternalReference": reference,
    }


def confirmation_email_payload(order: dict, payment_id: str, invoice: dict) -> dict:
    return {
        "email": order.get("email"),
        "name": order.get("name"),
        "orderNumber": order.get("orderNumber"),
        "total": order.get("total"),
        "items": order.get("items") or [],
        "phone": order.get("phone"),
        "shippingAddress": order.get("shippingAddress"),
        "mpPaymentId": payment_id,
        "invoiceNumber": invoice.get("invoiceNumber"),
        "invoicePdfUrl": invoice.get("pdfUrl"),
    }


async def claim_transition(
    db: AsyncSession,
    order_document_id: str,
    target_status: str,
    mp_payment_id: Optional[str] = None,
) -> bool:
    """Insert the transition row. False only when another delivery already holds it.

    Any other database failure is logged and answered True: the order is
    already written as paid, so a later delivery would never fire the side
    effects. Within the process the order lock still serializes deliveries.
    """
    db.add(
        PaymentTransition(
            order_document_id=order_document_id,
            target_status=target_status,
            mp_payment_id=mp_payment_id,
        )
    )
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        return False
    except SQLAlchemyError as e:
        logger.error(
            "Could not record paid transition for %s: %s",
            order_document_id,
            e,
            extra={"extra_fields": {"mp_payment_id": mp_payment_id}},
        )
        try:
            await db.rollback()
        except SQLAlchemyError as rollback_error:
            logger.warning("Rollback after failed claim also failed: %s", rollback_error)
    return True


async def run_paid_side_effects(
    strapi: StrapiClient, order: dict, order_ref: str, payment_id: str
) -> None:
    """Stock, then invoice, then email. A failing step is logged and the next one still runs."""
    log_fields = {"order_document_id": order_ref, "mp_payment_id": payment_id}

    try:
        await decrement_stock(strapi, order.get("items") or [])
    except Exception as e:
        logger.error("Stock decrement failed: %s", e, extra={"extra_fields": log_fields})

    invoice: dict = {}
    try:
        invoice = await generate_invoice_for_order(
            order_ref, calling_service=CALLING_SERVICE
        )
    except Exception as e:
        logger.error("Invoice generation failed: %s", e, extra={"extra_fields": log_fields})

    if not order.get("email") or not order.get("orderNumber"):
        logger.warning(
            "Order has no email or number; skipping confirmation",
            extra={"extra_fields": log_fields},
        )
        return
    try:
        await send_order_confirmation_email(
            confirmation_email_payload(order, payment_id, invoice),
            calling_service=CALLING_SERVICE,
        )
    except Exception as e:
        logger.error("Confirmation email failed: %s", e, extra={"extra_fields": log_fields})


async def resolve_payment_id(
    mp: MercadoPagoClient, notification: Notification
) -> Optional[str]:
    if not notification.is_merchant_order:
        return notification.resource_id
    merchant_order = await mp.get_merchant_order(notification.resource_id)
    return merchant_order.pick_payment_id()


async def reconcile(
    notification: Notification,
    *,
    strapi: StrapiClient,
    mp: MercadoPagoClient,
    db: AsyncSession,
) -> str:
    """Apply one notification. Returns a short outcome label; never raises for upstream failures."""
    if not notification.resource_id:
        return "no_id"
    if not (notification.is_payment or notification.is_merchant_order):
        return "ignored_type"
    if not mp.configured:
        logger.error("Webhook received but MP_ACCESS_TOKEN is not set")
        return "not_configured"

    try:
        payment_id = await resolve_payment_id(mp, notification)
        if not payment_id:
            return "no_payment"
        payment = await mp.get_payment(payment_id)
    except MercadoPagoError as e:
        logger.error(
            "Payment lookup failed: %s",
            e.message,
            extra={
                "extra_fields": {
                    "resource_id": notification.resource_id,
                    "status": e.status_code,
                }
            },
        )
        return "payment_fetch_failed"

    reference = correlation_reference(payment)
    if not reference:
        logger.warning("Payment %s carries no reference", payment.id)
        return "no_reference"

    async with _order_lock(reference):
        return await _apply_payment(payment, reference, strapi=strapi, db=db)


async def _apply_payment(
    payment: Payment,
    reference: str,
    *,
    strapi: StrapiClient,
    db: AsyncSession,
) -> str:
    try:
        order = await find_order(strapi, reference, PAYMENT_LOOKUP_FIELDS)
    except StrapiError as e:
        logger.error("Order lookup failed for %s: %s", reference, e.message)
        return "order_lookup_failed"
    if order is None:
        logger.warning("No order matches reference %s", reference)
        return "order_not_found"

    order_ref = order.get("documentId") or str(order.get("id"))
    previous = normalize_status(order.get("orderStatus"))
    update = order_update_payload(payment, reference)

    try:
        await strapi.update("orders", order_ref, update)
    except StrapiError as e:
        logger.error(
            "Order update failed: %s",
            e.message,
            extra={"extra_fields": {"order_document_id": order_ref, "status": e.status_code}},
        )
        return "update_failed"

    logger.info(
        "Order %s: %s -> %s",
        order_ref,
        previous or "?",
        update["orderStatus"],
        extra={"extra_fields": {"mp_payment_id": payment.id, "mp_status": payment.status}},
    )

    paid = OrderStatus.PAID.value
    if previous == paid or update["orderStatus"] != paid:
        return "updated"

    if not await claim_transition(db, order_ref, paid, payment.id):
        logger.info("Paid transition for %s already claimed", order_ref)
        return "already_claimed"

    await run_paid_side_effects(strapi, order, order_ref, payment.id)
    return "paid"
