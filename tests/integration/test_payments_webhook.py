"""Integration tests for the MercadoPago webhook and order reconciliation."""

import asyncio
from functools import partial
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from libs.common import service_client
from libs.common.emails.client import get_email_client
from libs.common.strapi import get_strapi_client
from libs.db.session import get_async_db
from services.communications_service.attachments import get_pdf_fetcher
from services.communications_service.dedupe import get_recent_sends
from services.payments_service import reconciliation
from services.payments_service.models import PaymentTransition
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from tests.factories import (
    OrderFactory,
    OrderLineFactory,
    PaymentNotificationFactory,
    ProductFactory,
)

RECONCILIATION = "services.payments_service.reconciliation"


@pytest.fixture
def side_effects():
    """Invoice and email calls to the other services, mocked."""
    with patch(
        f"{RECONCILIATION}.generate_invoice_for_order",
        new_callable=AsyncMock,
        return_value={
            "ok": True,
            "invoiceNumber": "RC_20260131_AMG-0001",
            "pdfUrl": "http://strapi.test/uploads/rc.pdf",
        },
    ) as invoice, patch(
        f"{RECONCILIATION}.send_order_confirmation_email",
        new_callable=AsyncMock,
        return_value={"ok": True},
    ) as email:
        yield invoice, email


def _seed(fake_strapi, fake_mp, mp_status="approved", payment_id="1001", **order_overrides):
    product = fake_strapi.add("products", **ProductFactory.create(stock=5))
    order = fake_strapi.add(
        "orders",
        **OrderFactory.create(
            orderNumber="AMG-0001",
            items=[OrderLineFactory.create(product=product, qty=2)],
            **order_overrides,
        ),
    )
    fake_mp.add_payment(payment_id, mp_status, order["mpExternalReference"], merchant_order_id="77")
    return order, product


async def _notify(payments_client, payment_id="1001"):
    return await payments_client.post(
        "/payments/mp/webhook",
        params={"type": "payment", "data.id": payment_id},
        json=PaymentNotificationFactory.create(payment_id),
    )


# ---------------------------------------------------------------------------
# Approved payments
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_approved_payment_marks_order_paid_and_fires_side_effects(
    payments_client, fake_strapi, fake_mp, side_effects
):
    invoice, email = side_effects
    order, product = _seed(fake_strapi, fake_mp)

    response = await _notify(payments_client)

    assert response.status_code == 200
    assert response.json() == {"ok": True}

    row = fake_strapi.get_row("orders", order["documentId"])
    assert row["orderStatus"] == "paid"
    assert row["mpPaymentId"] == "1001"
    assert row["mpStatus"] == "approved"
    assert row["mpMerchantOrderId"] == "77"
    assert fake_strapi.get_row("products", product["documentId"])["stock"] == 3

    invoice.assert_awaited_once_with(order["documentId"], calling_service="payments")
    email.assert_awaited_once()
    payload = email.await_args.args[0]
    assert payload["email"] == order["email"]
    assert payload["orderNumber"] == "AMG-0001"
    assert payload["invoiceNumber"] == "RC_20260131_AMG-0001"
    assert payload["invoicePdfUrl"] == "http://strapi.test/uploads/rc.pdf"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_duplicate_deliveries_fire_side_effects_once(
    payments_client, fake_strapi, fake_mp, side_effects, db_session
):
    invoice, email = side_effects
    order, product = _seed(fake_strapi, fake_mp)

    responses = await asyncio.gather(*(_notify(payments_client) for _ in range(3)))
    later = await _notify(payments_client)

    assert [r.status_code for r in responses] == [200, 200, 200]
    assert later.status_code == 200
    assert invoice.await_count == 1
    assert email.await_count == 1
    assert fake_strapi.get_row("products", product["documentId"])["stock"] == 3

    claims = await db_session.scalar(select(func.count()).select_from(PaymentTransition))
    assert claims == 1


@pytest.mark.asyncio
@pytest.mark.integration
async def test_transition_claimed_elsewhere_skips_side_effects(
    payments_client, fake_strapi, fake_mp, side_effects, db_session
):
    invoice, email = side_effects
    order, product = _seed(fake_strapi, fake_mp)
    db_session.add(PaymentTransition(order_document_id=order["documentId"], target_status="paid"))
    await db_session.commit()

    response = await _notify(payments_client)

    assert response.status_code == 200
    assert fake_strapi.get_row("orders", order["documentId"])["orderStatus"] == "paid"
    invoice.assert_not_awaited()
    email.assert_not_awaited()
    assert fake_strapi.get_row("products", product["documentId"])["stock"] == 5


@pytest.mark.asyncio
@pytest.mark.integration
async def test_merchant_order_notification_resolves_payment(
    payments_client, fake_strapi, fake_mp, side_effects
):
    invoice, _ = side_effects
    order, _ = _seed(fake_strapi, fake_mp, payment_id="2002")
    fake_mp.merchant_orders["77"] = {
        "id": 77,
        "payments": [{"id": 1999, "status": "rejected"}, {"id": 2002, "status": "approved"}],
    }

    response = await payments_client.post(
        "/payments/mp/webhook", params={"topic": "merchant_order", "id": "77"}
    )

    assert response.status_code == 200
    assert fake_strapi.get_row("orders", order["documentId"])["mpPaymentId"] == "2002"
    invoice.assert_awaited_once()


@pytest.mark.asyncio
@pytest.mark.integration
async def test_order_found_through_metadata(payments_client, fake_strapi, fake_mp, side_effects):
    order, _ = _seed(fake_strapi, fake_mp)
    fake_mp.add_payment("3003", "approved", None, metadata={"orderId": order["documentId"]})

    response = await payments_client.get(
        "/payments/mp/webhook", params={"type": "payment", "data.id": "3003"}
    )

    assert response.status_code == 200
    row = fake_strapi.get_row("orders", order["documentId"])
    assert row["orderStatus"] == "paid"
    assert row["mpExternalReference"] == order["documentId"]


# ---------------------------------------------------------------------------
# Other outcomes
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_rejected_payment_marks_order_failed(
    payments_client, fake_strapi, fake_mp, side_effects
):
    invoice, email = side_effects
    order, product = _seed(fake_strapi, fake_mp, mp_status="rejected")

    await _notify(payments_client)

    assert fake_strapi.get_row("orders", order["documentId"])["orderStatus"] == "failed"
    assert fake_strapi.get_row("products", product["documentId"])["stock"] == 5
    invoice.assert_not_awaited()
    email.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.integration
async def test_already_paid_order_fires_no_side_effects(
    payments_client, fake_strapi, fake_mp, side_effects
):
    invoice, _ = side_effects
    _seed(fake_strapi, fake_mp, orderStatus="paid")

    await _notify(payments_client)

    invoice.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.integration
@pytest.mark.parametrize(
    "params, content",
    [
        ({}, b""),
        ({"type": "payment", "data.id": "404404"}, b""),
        ({"type": "plan", "id": "1"}, b""),
        ({}, b"not json at all"),
    ],
)
async def test_webhook_always_acknowledges(
    payments_client, fake_strapi, side_effects, params, content
):
    invoice, _ = side_effects

    response = await payments_client.post(
        "/payments/mp/webhook", params=params, content=content
    )

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    invoice.assert_not_awaited()
    assert fake_strapi.calls("PUT", "/api/orders") == []


@pytest.mark.asyncio
@pytest.mark.integration
async def test_webhook_acknowledges_when_backend_down(
    payments_client, fake_strapi, fake_mp, side_effects
):
    _seed(fake_strapi, fake_mp)
    fake_strapi.fail_paths["/api/orders"] = 500

    response = await _notify(payments_client)

    assert response.status_code == 200
    side_effects[0].assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.integration
async def test_side_effects_fire_when_claim_cannot_be_recorded(
    payments_client, fake_strapi, fake_mp, side_effects, db_session
):
    invoice, email = side_effects
    order, product = _seed(fake_strapi, fake_mp)
    down = OperationalError("INSERT INTO payment_transitions", {}, Exception("db down"))

    with patch.object(db_session, "commit", new=AsyncMock(side_effect=down)):
        first = await _notify(payments_client)
    second = await _notify(payments_client)

    assert (first.status_code, second.status_code) == (200, 200)
    assert fake_strapi.get_row("orders", order["documentId"])["orderStatus"] == "paid"
    assert fake_strapi.get_row("products", product["documentId"])["stock"] == 3
    invoice.assert_awaited_once()
    email.assert_awaited_once()


@pytest.mark.asyncio
@pytest.mark.integration
async def test_order_locks_are_released(payments_client, fake_strapi, fake_mp, side_effects):
    for n in range(5):
        order = fake_strapi.add("orders", **OrderFactory.create(items=[]))
        fake_mp.add_payment(f"50{n}", "rejected", order["mpExternalReference"])
        await _notify(payments_client, f"50{n}")

    assert len(reconciliation._order_locks) == 0


# ---------------------------------------------------------------------------
# End to end through the store and communications services
# ---------------------------------------------------------------------------


class _ServiceRouter(httpx.AsyncBaseTransport):
    """Sends each internal call to the in-process app registered for its host."""

    def __init__(self, apps: dict):
        self._transports = {
            host: httpx.ASGITransport(app=app) for host, app in apps.items()
        }

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self._transports[request.url.host].handle_async_request(request)


@pytest.fixture
def internal_services(strapi, db_session, email_client, recent_sends, pdf_fetcher):
    """Invoice and email calls reach the real store and communications apps."""
    from services.communications_service.app.main import app as communications_app
    from services.store_service.app.main import app as store_app

    store_app.dependency_overrides[get_strapi_client] = lambda: strapi

    async def _get_db():
        yield db_session

    store_app.dependency_overrides[get_async_db] = _get_db
    communications_app.dependency_overrides[get_email_client] = lambda: email_client
    communications_app.dependency_overrides[get_recent_sends] = lambda: recent_sends
    communications_app.dependency_overrides[get_pdf_fetcher] = lambda: pdf_fetcher

    router = _ServiceRouter(
        {"store.test": store_app, "communications.test": communications_app}
    )
    with patch(
        f"{RECONCILIATION}.generate_invoice_for_order",
        new=partial(service_client.generate_invoice_for_order, transport=router),
    ), patch(
        f"{RECONCILIATION}.send_order_confirmation_email",
        new=partial(service_client.send_order_confirmation_email, transport=router),
    ):
        yield

    store_app.dependency_overrides.clear()
    communications_app.dependency_overrides.clear()


@pytest.mark.asyncio
@pytest.mark.integration
async def test_paid_order_gets_invoice_and_confirmation_email(
    payments_client, fake_strapi, fake_mp, fake_resend, internal_services
):
    order, product = _seed(fake_strapi, fake_mp, email="ana@example.com")

    response = await _notify(payments_client)
    await _notify(payments_client)

    assert response.status_code == 200
    assert fake_strapi.get_row("products", product["documentId"])["stock"] == 3

    [invoice] = fake_strapi.collections["invoices"]
    assert invoice["number"].endswith("_AMG-0001")
    assert len(fake_strapi.calls("POST", "/api/upload")) == 1

    [sent] = fake_resend.sent
    assert sent["to"] == ["ana@example.com"]
    assert invoice["number"] in sent["html"]
    [attachment] = sent["attachments"]
    assert attachment["filename"] == f"{invoice['number']}.pdf"
    assert fake_resend.headers[0]["idempotency-key"] == "order-confirmation/AMG-0001/1001"
