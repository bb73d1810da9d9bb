"""Unit tests for order numbering, status mapping and ownership."""

from datetime import datetime, timezone

import pytest
from libs.auth.models import AuthUser
from libs.common.order_utils import (
    OrderStatus,
    build_invoice_number,
    extract_order_number,
    find_order,
    make_order_number,
    map_provider_status,
    user_owns_order,
)
from tests.factories import OrderFactory


@pytest.mark.unit
@pytest.mark.parametrize(
    "mp_status, expected",
    [
        ("approved", OrderStatus.PAID),
        ("rejected", OrderStatus.FAILED),
        ("cancelled", OrderStatus.CANCELLED),
        ("in_process", OrderStatus.PENDING),
        ("pending", OrderStatus.PENDING),
        (None, OrderStatus.PENDING),
    ],
)
def test_map_provider_status(mp_status, expected):
    assert map_provider_status(mp_status) is expected


@pytest.mark.unit
def test_make_order_number_pads_to_four_digits():
    assert make_order_number(33) == "AMG-0033"
    assert make_order_number("012") == "AMG-0012"
    assert make_order_number(123456) == "AMG-123456"


@pytest.mark.unit
def test_invoice_number_is_deterministic_per_day():
    day = datetime(2026, 1, 31, 15, 0, tzinfo=timezone.utc)

    assert build_invoice_number("AMG-0172", day) == "RC_20260131_AMG-0172"
    assert build_invoice_number("AMG 0172", day) == "RC_20260131_AMG0172"
    assert build_invoice_number(None, day) == "RC_20260131_AMG-XXXX"


@pytest.mark.unit
@pytest.mark.parametrize(
    "invoice_number, expected",
    [
        ("RC_20260131_AMG-0001", "AMG-0001"),
        ("RC-20260131-amg-0042", "AMG-0042"),
        ("RC_20260131_AMG-XXXX", None),
        (None, None),
    ],
)
def test_extract_order_number(invoice_number, expected):
    assert extract_order_number(invoice_number) == expected


@pytest.mark.unit
def test_user_owns_order_by_relation_then_email():
    user = AuthUser(id="7", email="Ana@Example.com")

    assert user_owns_order(user, {"user": {"id": 7}, "email": "other@x.com"})
    assert not user_owns_order(user, {"user": {"data": {"id": 8}}, "email": "ana@example.com"})
    assert user_owns_order(user, {"user": None, "email": " ANA@example.com "})
    assert not user_owns_order(user, {"email": ""})


@pytest.mark.asyncio
@pytest.mark.unit
async def test_find_order_tries_each_field(strapi, fake_strapi):
    order = fake_strapi.add("orders", **OrderFactory.create(orderNumber="AMG-0009"))

    by_doc = await find_order(strapi, order["documentId"])
    by_number = await find_order(strapi, "AMG-0009")
    by_id = await find_order(strapi, str(order["id"]))

    assert by_doc["documentId"] == order["documentId"]
    assert by_number["documentId"] == order["documentId"]
    assert by_id["documentId"] == order["documentId"]
    assert await find_order(strapi, "missing") is None
    assert await find_order(strapi, "  ") is None
