"""Unit tests for stock validation and decrement against the content backend."""

import pytest
from libs.common.stock import (
    OutOfStockError,
    aggregate_requested,
    decrement_stock,
    read_stock,
    validate_stock_or_raise,
)
from libs.common.strapi import StrapiError
from tests.factories import OrderLineFactory, ProductFactory


@pytest.mark.unit
def test_aggregate_requested_sums_per_product():
    need = aggregate_requested(
        [
            {"productDocumentId": "a", "qty": 2, "title": "A"},
            {"productDocumentId": "a", "quantity": 3},
            {"productDocumentId": "b", "qty": 0},
            {"qty": 4},
            "junk",
        ]
    )
    assert need == {"a": {"requested": 5, "title": "A"}}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_validate_passes_when_stock_suffices(strapi, fake_strapi):
    product = fake_strapi.add("products", **ProductFactory.create(stock=3))

    await validate_stock_or_raise(
        strapi, [OrderLineFactory.create(product=product, qty=3)]
    )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_validate_lists_every_shortfall(strapi, fake_strapi):
    low = fake_strapi.add("products", **ProductFactory.create(title="Trufas", stock=1))
    untracked = fake_strapi.add("products", **ProductFactory.create(stock=None))
    items = [
        OrderLineFactory.create(product=low, qty=2),
        OrderLineFactory.create(product=untracked, qty=99),
        {"productDocumentId": "gone", "title": "Discontinuado", "qty": 1},
    ]

    with pytest.raises(OutOfStockError) as exc_info:
        await validate_stock_or_raise(strapi, items)

    problems = {p.product_document_id: p for p in exc_info.value.problems}
    assert set(problems) == {low["documentId"], "gone"}
    assert problems[low["documentId"]].title == "Trufas"
    assert problems[low["documentId"]].available == 1
    assert problems["gone"].available == 0
    assert problems["gone"].to_dict()["title"] == "Discontinuado"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unpublished_products_count_as_missing(strapi, fake_strapi):
    draft = fake_strapi.add("products", **ProductFactory.create(publishedAt=None))

    with pytest.raises(OutOfStockError):
        await validate_stock_or_raise(
            strapi, [OrderLineFactory.create(product=draft, qty=1)]
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_validate_surfaces_backend_failure(strapi, fake_strapi):
    fake_strapi.fail_paths["/api/products"] = 503

    with pytest.raises(StrapiError) as exc_info:
        await validate_stock_or_raise(strapi, [{"productDocumentId": "x", "qty": 1}])
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
@pytest.mark.unit
async def test_decrement_floors_at_zero_and_skips_untracked(strapi, fake_strapi):
    a = fake_strapi.add("products", **ProductFactory.create(stock=5))
    b = fake_strapi.add("products", **ProductFactory.create(stock=1))
    c = fake_strapi.add("products", **ProductFactory.create(stock=None))

    updated = await decrement_stock(
        strapi,
        [
            OrderLineFactory.create(product=a, qty=2),
            OrderLineFactory.create(product=b, qty=3),
            OrderLineFactory.create(product=c, qty=1),
        ],
    )

    assert updated == {a["documentId"]: 3, b["documentId"]: 0}
    assert fake_strapi.get_row("products", a["documentId"])["stock"] == 3
    assert fake_strapi.get_row("products", b["documentId"])["stock"] == 0
    assert fake_strapi.get_row("products", c["documentId"])["stock"] is None


@pytest.mark.unit
@pytest.mark.parametrize(
    "row, expected",
    [
        ({"stock": 4}, 4),
        ({"stock": "7"}, 7),
        ({"stock": ""}, 0),
        ({"stock": "muchos"}, 0),
        ({"stock": None}, None),
        ({"title": "sin campo"}, None),
    ],
)
def test_read_stock(row, expected):
    assert read_stock(row) == expected


@pytest.mark.asyncio
@pytest.mark.unit
async def test_blank_stock_blocks_purchase(strapi, fake_strapi):
    blank = fake_strapi.add("products", **ProductFactory.create(stock=""))

    with pytest.raises(OutOfStockError) as exc_info:
        await validate_stock_or_raise(
            strapi, [OrderLineFactory.create(product=blank, qty=1)]
        )

    assert exc_info.value.problems[0].available == 0
