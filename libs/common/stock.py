"""Stock checks against the content backend.

Products without a ``stock`` value are not stock-tracked and never block a
purchase. A product that cannot be found counts as zero available.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Iterable, Optional

from libs.common.currency import to_number
from libs.common.logging import get_logger
from libs.common.strapi import StrapiClient, pick_document_id, pick_field

logger = get_logger(__name__)

DEFAULT_TITLE = "Producto"
MAX_PAGE_SIZE = 100


@dataclass
class StockProblem:
    product_document_id: str
    title: str
    requested: int
    available: int

    def to_dict(self) -> dict:
        data = asdict(self)
        return {
            "productDocumentId": data["product_document_id"],
            "title": data["title"],
            "requested": data["requested"],
            "available": data["available"],
        }


class OutOfStockError(Exception):
    """One or more lines ask for more than the backend has."""

    code = "OUT_OF_STOCK"

    def __init__(self, problems: list[StockProblem]):
        self.problems = problems
        super().__init__(self.code)


def read_stock(row: Any) -> Optional[int]:
    """``None`` when the product is not stock-tracked; unreadable values count as 0."""
    raw = pick_field(row, "stock")
    if raw is None:
        return None
    return int(to_number(raw, 0))


def _line_qty(item: dict) -> int:
    return int(to_number(item.get("qty", item.get("quantity", 0)), 0))


def aggregate_requested(items: Iterable[dict]) -> dict[str, dict]:
    """Sum requested quantities per product document id, keeping the first title."""
    need: dict[str, dict] = {}
    for item in items or []:
        if not isinstance(item, dict):
            continue
        doc = str(item.get("productDocumentId") or "").strip()
        qty = _line_qty(item)
        if not doc or qty <= 0:
            continue
        entry = need.setdefault(doc, {"requested": 0, "title": None})
        entry["requested"] += qty
        entry["title"] = entry["title"] or item.get("title")
    return need


async def fetch_products_by_document_id(
    strapi: StrapiClient, document_ids: list[str]
) -> dict[str, dict]:
    params: list[tuple[str, Any]] = [
        ("pagination[pageSize]", str(min(len(document_ids), MAX_PAGE_SIZE))),
        ("populate", "*"),
        ("filters[publishedAt][$notNull]", "true"),
    ]
    # Strapi does not reliably accept "$in" as a joined string; use $or[i]
    for i, doc in enumerate(document_ids):
        params.append((f"filters[$or][{i}][documentId][$eq]", doc))

    rows = await strapi.find("products", params)
    by_doc: dict[str, dict] = {}
    for row in rows:
        doc = pick_document_id(row)
        if doc:
            by_doc[doc] = row
    return by_doc


async def validate_stock_or_raise(strapi: StrapiClient, items: Iterable[dict]) -> None:
    """Raise OutOfStockError listing every shortfall; StrapiError if the lookup fails."""
    need = aggregate_requested(items)
    if not need:
        return

    by_doc = await fetch_products_by_document_id(strapi, list(need))

    problems: list[StockProblem] = []
    for doc, entry in need.items():
        row = by_doc.get(doc)
        if row is None:
            problems.append(
                StockProblem(doc, entry["title"] or DEFAULT_TITLE, entry["requested"], 0)
            )
            continue

        stock = read_stock(row)
        if stock is None:
            continue

        if stock < entry["requested"]:
            title = pick_field(row, "title") or entry["title"] or DEFAULT_TITLE
            problems.append(StockProblem(doc, str(title), entry["requested"], stock))

    if problems:
        raise OutOfStockError(problems)


async def decrement_stock(strapi: StrapiClient, items: Iterable[dict]) -> dict[str, int]:
    """Subtract sold quantities from stock-tracked products (floored at 0).

    Returns the new stock per product document id. Untracked and missing
    products are left alone.
    """
    need = aggregate_requested(items)
    if not need:
        return {}

    by_doc = await fetch_products_by_document_id(strapi, list(need))
    updated: dict[str, int] = {}
    for doc, entry in need.items():
        row = by_doc.get(doc)
        stock = read_stock(row) if row else None
        if stock is None:
            continue
        new_stock = max(0, stock - entry["requested"])
        await strapi.update("products", doc, {"stock": new_stock})
        updated[doc] = new_stock
        logger.info("Stock for %s: %s -> %s", doc, stock, new_stock)
    return updated
