"""Shopping cart state.

A cart is a list of lines keyed by the product's document id (slug when the
backend row has none). Quantities are clamped to the product stock when the
stock is known; ``stock=None`` means the product is not stock-tracked.

The persisted form is ``{"state": {"items": [...]}, "version": 4}``. Loading
always runs :func:`migrate`, so carts saved by an older build (or edited by
hand) are re-normalized before anyone reads them.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from libs.common.currency import price_with_off, to_number
from libs.common.strapi import flatten_row, pick_document_id, pick_media_url

CART_VERSION = 4


class CartItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int = 0
    document_id: Optional[str] = Field(default=None, alias="documentId")
    slug: str = "item"
    title: str = ""
    description: Optional[str] = None
    price: float = 0
    off: Optional[float] = None
    stock: Optional[int] = None
    qty: int = 1
    image_url: Optional[str] = Field(default=None, alias="imageUrl")

    @property
    def key(self) -> str:
        return self.document_id or self.slug

    @property
    def unit_price(self) -> float:
        return price_with_off(self.price, self.off)

    @property
    def line_total(self) -> float:
        return self.unit_price * self.qty

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


ProductLike = Union[CartItem, Mapping[str, Any]]


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def normalize_qty(value: Any) -> int:
    """Whole, non-negative quantity; garbage counts as 1."""
    if isinstance(value, bool):
        return 1
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 1
    if math.isnan(number) or math.isinf(number):
        return 1
    return max(0, math.floor(number))


def _normalize_id(value: Any) -> int:
    number = to_number(value, 0)
    return math.trunc(number)


def _str_or_none(value: Any) -> Optional[str]:
    text = str(value if value is not None else "").strip()
    return text or None


def pick_stock(product: Mapping[str, Any]) -> Optional[int]:
    """Known stock (never negative), or None when the product is not stock-tracked."""
    raw = product.get("stock")
    if raw is None and isinstance(product.get("attributes"), dict):
        raw = product["attributes"].get("stock")
    if raw is None or raw == "" or isinstance(raw, bool):
        return None
    try:
        number = float(raw)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return max(0, math.trunc(number))


def clamp_qty(qty: Any, stock: Optional[int]) -> int:
    q = normalize_qty(qty)
    return q if stock is None else min(q, stock)


def _pick_off(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    number = to_number(value, float("nan"))
    return None if math.isnan(number) else number


def _pick_image_url(row: Mapping[str, Any]) -> Optional[str]:
    for key in ("imageUrl", "image_url"):
        if isinstance(row.get(key), str) and row[key].strip():
            return row[key].strip()
    for key in ("image", "cover", "images"):
        url = pick_media_url(row.get(key))
        if url:
            return url
    return None


def normalize_cart_item(product: ProductLike, qty: Any) -> CartItem:
    """Build a cart line from a backend product row (v4 or v5) or another line."""
    if isinstance(product, CartItem):
        raw: Mapping[str, Any] = product.to_dict()
    else:
        raw = product

    row = flatten_row(dict(raw)) or {}
    id_num = _normalize_id(row.get("id"))
    document_id = pick_document_id(raw) or _str_or_none(row.get("document_id"))
    slug = _str_or_none(row.get("slug")) or (
        str(id_num) if id_num else (document_id or "item")
    )

    return CartItem(
        id=id_num,
        document_id=document_id,
        slug=slug,
        title=str(row.get("title") or ""),
        description=row.get("description"),
        price=to_number(row.get("price"), 0),
        off=_pick_off(row.get("off")),
        stock=pick_stock(raw),
        qty=normalize_qty(qty),
        image_url=_pick_image_url(row),
    )


# ---------------------------------------------------------------------------
# Persistence migration
# ---------------------------------------------------------------------------


def migrate(persisted: Any) -> dict:
    """Re-normalize any stored snapshot into the current shape.

    Every line gets qty >= 1, a re-derived identity and a re-clamp to its
    stock; lines whose stock is 0 are dropped.
    """
    persisted = persisted if isinstance(persisted, dict) else {}
    state = persisted.get("state", persisted)
    state = state if isinstance(state, dict) else {}
    items = state.get("items") if isinstance(state.get("items"), list) else []

    fixed: list[dict] = []
    for stored in items:
        if not isinstance(stored, dict) and not isinstance(stored, CartItem):
            continue
        stored_qty = stored.qty if isinstance(stored, CartItem) else stored.get("qty", 1)
        line = normalize_cart_item(stored, max(1, normalize_qty(stored_qty)))
        if line.stock is not None and line.stock <= 0:
            continue
        line.qty = max(1, clamp_qty(line.qty, line.stock))
        fixed.append(line.to_dict())

    return {"state": {**state, "items": fixed}, "version": CART_VERSION}


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class CartStore:
    """In-memory cart with stock-aware operations."""

    def __init__(self, items: Optional[Iterable[CartItem]] = None):
        self.items: list[CartItem] = list(items or [])

    @classmethod
    def from_snapshot(cls, snapshot: Any) -> "CartStore":
        migrated = migrate(snapshot)
        return cls(CartItem.model_validate(i) for i in migrated["state"]["items"])

    def snapshot(self) -> dict:
        return {
            "state": {"items": [i.to_dict() for i in self.items]},
            "version": CART_VERSION,
        }

    def _find(self, key: str) -> Optional[CartItem]:
        return next((i for i in self.items if i.key == key), None)

    def add(self, product: ProductLike, qty: Any = 1) -> None:
        add_qty = max(1, normalize_qty(qty))
        line = normalize_cart_item(product, add_qty)

        existing = self._find(line.key)
        if existing is not None:
            stock = existing.stock if existing.stock is not None else line.stock
            existing.stock = stock
            existing.qty = max(1, clamp_qty(normalize_qty(existing.qty) + add_qty, stock))
            return

        if line.stock is not None and line.stock <= 0:
            return

        line.qty = max(1, clamp_qty(line.qty, line.stock))
        self.items.append(line)

    def remove(self, slug: str) -> None:
        self.items = [i for i in self.items if i.slug != slug]

    def inc(self, slug: str) -> None:
        for item in self.items:
            if item.slug == slug:
                item.qty = max(1, clamp_qty(max(1, normalize_qty(item.qty) + 1), item.stock))

    def dec(self, slug: str) -> None:
        for item in self.items:
            if item.slug == slug:
                item.qty = normalize_qty(normalize_qty(item.qty) - 1)
        self.items = [i for i in self.items if i.qty > 0]

    def clear(self) -> None:
        self.items = []

    def total_items(self) -> int:
        return sum(normalize_qty(i.qty) for i in self.items)

    def total_price(self) -> float:
        return sum(i.unit_price * normalize_qty(i.qty) for i in self.items)

    def refresh_stock(self, stock_by_document_id: Mapping[str, Optional[int]]) -> None:
        """Apply freshly fetched stock; lines now at 0 are dropped.

        Lines whose document id is not in the mapping are left untouched.
        """
        kept: list[CartItem] = []
        for item in self.items:
            if item.document_id and item.document_id in stock_by_document_id:
                value = stock_by_document_id[item.document_id]
                item.stock = None if value is None else max(0, int(value))
                if item.stock is not None and item.stock <= 0:
                    continue
                item.qty = max(1, clamp_qty(item.qty, item.stock))
            kept.append(item)
        self.items = kept

    def order_lines(self) -> list[dict]:
        """Line items in the shape the order endpoint stores."""
        return [
            {
                "productId": i.id or None,
                "productDocumentId": i.document_id,
                "slug": i.slug,
                "title": i.title,
                "qty": i.qty,
                "unit_price": i.unit_price,
                "price": i.price,
                "off": i.off,
            }
            for i in self.items
        ]
