"""Store cart router: server-side cart snapshots."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from libs.cart.store import CART_VERSION, CartStore
from libs.common.logging import get_logger
from libs.common.stock import fetch_products_by_document_id, read_stock
from libs.common.strapi import StrapiClient, StrapiError, get_strapi_client
from libs.db.session import get_async_db
from services.store_service.models import StoredCart
from services.store_service.schemas import CartItemAdd, CartResponse
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

router = APIRouter(prefix="/carts", tags=["store"])


# ============================================================================
# CART HELPERS
# ============================================================================


async def _load(db: AsyncSession, cart_id: str) -> tuple[StoredCart, CartStore]:
    row = await db.get(StoredCart, cart_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Cart not found")
    return row, CartStore.from_snapshot({"state": row.state, "version": row.version})


async def _save(db: AsyncSession, row: StoredCart, store: CartStore) -> CartResponse:
    snapshot = store.snapshot()
    row.state = snapshot["state"]
    row.version = snapshot["version"]
    await db.commit()
    return _to_response(row, store)


def _to_response(row: StoredCart, store: CartStore) -> CartResponse:
    return CartResponse(
        id=row.id,
        version=row.version or CART_VERSION,
        items=[i.to_dict() for i in store.items],
        total_items=store.total_items(),
        total_price=store.total_price(),
    )


async def _refresh_from_backend(strapi: StrapiClient, store: CartStore) -> None:
    """Re-clamp lines to live stock; products gone from the catalog count as 0."""
    document_ids = [i.document_id for i in store.items if i.document_id]
    if not document_ids:
        return
    try:
        rows = await fetch_products_by_document_id(strapi, document_ids)
    except StrapiError as e:
        # The cart stays readable with the stock it last saw
        logger.warning("Stock refresh skipped: %s", e.message)
        return
    stock: dict[str, Optional[int]] = {
        doc: (read_stock(rows[doc]) if doc in rows else 0) for doc in document_ids
    }
    store.refresh_stock(stock)


# ============================================================================
# CART ENDPOINTS
# ============================================================================


@router.post("", response_model=CartResponse, status_code=status.HTTP_201_CREATED)
async def create_cart(db: AsyncSession = Depends(get_async_db)):
    store = CartStore()
    row = StoredCart(state=store.snapshot()["state"], version=CART_VERSION)
    db.add(row)
    await db.commit()
    return _to_response(row, store)


@router.get("/{cart_id}", response_model=CartResponse)
async def get_cart(
    cart_id: str,
    db: AsyncSession = Depends(get_async_db),
    strapi: StrapiClient = Depends(get_strapi_client),
):
    """Read a cart; stored lines are migrated and re-checked against live stock."""
    row, store = await _load(db, cart_id)
    await _refresh_from_backend(strapi, store)
    return await _save(db, row, store)


@router.post("/{cart_id}/items", response_model=CartResponse)
async def add_item(
    cart_id: str,
    payload: CartItemAdd,
    db: AsyncSession = Depends(get_async_db),
):
    row, store = await _load(db, cart_id)
    store.add(payload.product, payload.qty)
    return await _save(db, row, store)


@router.post("/{cart_id}/items/{slug}/increment", response_model=CartResponse)
async def increment_item(
    cart_id: str, slug: str, db: AsyncSession = Depends(get_async_db)
):
    row, store = await _load(db, cart_id)
    store.inc(slug)
    return await _save(db, row, store)


@router.post("/{cart_id}/items/{slug}/decrement", response_model=CartResponse)
async def decrement_item(
    cart_id: str, slug: str, db: AsyncSession = Depends(get_async_db)
):
    row, store = await _load(db, cart_id)
    store.dec(slug)
    return await _save(db, row, store)


@router.delete("/{cart_id}/items/{slug}", response_model=CartResponse)
async def remove_item(
    cart_id: str, slug: str, db: AsyncSession = Depends(get_async_db)
):
    row, store = await _load(db, cart_id)
    store.remove(slug)
    return await _save(db, row, store)


@router.delete("/{cart_id}/items", response_model=CartResponse)
async def clear_cart(cart_id: str, db: AsyncSession = Depends(get_async_db)):
    row, store = await _load(db, cart_id)
    store.clear()
    return await _save(db, row, store)
