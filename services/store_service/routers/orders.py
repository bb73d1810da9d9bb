"""Store orders router: checkout submission, order tracking and history."""

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from libs.auth.dependencies import get_current_user, get_optional_user
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.common.order_utils import find_order, make_order_number, user_owns_order
from libs.common.strapi import StrapiClient, StrapiError, get_strapi_client
from services.store_service.orders import (
    OrderValidationError,
    build_order_draft,
    summarize_order,
)
from services.store_service.schemas import (
    OrderCreateResponse,
    OrderStatusResponse,
    OrderSummary,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["store"])

MY_ORDERS_PAGE_SIZE = 50


@router.post("", response_model=OrderCreateResponse)
async def create_order(
    body: Any = Body(...),
    user: Optional[AuthUser] = Depends(get_optional_user),
    strapi: StrapiClient = Depends(get_strapi_client),
):
    """Create a pending order from the checkout form.

    The order number needs the numeric id the backend assigns, so it is set in
    a follow-up update. If that update fails the order still stands.
    """
    try:
        draft = build_order_draft(body, user)
    except OrderValidationError as e:
        raise HTTPException(
            status_code=400, detail={"error": e.message, "fields": e.fields}
        )

    try:
        created = await strapi.create("orders", draft.to_strapi())
    except StrapiError as e:
        raise HTTPException(
            status_code=e.status_code or 500,
            detail={"error": "Strapi error (create)", "details": e.details},
        )

    document_id = str(created.get("documentId") or "").strip()
    numeric_id = str(created["id"]) if created.get("id") is not None else None
    if not document_id:
        raise HTTPException(
            status_code=500,
            detail={"error": "Strapi no devolvió documentId al crear la orden"},
        )

    order_number = make_order_number(numeric_id) if numeric_id else None
    if order_number:
        try:
            await strapi.update(
                "orders",
                document_id,
                {
                    "orderNumber": order_number,
                    "mpExternalReference": draft.mp_external_reference,
                },
            )
        except StrapiError as e:
            logger.warning(
                "Order number update failed, continuing",
                extra={
                    "extra_fields": {
                        "order_document_id": document_id,
                        "status": e.status_code,
                    }
                },
            )
    else:
        logger.warning("Backend returned no numeric id; order has no number yet")

    logger.info(
        "Order created",
        extra={
            "extra_fields": {
                "order_document_id": document_id,
                "order_number": order_number,
                "user_id": draft.user_id,
            }
        },
    )
    return OrderCreateResponse(
        order_id=document_id,
        order_document_id=document_id,
        order_numeric_id=numeric_id,
        order_number=order_number,
        mp_external_reference=draft.mp_external_reference,
    )


@router.get("/my")
async def list_my_orders(
    user: AuthUser = Depends(get_current_user),
    strapi: StrapiClient = Depends(get_strapi_client),
):
    """Orders of the logged-in customer; legacy orders without a user match by email."""
    base = [
        ("pagination[pageSize]", str(MY_ORDERS_PAGE_SIZE)),
        ("sort[0]", "createdAt:desc"),
        ("populate", "*"),
    ]

    rows: list[dict] = []
    try:
        rows = await strapi.find(
            "orders", base + [("filters[user][id][$eq]", str(user.user_id))]
        )
    except StrapiError as e:
        if not user.normalized_email:
            raise
        logger.warning("Orders by user relation failed, trying email: %s", e.message)

    if not rows and user.normalized_email:
        rows = await strapi.find(
            "orders", base + [("filters[email][$eq]", user.normalized_email)]
        )

    orders = [
        OrderSummary(**summarize_order(r)).model_dump(by_alias=True) for r in rows
    ]
    return {"orders": orders}


@router.get("/{ref}")
async def get_order(
    ref: str,
    user: AuthUser = Depends(get_current_user),
    strapi: StrapiClient = Depends(get_strapi_client),
):
    """Read one order by document id, order number or legacy numeric id."""
    order = await find_order(strapi, ref)
    if order is None:
        raise HTTPException(status_code=404, detail={"error": "Order not found", "id": ref})
    if not user_owns_order(user, order):
        raise HTTPException(status_code=403, detail="Prohibido")
    return {"data": order}


@router.get("/{ref}/status", response_model=OrderStatusResponse)
async def get_order_status(
    ref: str,
    strapi: StrapiClient = Depends(get_strapi_client),
):
    """Minimal status view for payment polling; exposes no customer data."""
    order = await find_order(strapi, ref)
    if order is None:
        raise HTTPException(status_code=404, detail={"error": "Order not found", "id": ref})
    return OrderStatusResponse(
        order_id=order.get("documentId") or ref,
        order_number=order.get("orderNumber"),
        order_status=order.get("orderStatus"),
    )
