"""Promotions quote router: final price for a cart, computed by the content backend."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from libs.common.currency import round_half_up, to_number
from libs.common.logging import get_logger
from libs.common.strapi import StrapiClient, StrapiError, get_strapi_client
from services.store_service.schemas import QuoteRequest, QuoteResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/promotions", tags=["store"])


def normalize_quote(payload: Any) -> QuoteResponse:
    data = payload.get("data", payload) if isinstance(payload, dict) else {}
    if not isinstance(data, dict):
        data = {}

    subtotal = round_half_up(to_number(data.get("subtotal")))
    discount = round_half_up(to_number(data.get("discountTotal")))
    total_raw = data.get("total")
    total = (
        round_half_up(to_number(total_raw))
        if total_raw is not None
        else max(0, subtotal - discount)
    )
    promotions = data.get("appliedPromotions")
    return QuoteResponse(
        subtotal=subtotal,
        discount_total=discount,
        total=total,
        applied_promotions=promotions if isinstance(promotions, list) else [],
    )


@router.post("/quote", response_model=QuoteResponse)
async def quote(
    payload: QuoteRequest,
    strapi: StrapiClient = Depends(get_strapi_client),
):
    try:
        result = await strapi.post_json(
            "/api/promotions/quote", payload.model_dump(exclude_none=True)
        )
    except StrapiError as e:
        logger.error("Quote failed: %s", e.message)
        raise HTTPException(status_code=500, detail="Error calculando quote")
    return normalize_quote(result)
