"""MercadoPago checkout preference creation."""

from fastapi import APIRouter, Depends, HTTPException
from libs.common.config import get_settings
from libs.common.currency import to_number
from libs.common.logging import get_logger
from libs.common.stock import validate_stock_or_raise
from libs.common.strapi import StrapiClient, StrapiError, get_strapi_client
from services.payments_service.mercadopago_client import (
    MercadoPagoClient,
    MercadoPagoError,
    get_mercadopago_client,
)
from services.payments_service.preferences import (
    build_preference_body,
    normalize_order_lines,
)
from services.payments_service.schemas import (
    CreatePreferenceRequest,
    PreferenceResponse,
)

router = APIRouter(prefix="/payments/mp", tags=["payments"])
logger = get_logger(__name__)


def _bad_request(message: str, **extra) -> HTTPException:
    return HTTPException(status_code=400, detail={"error": message, **extra})


@router.post("/create-preference", response_model=PreferenceResponse)
async def create_preference(
    body: CreatePreferenceRequest,
    strapi: StrapiClient = Depends(get_strapi_client),
    mp: MercadoPagoClient = Depends(get_mercadopago_client),
):
    """Create a checkout preference for a stored pending order.

    Everything the provider is told comes from the stored order, never from
    the request. Each call creates a new preference.
    """
    if not mp.configured:
        raise HTTPException(
            status_code=500, detail={"error": "Falta MP_ACCESS_TOKEN en el servidor"}
        )

    order_id = (body.order_id or "").strip()
    if not order_id:
        raise _bad_request("Falta orderId (documentId real de Strapi)")

    try:
        order = await strapi.find_first(
            "orders", {"documentId": order_id}, extra=[("populate", "*")]
        )
    except StrapiError as e:
        raise HTTPException(
            status_code=e.status_code or 500,
            detail={
                "error": "No se pudo obtener la orden desde Strapi",
                "status": e.status_code,
                "details": e.details,
            },
        )
    if order is None:
        raise HTTPException(
            status_code=404,
            detail={"error": "No se pudo obtener la orden desde Strapi", "status": 404},
        )

    order_number = str(order["orderNumber"]) if order.get("orderNumber") else None
    stored_reference = str(order.get("mpExternalReference") or "").strip()
    reference = stored_reference or (body.mp_external_reference or "").strip()
    if not reference:
        raise _bad_request(
            "La orden no tiene mpExternalReference (ni vino por body). Re-creá la orden."
        )

    items = order.get("items") if isinstance(order.get("items"), list) else []
    if not items:
        raise _bad_request("La orden no tiene items válidos en Strapi")

    total = to_number(order.get("total"))
    if total <= 0:
        raise _bad_request("La orden tiene total inválido en Strapi", total=order.get("total"))

    # OutOfStockError renders as 409 through the app's exception handlers
    try:
        await validate_stock_or_raise(strapi, items)
    except StrapiError as e:
        raise HTTPException(
            status_code=500,
            detail={"error": "Error validando stock", "details": e.details},
        )

    if not normalize_order_lines(items, get_settings().CURRENCY):
        raise _bad_request("No hay items válidos en la orden para crear la preferencia")

    preference_body = build_preference_body(
        order_id=order_id,
        order_number=order_number,
        external_reference=reference,
        total=total,
    )

    try:
        preference = await mp.create_preference(preference_body)
    except MercadoPagoError as e:
        raise HTTPException(
            status_code=e.status_code or 500,
            detail={"error": e.message, "status": e.status_code},
        )

    logger.info(
        "Preference created",
        extra={
            "extra_fields": {
                "order_document_id": order_id,
                "order_number": order_number,
                "preference_id": preference.id,
            }
        },
    )
    return PreferenceResponse(
        id=preference.id,
        init_point=preference.init_point,
        sandbox_init_point=preference.sandbox_init_point,
        mp_external_reference=reference,
        order_id=order_id,
    )
