"""Store service routers package."""

from services.store_service.routers.cart import router as cart_router
from services.store_service.routers.internal import router as internal_router
from services.store_service.routers.invoices import router as invoices_router
from services.store_service.routers.orders import router as orders_router
from services.store_service.routers.quotes import router as quotes_router

__all__ = [
    "cart_router",
    "internal_router",
    "invoices_router",
    "orders_router",
    "quotes_router",
]
