"""Routers package."""

from services.payments_service.routers.preferences import router as preferences_router
from services.payments_service.routers.webhooks import router as webhooks_router

__all__ = [
    "preferences_router",
    "webhooks_router",
]
