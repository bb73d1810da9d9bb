"""Communications service routers package."""

from services.communications_service.routers.email import router as email_router

__all__ = ["email_router"]
