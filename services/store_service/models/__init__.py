"""Store Service models package."""

from services.store_service.models.cart import StoredCart

__all__ = ["StoredCart"]
