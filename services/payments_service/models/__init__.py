"""Payments Service models package."""

from services.payments_service.models.transition import PaymentTransition

__all__ = ["PaymentTransition"]
