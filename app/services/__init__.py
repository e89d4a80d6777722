# Services package

from app.services.stripe_service import StripeService, stripe_service

__all__ = [
    "StripeService",
    "stripe_service",
]
