"""Webhook ingestion: verify, decode, resolve and apply provider events."""

from app.services.webhooks.catalog import PriceCatalog, PricePlan
from app.services.webhooks.reconciler import (
    ApplyOutcome,
    ApplyResult,
    ReconcilePolicy,
    SubscriptionReconciler,
)
from app.services.webhooks.revenuecat_events import decode_revenuecat_event
from app.services.webhooks.signature import verify_signature
from app.services.webhooks.stripe_events import decode_stripe_event

__all__ = [
    "ApplyOutcome",
    "ApplyResult",
    "PriceCatalog",
    "PricePlan",
    "ReconcilePolicy",
    "SubscriptionReconciler",
    "decode_revenuecat_event",
    "decode_stripe_event",
    "verify_signature",
]
