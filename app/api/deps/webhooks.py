"""
Configuration values injected into the webhook path.

Everything here is built once from settings on first use and cached for the
life of the process; tests replace them through app.dependency_overrides.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from app.config import settings
from app.services.webhooks.catalog import PriceCatalog
from app.services.webhooks.reconciler import ReconcilePolicy


@dataclass(frozen=True)
class WebhookSecrets:
    """Per-provider signing secrets and the optional freshness window."""

    stripe: str
    revenuecat: str
    tolerance_seconds: int | None = None


@lru_cache
def get_price_catalog() -> PriceCatalog:
    return PriceCatalog.from_settings(settings)


@lru_cache
def get_reconcile_policy() -> ReconcilePolicy:
    return ReconcilePolicy.from_settings(settings)


@lru_cache
def get_webhook_secrets() -> WebhookSecrets:
    return WebhookSecrets(
        stripe=settings.stripe_webhook_secret,
        revenuecat=settings.revenuecat_webhook_secret,
        tolerance_seconds=settings.webhook_signature_tolerance_seconds,
    )


Catalog = Annotated[PriceCatalog, Depends(get_price_catalog)]
Policy = Annotated[ReconcilePolicy, Depends(get_reconcile_policy)]
Secrets = Annotated[WebhookSecrets, Depends(get_webhook_secrets)]
