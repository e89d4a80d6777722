"""API dependencies - re-exports from submodules."""

from .database import DbSession
from .webhooks import (
    Catalog,
    Policy,
    Secrets,
    WebhookSecrets,
    get_price_catalog,
    get_reconcile_policy,
    get_webhook_secrets,
)

__all__ = [
    # Database
    "DbSession",
    # Webhook processing
    "Catalog",
    "Policy",
    "Secrets",
    "WebhookSecrets",
    "get_price_catalog",
    "get_reconcile_policy",
    "get_webhook_secrets",
]
