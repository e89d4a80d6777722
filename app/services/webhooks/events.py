"""
Canonical webhook events.

Provider payloads are decoded once at the boundary into these frozen
dataclasses. Everything downstream of the decoders (reconciler, applier)
only ever sees this closed set, so adding a provider event kind means adding
a class here and a case to the reconciler's match statement.
"""

import uuid as uuid_pkg
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from app.core.exceptions import DecodeError
from app.models.subscription import PrincipalType


class Provider(str, Enum):
    """Payment providers that deliver webhooks."""

    STRIPE = "stripe"
    REVENUECAT = "revenuecat"


@dataclass(frozen=True)
class PrincipalRef:
    """Identifies the owner of a subscription row."""

    type: PrincipalType
    id: uuid_pkg.UUID

    def __str__(self) -> str:
        return f"{self.type.value}:{self.id}"


# ─────────────────────────────────────────────────────────────────────────────
# Stripe events
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CheckoutCompleted:
    """
    A checkout session finished.

    principal is None when the session carries no correlation metadata
    (dashboard test events, sessions created outside this service).
    Personal checkouts carry subscription_id; community promotions are
    one-time payments and carry payment_intent_id instead.
    """

    event_id: str
    session_id: str
    principal: PrincipalRef | None
    customer_id: str | None = None
    subscription_id: str | None = None
    payment_intent_id: str | None = None
    price_id: str | None = None  # Only present when line_items were expanded
    tier: str | None = None  # Display hint only; plan comes from price_id
    billing_interval: str | None = None
    created_by: uuid_pkg.UUID | None = None
    duration_months: int | None = None
    metadata_expiration: datetime | None = None

    @property
    def is_promotion(self) -> bool:
        return self.principal is not None and self.principal.type is PrincipalType.COMMUNITY


@dataclass(frozen=True)
class InvoicePaid:
    event_id: str
    invoice_id: str
    subscription_id: str | None


@dataclass(frozen=True)
class InvoiceFailed:
    event_id: str
    invoice_id: str
    subscription_id: str | None


@dataclass(frozen=True)
class SubscriptionUpdated:
    """Status, price or scheduled cancellation changed on a Stripe subscription."""

    event_id: str
    subscription_id: str
    status: str
    price_id: str | None
    cancel_at: datetime | None


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    subscription_id: str


@dataclass(frozen=True)
class TrialWillEnd:
    event_id: str
    subscription_id: str
    trial_end: datetime | None


# ─────────────────────────────────────────────────────────────────────────────
# App store (RevenueCat) events
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AppStoreEvent:
    """
    Fields shared by every RevenueCat lifecycle event.

    principal_id is None when app_user_id is not one of our user ids
    (anonymous RevenueCat ids, sandbox testers).
    """

    event_id: str
    principal_id: uuid_pkg.UUID | None
    product_id: str | None = None
    transaction_id: str | None = None  # original_transaction_id, stable across renewals
    purchased_at: datetime | None = None
    expires_at: datetime | None = None


@dataclass(frozen=True)
class AppStoreInitialPurchase(AppStoreEvent):
    pass


@dataclass(frozen=True)
class AppStoreRenewal(AppStoreEvent):
    pass


@dataclass(frozen=True)
class AppStoreCancellation(AppStoreEvent):
    pass


@dataclass(frozen=True)
class AppStoreUncancellation(AppStoreEvent):
    pass


@dataclass(frozen=True)
class AppStoreNonRenewing(AppStoreEvent):
    pass


@dataclass(frozen=True)
class AppStoreExpiration(AppStoreEvent):
    pass


@dataclass(frozen=True)
class AppStoreBillingIssue(AppStoreEvent):
    pass


@dataclass(frozen=True)
class AppStoreProductChange(AppStoreEvent):
    pass


@dataclass(frozen=True)
class UnhandledEvent:
    """A provider event type we do not act on. Accepted so it is never retried."""

    provider: Provider
    event_type: str
    event_id: str


WebhookEvent = (
    CheckoutCompleted
    | InvoicePaid
    | InvoiceFailed
    | SubscriptionUpdated
    | SubscriptionDeleted
    | TrialWillEnd
    | AppStoreInitialPurchase
    | AppStoreRenewal
    | AppStoreCancellation
    | AppStoreUncancellation
    | AppStoreNonRenewing
    | AppStoreExpiration
    | AppStoreBillingIssue
    | AppStoreProductChange
    | UnhandledEvent
)


# ─────────────────────────────────────────────────────────────────────────────
# Field helpers shared by the decoders
# ─────────────────────────────────────────────────────────────────────────────


def as_dict(value: Any) -> dict[str, Any]:
    """Return value if it is a JSON object, else an empty dict."""
    return value if isinstance(value, dict) else {}


def optional_str(value: Any) -> str | None:
    """Non-empty string or None. Expanded Stripe objects yield their id."""
    if isinstance(value, dict):
        value = value.get("id")
    if isinstance(value, str) and value:
        return value
    return None


def require_str(obj: dict[str, Any], key: str, event_type: str) -> str:
    """Read a required string field, raising DecodeError when absent."""
    value = optional_str(obj.get(key))
    if value is None:
        raise DecodeError(f"{event_type}: missing required field '{key}'")
    return value


def parse_uuid(value: Any) -> uuid_pkg.UUID | None:
    """Parse a UUID string, returning None for anything else."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return uuid_pkg.UUID(value)
    except ValueError:
        return None


def from_unix(seconds: Any) -> datetime | None:
    """Stripe timestamps: integer seconds since the epoch."""
    if isinstance(seconds, bool) or not isinstance(seconds, int | float) or seconds <= 0:
        return None
    return datetime.fromtimestamp(seconds, tz=UTC)


def from_unix_ms(millis: Any) -> datetime | None:
    """RevenueCat timestamps: integer milliseconds since the epoch."""
    if isinstance(millis, bool) or not isinstance(millis, int | float) or millis <= 0:
        return None
    return datetime.fromtimestamp(millis / 1000, tz=UTC)


def parse_iso_datetime(value: Any) -> datetime | None:
    """Parse an RFC 3339 string from checkout metadata. Naive values are UTC."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
