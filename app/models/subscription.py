"""Subscription model - the canonical subscription record for a user or community."""

import uuid as uuid_pkg
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, String, UniqueConstraint, text
from sqlmodel import Field

from app.models.base import TimestampMixin, UUIDMixin


class Plan(str, Enum):
    """Semantic subscription levels."""

    FREE = "free"

    # Personal plans
    BASE = "base"
    PREMIUM = "premium"  # Also the third community promotion tier
    PREMIUM_PLUS = "premium_plus"

    # Community promotion tiers
    BASIC = "basic"
    STANDARD = "standard"
    ELITE = "elite"

    # Sentinel from the price catalog: never written over an existing plan
    UNKNOWN = "unknown"


class SubscriptionSource(str, Enum):
    """Which payment provider currently owns the subscription."""

    PRIMARY_PROVIDER = "primary_provider"  # Stripe
    APP_STORE_PROVIDER = "app_store_provider"  # RevenueCat
    NONE = "none"


class PrincipalType(str, Enum):
    """Owner kinds for a subscription."""

    USER = "user"
    COMMUNITY = "community"


class Subscription(UUIDMixin, TimestampMixin, table=True):
    """
    Subscription model - one row per principal.

    Created implicitly by the first successful webhook for a principal and
    only ever updated afterwards. Cancellation resets the row to the
    free/inactive state instead of deleting it.

    Invariants:
    - source is written only by a successful event from that provider
    - inactive rows carry source=none
    - expiration_date, when written, is later than purchase_date
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("principal_type", "principal_id", name="uq_subscriptions_principal"),
    )

    principal_type: str = Field(sa_type=String(20), nullable=False)
    principal_id: uuid_pkg.UUID = Field(nullable=False, index=True)

    active: bool = Field(
        default=False,
        nullable=False,
        sa_column_kwargs={"server_default": text("false")},
    )
    plan: str = Field(
        default=Plan.FREE.value,
        sa_type=String(20),
        nullable=False,
        sa_column_kwargs={"server_default": Plan.FREE.value},
    )
    is_annual: bool = Field(
        default=False,
        nullable=False,
        sa_column_kwargs={"server_default": text("false")},
    )
    # Community promotions are duration-based; personal plans are ongoing
    duration_months: int | None = Field(default=None, nullable=True)
    source: str = Field(
        default=SubscriptionSource.NONE.value,
        sa_type=String(30),
        nullable=False,
        sa_column_kwargs={"server_default": SubscriptionSource.NONE.value},
    )

    # Provider references
    external_subscription_id: str | None = Field(
        default=None, max_length=255, nullable=True, index=True
    )
    external_customer_id: str | None = Field(default=None, max_length=255, nullable=True)

    # Lifecycle dates
    purchase_date: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
    expiration_date: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )
    cancel_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )

    # Purchasing user for community promotions
    created_by: uuid_pkg.UUID | None = Field(default=None, nullable=True)

    @property
    def owned_by_primary(self) -> bool:
        """True when Stripe currently holds the active subscription."""
        return self.active and self.source == SubscriptionSource.PRIMARY_PROVIDER.value

    @property
    def owned_by_app_store(self) -> bool:
        """True when the app store currently holds the active subscription."""
        return self.active and self.source == SubscriptionSource.APP_STORE_PROVIDER.value


# Fields a webhook is allowed to write; everything else is owned elsewhere
WRITABLE_FIELDS: frozenset[str] = frozenset(
    {
        "active",
        "plan",
        "is_annual",
        "duration_months",
        "source",
        "external_subscription_id",
        "external_customer_id",
        "purchase_date",
        "expiration_date",
        "cancel_at",
        "created_by",
    }
)
