"""
Community promotion expiration arithmetic.

Promotions are time-boxed. Buying the same tier again while it is still
running extends it; buying a different tier (or buying after expiry) starts
a fresh window and discards whatever was left, so cheaper-tier time can not
be stacked into an upgrade.
"""

from dataclasses import dataclass
from datetime import datetime

from dateutil.relativedelta import relativedelta

DEFAULT_DURATION_MONTHS = 1


@dataclass(frozen=True)
class PromotionState:
    """The community's current promotion, as stored."""

    active: bool
    plan: str
    expiration_date: datetime | None


@dataclass(frozen=True)
class PromotionPurchase:
    """An incoming promotion payment."""

    tier: str
    duration_months: int | None = None
    metadata_expiration: datetime | None = None


def normalize_duration(duration_months: int | None) -> int:
    """Missing or non-positive durations count as one month."""
    if duration_months is None or duration_months <= 0:
        return DEFAULT_DURATION_MONTHS
    return duration_months


def is_same_tier_extension(
    current: PromotionState | None,
    purchase: PromotionPurchase,
    now: datetime,
) -> bool:
    """True when the purchase extends a running promotion of the same tier."""
    return (
        current is not None
        and current.active
        and current.plan.lower() == purchase.tier.lower()
        and current.expiration_date is not None
        and current.expiration_date > now
    )


def compute_promotion_expiration(
    current: PromotionState | None,
    purchase: PromotionPurchase,
    now: datetime,
) -> datetime:
    """
    New expiration for a promotion purchase.

    Same tier and still running: max(now, current expiration) + duration,
    ignoring any expiration the checkout metadata supplied.
    Otherwise: the metadata expiration if present, else now + duration.
    Months are calendar months.
    """
    months = relativedelta(months=normalize_duration(purchase.duration_months))

    if current is not None and current.expiration_date is not None:
        if is_same_tier_extension(current, purchase, now):
            return max(now, current.expiration_date) + months

    if purchase.metadata_expiration is not None:
        return purchase.metadata_expiration
    return now + months
