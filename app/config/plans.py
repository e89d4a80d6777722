"""Plan configuration - display names, prices and features for each tier."""

from dataclasses import dataclass


@dataclass(frozen=True)
class PlanConfig:
    """Configuration for a personal subscription tier."""

    tier: str
    display_name: str
    price_monthly: int  # cents
    price_annual: int  # cents
    community_limit: int | None  # None = unlimited
    features: tuple[str, ...]
    color: str
    popular: bool = False


@dataclass(frozen=True)
class PromotionConfig:
    """Configuration for a community promotion tier (one-time purchase)."""

    tier: str
    display_name: str
    price_monthly: int  # cents per month of promotion
    features: tuple[str, ...]
    color: str
    popular: bool = False


PLANS: dict[str, PlanConfig] = {
    "free": PlanConfig(
        tier="free",
        display_name="Free",
        price_monthly=0,
        price_annual=0,
        community_limit=1,
        features=("1 community", "Default departments", "Full ads"),
        color="#718096",
    ),
    "base": PlanConfig(
        tier="base",
        display_name="Base",
        price_monthly=300,  # $3/mo
        price_annual=3200,  # $32/yr
        community_limit=5,
        features=("5 communities", "Default departments", "Full ads"),
        color="#3b82f6",
    ),
    "premium": PlanConfig(
        tier="premium",
        display_name="Premium",
        price_monthly=800,  # $8/mo
        price_annual=8500,  # $85/yr
        community_limit=10,
        features=("10 communities", "Verified badge", "50% fewer ads"),
        color="#667eea",
        popular=True,
    ),
    "premium_plus": PlanConfig(
        tier="premium_plus",
        display_name="Premium Plus",
        price_monthly=1999,  # $19.99/mo
        price_annual=20900,  # $209/yr
        community_limit=None,
        features=("Unlimited communities", "No ads", "Verified badge"),
        color="#fbbf24",
    ),
}

PROMOTIONS: dict[str, PromotionConfig] = {
    "basic": PromotionConfig(
        tier="basic",
        display_name="Basic",
        price_monthly=500,
        features=("Promotional text in search",),
        color="#3b82f6",
    ),
    "standard": PromotionConfig(
        tier="standard",
        display_name="Standard",
        price_monthly=1000,
        features=(
            "Promotional text in search",
            "Verified community badge",
            "Short description (100 chars)",
        ),
        color="#10b981",
    ),
    "premium": PromotionConfig(
        tier="premium",
        display_name="Premium",
        price_monthly=2000,
        features=(
            "Promotional text in search",
            "Verified community badge",
            "Boost on Discover page",
        ),
        color="#667eea",
    ),
    "elite": PromotionConfig(
        tier="elite",
        display_name="Elite",
        price_monthly=5000,
        features=(
            "Promotional text in search",
            "Verified community badge",
            "Boost on Discover page",
            "Featured on Home Page",
            "Long description (200 chars)",
        ),
        color="#fbbf24",
        popular=True,
    ),
}

# Promotion lengths offered at checkout
PROMOTION_DURATIONS: tuple[int, ...] = (1, 3, 6)


def get_plan(tier: str) -> PlanConfig:
    """
    Get personal plan configuration by tier name.

    Unknown tiers resolve to the free plan.
    """
    return PLANS.get(tier.lower(), PLANS["free"])


def get_promotion(tier: str) -> PromotionConfig | None:
    """Get community promotion configuration, or None for an unknown tier."""
    return PROMOTIONS.get(tier.lower())
