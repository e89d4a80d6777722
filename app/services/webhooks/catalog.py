"""
Price/product catalog.

Maps opaque provider ids (Stripe price ids, RevenueCat product ids) to the
plan they grant. Built once from settings at startup and injected, so
nothing in the webhook path reads configuration directly.
"""

from dataclasses import dataclass, field
from typing import Any

from app.models.subscription import Plan


@dataclass(frozen=True)
class PricePlan:
    """What a price or product id grants."""

    plan: Plan
    is_annual: bool

    @property
    def known(self) -> bool:
        return self.plan is not Plan.UNKNOWN


UNKNOWN_PRICE = PricePlan(Plan.UNKNOWN, False)

# Personal plan keys in the settings naming scheme
_PERSONAL_PLANS = (Plan.BASE, Plan.PREMIUM, Plan.PREMIUM_PLUS)
_PROMOTION_PLANS = (Plan.BASIC, Plan.STANDARD, Plan.PREMIUM, Plan.ELITE)


@dataclass(frozen=True)
class PriceCatalog:
    """
    Immutable id -> PricePlan table.

    Unknown or empty ids resolve to Plan.UNKNOWN; callers must treat that as
    "leave the stored plan alone" so an incomplete catalog cannot corrupt a
    subscription.
    """

    personal_prices: dict[str, PricePlan] = field(default_factory=dict)
    promotion_prices: dict[str, Plan] = field(default_factory=dict)
    app_store_products: dict[str, PricePlan] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Any) -> "PriceCatalog":
        """Build the catalog from Settings, skipping ids that are not configured."""
        personal: dict[str, PricePlan] = {}
        app_store: dict[str, PricePlan] = {}
        for plan in _PERSONAL_PLANS:
            for interval, is_annual in (("monthly", False), ("annual", True)):
                price_id = getattr(settings, f"stripe_price_{plan.value}_{interval}", "")
                if price_id:
                    personal[price_id] = PricePlan(plan, is_annual)
                product_id = getattr(settings, f"appstore_product_{plan.value}_{interval}", "")
                if product_id:
                    app_store[product_id] = PricePlan(plan, is_annual)

        promotions: dict[str, Plan] = {}
        for plan in _PROMOTION_PLANS:
            price_id = getattr(settings, f"stripe_price_promotion_{plan.value}", "")
            if price_id:
                promotions[price_id] = plan

        return cls(
            personal_prices=personal,
            promotion_prices=promotions,
            app_store_products=app_store,
        )

    def resolve(self, price_or_product_id: str | None) -> PricePlan:
        """Look up a Stripe price id or RevenueCat product id."""
        if not price_or_product_id:
            return UNKNOWN_PRICE
        if price_or_product_id in self.personal_prices:
            return self.personal_prices[price_or_product_id]
        if price_or_product_id in self.promotion_prices:
            # Promotions are bought in monthly units
            return PricePlan(self.promotion_prices[price_or_product_id], False)
        return self.app_store_products.get(price_or_product_id, UNKNOWN_PRICE)

    def price_for(self, tier: str, is_annual: bool) -> str | None:
        """Reverse lookup: the Stripe price id for a personal tier and interval."""
        for price_id, price in self.personal_prices.items():
            if price.plan.value == tier and price.is_annual == is_annual:
                return price_id
        return None

    def promotion_price_for(self, tier: str) -> str | None:
        """Reverse lookup: the Stripe price id for a community promotion tier."""
        for price_id, plan in self.promotion_prices.items():
            if plan.value == tier:
                return price_id
        return None
