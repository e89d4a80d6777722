"""Configuration package."""

from app.config.plans import PLANS, PROMOTIONS, PlanConfig, PromotionConfig, get_plan, get_promotion
from app.config.settings import Settings, settings

__all__ = [
    "PlanConfig",
    "PromotionConfig",
    "PLANS",
    "PROMOTIONS",
    "get_plan",
    "get_promotion",
    "Settings",
    "settings",
]
