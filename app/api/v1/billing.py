"""Billing API endpoints: plans, checkout, portal, verification and cancellation via Stripe."""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from app.api.deps import Catalog, DbSession
from app.config import settings
from app.config.plans import PLANS, PROMOTION_DURATIONS, PROMOTIONS
from app.core.exceptions import NotFoundError, ValidationError
from app.domain.principal_operations import principal_ops
from app.domain.subscription_operations import subscription_ops
from app.models.subscription import Plan, PrincipalType, SubscriptionSource
from app.services.stripe_service import stripe_service
from app.services.webhooks.events import from_unix, optional_str
from app.services.webhooks.stripe_events import first_price_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])

PERSONAL_TIERS = (Plan.BASE.value, Plan.PREMIUM.value, Plan.PREMIUM_PLUS.value)

APP_STORE_MESSAGE = (
    "You have an active subscription through the App Store. "
    "Please manage it in your app or device settings."
)


# ─────────────────────────────────────────────────────────────────────────────
# Request/Response Schemas
# ─────────────────────────────────────────────────────────────────────────────


class PlanInfo(BaseModel):
    """Public personal plan information."""

    tier: str
    display_name: str
    price_monthly: int  # cents
    price_annual: int  # cents
    community_limit: int | None
    features: list[str]
    color: str
    popular: bool


class PromotionInfo(BaseModel):
    """Public community promotion information."""

    tier: str
    display_name: str
    price_monthly: int  # cents per month
    features: list[str]
    color: str
    popular: bool


class PlansResponse(BaseModel):
    plans: list[PlanInfo]
    promotions: list[PromotionInfo]
    promotion_durations: list[int]


class CheckoutRequest(BaseModel):
    """Request to create a personal plan checkout session."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: UUID = Field(alias="userId")
    tier: str
    is_annual: bool = Field(default=False, alias="isAnnual")


class PromotionCheckoutRequest(BaseModel):
    """Request to create a community promotion checkout session."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: UUID = Field(alias="userId")
    community_id: UUID = Field(alias="communityId")
    tier: str
    duration_months: int = Field(default=1, alias="durationMonths")


class CheckoutResponse(BaseModel):
    """Response with checkout URL."""

    checkout_url: str


class PortalRequest(BaseModel):
    """Request to create a portal session."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: UUID = Field(alias="userId")


class PortalResponse(BaseModel):
    """Response with portal URL."""

    portal_url: str


class VerifyRequest(BaseModel):
    """Request to verify a checkout session after the success redirect."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)


class VerifiedPurchase(BaseModel):
    """What a paid checkout session bought, resolved through the catalog."""

    id: str | None  # Stripe subscription id; None for one-time promotions
    status: str
    plan: str
    billing_interval: str
    principal_id: str | None


class VerifyResponse(BaseModel):
    success: bool
    subscription: VerifiedPurchase | None = None
    error: str | None = None


class CancelRequest(BaseModel):
    """Request to cancel a personal subscription at period end."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: UUID = Field(alias="userId")


class CancelResponse(BaseModel):
    """Response after scheduling cancellation."""

    message: str
    cancel_at: str | None  # ISO date when the subscription ends
    end_date: int | None  # Same instant as unix seconds


class SubscriptionSourceInfo(BaseModel):
    """Which provider (if any) owns a user's active subscription."""

    has_active_subscription: bool
    source: str
    plan: str
    can_purchase_web: bool
    message: str | None = None


def _checkout_urls() -> tuple[str, str]:
    success_url = f"{settings.frontend_url}/subscription/success?session_id={{CHECKOUT_SESSION_ID}}"
    cancel_url = f"{settings.frontend_url}/subscription/cancel"
    return success_url, cancel_url


# ─────────────────────────────────────────────────────────────────────────────
# Public Endpoints
# ─────────────────────────────────────────────────────────────────────────────


@router.get("/plans", response_model=PlansResponse)
async def list_plans() -> PlansResponse:
    """
    List personal plans and community promotion tiers (public endpoint).

    Returns display names, prices in cents and feature lists.
    """
    return PlansResponse(
        plans=[
            PlanInfo(
                tier=plan.tier,
                display_name=plan.display_name,
                price_monthly=plan.price_monthly,
                price_annual=plan.price_annual,
                community_limit=plan.community_limit,
                features=list(plan.features),
                color=plan.color,
                popular=plan.popular,
            )
            for plan in PLANS.values()
        ],
        promotions=[
            PromotionInfo(
                tier=promotion.tier,
                display_name=promotion.display_name,
                price_monthly=promotion.price_monthly,
                features=list(promotion.features),
                color=promotion.color,
                popular=promotion.popular,
            )
            for promotion in PROMOTIONS.values()
        ],
        promotion_durations=list(PROMOTION_DURATIONS),
    )


@router.get("/subscription-source/{user_id}", response_model=SubscriptionSourceInfo)
async def get_subscription_source(
    user_id: UUID,
    db: DbSession,
) -> SubscriptionSourceInfo:
    """
    Report whether a user may buy on the web.

    Users with an active app store subscription must manage it on their device.
    """
    if not await principal_ops.exists(db, PrincipalType.USER, user_id):
        raise NotFoundError("User")

    subscription = await subscription_ops.get_for_principal(db, PrincipalType.USER, user_id)
    if not subscription or not subscription.active:
        return SubscriptionSourceInfo(
            has_active_subscription=False,
            source=SubscriptionSource.NONE.value,
            plan=Plan.FREE.value,
            can_purchase_web=True,
        )

    app_store = subscription.owned_by_app_store
    return SubscriptionSourceInfo(
        has_active_subscription=True,
        source=subscription.source,
        plan=subscription.plan,
        can_purchase_web=not app_store,
        message=APP_STORE_MESSAGE if app_store else None,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Checkout / Portal
# ─────────────────────────────────────────────────────────────────────────────


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    request: CheckoutRequest,
    db: DbSession,
    catalog: Catalog,
) -> CheckoutResponse:
    """
    Create a Stripe Checkout session for a personal plan subscription.

    Returns a URL to redirect the user to Stripe Checkout. The session
    metadata identifies the user so the completion webhook can find them.
    """
    if not settings.stripe_enabled:
        raise HTTPException(400, "Payments not configured")

    tier = request.tier.lower()
    if tier not in PERSONAL_TIERS:
        raise ValidationError(f"Invalid tier. Must be one of: {list(PERSONAL_TIERS)}")

    if not await principal_ops.exists(db, PrincipalType.USER, request.user_id):
        raise NotFoundError("User")

    subscription = await subscription_ops.get_for_principal(db, PrincipalType.USER, request.user_id)
    if subscription and subscription.owned_by_app_store:
        raise ValidationError(APP_STORE_MESSAGE)

    price_id = catalog.price_for(tier, request.is_annual)
    if not price_id:
        interval = "annual" if request.is_annual else "monthly"
        raise ValidationError(f"No price configured for tier {tier} ({interval})")

    customer_id = subscription.external_customer_id if subscription else None
    success_url, cancel_url = _checkout_urls()

    checkout_url = stripe_service.create_checkout_session(
        user_id=request.user_id,
        tier=tier,
        is_annual=request.is_annual,
        price_id=price_id,
        success_url=success_url,
        cancel_url=cancel_url,
        customer_id=customer_id,
    )

    return CheckoutResponse(checkout_url=checkout_url)


@router.post("/promotions/checkout", response_model=CheckoutResponse)
async def create_promotion_checkout(
    request: PromotionCheckoutRequest,
    db: DbSession,
    catalog: Catalog,
) -> CheckoutResponse:
    """
    Create a one-time Stripe Checkout session for a community promotion.

    Buying the tier the community already runs extends it; any other tier
    starts a fresh window when the payment completes.
    """
    if not settings.stripe_enabled:
        raise HTTPException(400, "Payments not configured")

    tier = request.tier.lower()
    if tier not in PROMOTIONS:
        raise ValidationError(f"Invalid promotion tier. Must be one of: {list(PROMOTIONS)}")
    if request.duration_months not in PROMOTION_DURATIONS:
        raise ValidationError(
            f"Invalid duration. Must be one of: {list(PROMOTION_DURATIONS)} months"
        )

    if not await principal_ops.exists(db, PrincipalType.USER, request.user_id):
        raise NotFoundError("User")
    if not await principal_ops.exists(db, PrincipalType.COMMUNITY, request.community_id):
        raise NotFoundError("Community")

    price_id = catalog.promotion_price_for(tier)
    if not price_id:
        raise ValidationError(f"No price configured for promotion tier {tier}")

    success_url, cancel_url = _checkout_urls()
    checkout_url = stripe_service.create_promotion_checkout_session(
        user_id=request.user_id,
        community_id=request.community_id,
        tier=tier,
        duration_months=request.duration_months,
        price_id=price_id,
        success_url=success_url,
        cancel_url=cancel_url,
    )

    return CheckoutResponse(checkout_url=checkout_url)


@router.post("/portal", response_model=PortalResponse)
async def create_portal(
    request: PortalRequest,
    db: DbSession,
) -> PortalResponse:
    """
    Create a Stripe Customer Portal session for self-service billing.

    Only for subscriptions Stripe owns; app store subscriptions are managed
    on the device.
    """
    if not settings.stripe_enabled:
        raise HTTPException(400, "Payments not configured")

    subscription = await subscription_ops.get_for_principal(db, PrincipalType.USER, request.user_id)
    if subscription and subscription.owned_by_app_store:
        raise ValidationError(APP_STORE_MESSAGE)
    if not subscription or not subscription.external_customer_id:
        raise ValidationError("No Stripe subscription found. Please subscribe via the web first.")

    portal_url = stripe_service.create_portal_session(
        customer_id=subscription.external_customer_id,
        return_url=f"{settings.frontend_url}/manage-subscription",
    )

    return PortalResponse(portal_url=portal_url)


# ─────────────────────────────────────────────────────────────────────────────
# Verify / Cancel
# ─────────────────────────────────────────────────────────────────────────────


@router.post("/verify", response_model=VerifyResponse)
async def verify_checkout(
    request: VerifyRequest,
    catalog: Catalog,
) -> VerifyResponse:
    """
    Confirm a checkout session after the success redirect.

    Read-only: the subscription row is written by the webhook, this only
    reports what Stripe says was bought.
    """
    if not settings.stripe_enabled:
        raise HTTPException(400, "Payments not configured")

    session = stripe_service.get_checkout_session(request.session_id)
    if session.get("payment_status") != "paid":
        return VerifyResponse(success=False, error="Payment not completed")

    subscription_id = optional_str(session.get("subscription"))
    if subscription_id:
        stripe_sub = stripe_service.get_subscription(subscription_id)
        price_id = first_price_id(stripe_sub)
        status = str(stripe_sub.get("status") or "unknown")
    else:
        # One-time promotion payments carry no subscription
        price_id = stripe_service.get_session_price_id(request.session_id)
        status = "paid"

    price = catalog.resolve(price_id)
    interval = ("annual" if price.is_annual else "monthly") if price.known else "unknown"
    metadata = session.get("metadata") or {}

    return VerifyResponse(
        success=True,
        subscription=VerifiedPurchase(
            id=subscription_id,
            status=status,
            plan=price.plan.value,
            billing_interval=interval,
            principal_id=metadata.get("principalId") or metadata.get("userId"),
        ),
    )


@router.post("/cancel", response_model=CancelResponse)
async def cancel_subscription(
    request: CancelRequest,
    db: DbSession,
) -> CancelResponse:
    """
    Cancel a Stripe subscription at the end of the current billing period.

    Access continues until then; the later customer.subscription.deleted
    webhook performs the downgrade.
    """
    if not settings.stripe_enabled:
        raise HTTPException(400, "Payments not configured")

    subscription = await subscription_ops.get_for_principal(db, PrincipalType.USER, request.user_id)
    if subscription and subscription.owned_by_app_store:
        raise ValidationError(APP_STORE_MESSAGE)
    if (
        not subscription
        or not subscription.owned_by_primary
        or not subscription.external_subscription_id
    ):
        raise ValidationError("No active Stripe subscription to cancel")
    if subscription.cancel_at is not None:
        raise ValidationError("Subscription is already scheduled for cancellation")

    stripe_sub = stripe_service.cancel_subscription(subscription.external_subscription_id)
    cancel_at = from_unix(stripe_sub.get("cancel_at")) or from_unix(
        stripe_sub.get("current_period_end")
    )

    if cancel_at is not None:
        await subscription_ops.apply_changes(db, subscription, {"cancel_at": cancel_at})
    await db.commit()

    logger.info(f"Subscription canceled for user {request.user_id}, ends {cancel_at}")

    return CancelResponse(
        message="Subscription will be canceled at the end of the current billing cycle.",
        cancel_at=cancel_at.isoformat() if cancel_at else None,
        end_date=int(cancel_at.timestamp()) if cancel_at else None,
    )
