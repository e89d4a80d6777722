"""
Subscription reconciler.

Applies canonical webhook events from both providers to the one subscription
row each principal owns. Personal subscriptions move between

    Free -> ActivePrimary | ActiveAppStore -> PendingCancellation -> Free

and community promotions are time-boxed windows extended or replaced by
each purchase. Two policies here are deliberate and named on
ReconcilePolicy rather than hard-coded:

- lookup misses (sandbox traffic, principals we never saw) are successes,
  because a provider redelivering them can never change the outcome
- a failed entitlement lookup falls open to free instead of blocking the
  cancellation from being recorded

There is no per-principal event ordering: the last delivery applied wins.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, TypeVar, assert_never

from sqlalchemy.ext.asyncio import AsyncSession
from stripe import StripeError

from app.core.exceptions import StoreError
from app.domain.principal_operations import principal_ops
from app.domain.subscription_operations import subscription_ops
from app.models.subscription import PrincipalType, Subscription, SubscriptionSource
from app.services.stripe_service import stripe_service
from app.services.webhooks.catalog import PriceCatalog
from app.services.webhooks.entitlements import FREE_FALLBACK, EntitlementFallback, FallbackPlan
from app.services.webhooks.events import (
    AppStoreBillingIssue,
    AppStoreCancellation,
    AppStoreEvent,
    AppStoreExpiration,
    AppStoreInitialPurchase,
    AppStoreNonRenewing,
    AppStoreProductChange,
    AppStoreRenewal,
    AppStoreUncancellation,
    CheckoutCompleted,
    InvoiceFailed,
    InvoicePaid,
    PrincipalRef,
    SubscriptionDeleted,
    SubscriptionUpdated,
    TrialWillEnd,
    UnhandledEvent,
    WebhookEvent,
    from_unix,
    optional_str,
)
from app.services.webhooks.promotions import (
    PromotionPurchase,
    PromotionState,
    compute_promotion_expiration,
    normalize_duration,
)
from app.services.webhooks.stripe_events import first_price_id

logger = logging.getLogger(__name__)

T = TypeVar("T")

ACTIVE_STATUS = "active"


def utcnow() -> datetime:
    return datetime.now(UTC)


class ApplyOutcome(str, Enum):
    """What happened to the store for one event."""

    APPLIED = "applied"  # At least one field written
    UNCHANGED = "unchanged"  # Row already matched the event (redelivery)
    LOOKUP_MISS = "lookup_miss"  # No principal to apply to; success by policy
    IGNORED = "ignored"  # Event kind or context we deliberately do not act on


@dataclass(frozen=True)
class ApplyResult:
    outcome: ApplyOutcome
    principal: PrincipalRef | None = None


@dataclass(frozen=True)
class ReconcilePolicy:
    """
    Product decisions about failure and payment-issue handling.

    entitlement_lookup_fails_open: a failed entitlement lookup downgrades to
        free rather than failing the event.
    billing_issue_grace_days: 0 downgrades immediately on a failed payment or
        app store billing issue; N keeps access for N days and leaves the
        downgrade to the provider's later terminal event.
    deadline_seconds: how long one delivery may take to apply and commit
        before it is abandoned and answered with 500.
    """

    entitlement_lookup_fails_open: bool = True
    billing_issue_grace_days: int = 0
    deadline_seconds: float = 10.0

    @classmethod
    def from_settings(cls, settings: Any) -> "ReconcilePolicy":
        return cls(
            billing_issue_grace_days=max(0, settings.billing_issue_grace_days),
            deadline_seconds=settings.webhook_deadline_seconds,
        )


def _principal_of(subscription: Subscription) -> PrincipalRef:
    return PrincipalRef(PrincipalType(subscription.principal_type), subscription.principal_id)


def _downgrade(fallback: FallbackPlan) -> dict[str, Any]:
    """Terminal state: no provider owns the subscription any more."""
    return {
        "active": fallback.active,
        "plan": fallback.plan,
        "is_annual": False,
        "source": SubscriptionSource.NONE,
        "cancel_at": None,
    }


class SubscriptionReconciler:
    """
    Dispatches canonical events to the store.

    One instance per delivery; holds the request's session and the injected
    collaborators so tests can swap any of them.
    """

    def __init__(
        self,
        db: AsyncSession,
        catalog: PriceCatalog,
        policy: ReconcilePolicy | None = None,
        provider: Any = stripe_service,
        subscriptions: Any = subscription_ops,
        principals: Any = principal_ops,
        fallback: EntitlementFallback | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.catalog = catalog
        self.policy = policy or ReconcilePolicy()
        self.provider = provider
        self.subscriptions = subscriptions
        self.principals = principals
        self.fallback = fallback or EntitlementFallback(
            fails_open=self.policy.entitlement_lookup_fails_open
        )
        self.clock = clock

    async def apply(self, event: WebhookEvent) -> ApplyResult:
        """Apply one event. Raises StoreError on store or provider failures."""
        match event:
            case CheckoutCompleted():
                return await self._checkout_completed(event)
            case InvoicePaid():
                return await self._invoice_paid(event)
            case InvoiceFailed():
                return await self._invoice_failed(event)
            case SubscriptionUpdated():
                return await self._subscription_updated(event)
            case SubscriptionDeleted():
                return await self._subscription_deleted(event)
            case TrialWillEnd():
                logger.info(
                    f"Trial ending for subscription {event.subscription_id} at {event.trial_end}"
                )
                return ApplyResult(ApplyOutcome.IGNORED)
            case (
                AppStoreInitialPurchase()
                | AppStoreRenewal()
                | AppStoreUncancellation()
                | AppStoreNonRenewing()
                | AppStoreProductChange()
            ):
                return await self._app_store_activated(event)
            case AppStoreCancellation() | AppStoreExpiration():
                return await self._app_store_ended(event)
            case AppStoreBillingIssue():
                return await self._app_store_billing_issue(event)
            case UnhandledEvent():
                logger.info(
                    f"Ignoring unhandled {event.provider.value} event type: "
                    f"{event.event_type} ({event.event_id})"
                )
                return ApplyResult(ApplyOutcome.IGNORED)
            case _:
                assert_never(event)

    # ─────────────────────────────────────────────────────────────────────────
    # Store and provider helpers
    # ─────────────────────────────────────────────────────────────────────────

    async def _fetch(self, call: Callable[..., T], *args: Any) -> T:
        """Run a blocking provider SDK call off the event loop."""
        try:
            return await asyncio.to_thread(call, *args)
        except StripeError as e:
            raise StoreError(f"Stripe lookup failed: {e}") from e

    def _drop_invalid_expiration(
        self,
        changes: dict[str, Any],
        existing: Subscription | None,
    ) -> dict[str, Any]:
        """Never write an expiration at or before the purchase date."""
        expiration = changes.get("expiration_date")
        if expiration is None:
            return changes

        purchase = changes.get("purchase_date")
        if purchase is None and existing is not None:
            purchase = existing.purchase_date
        if purchase is not None and expiration <= purchase:
            logger.warning(
                f"Dropping expiration {expiration.isoformat()} not after "
                f"purchase {purchase.isoformat()}"
            )
            return {k: v for k, v in changes.items() if k != "expiration_date"}
        return changes

    async def _write(
        self,
        principal: PrincipalRef,
        existing: Subscription | None,
        changes: dict[str, Any],
    ) -> ApplyResult:
        """Create the row on a principal's first event, otherwise diff-and-update."""
        changes = self._drop_invalid_expiration(changes, existing)
        now = self.clock()

        if existing is None:
            await self.subscriptions.create_for_principal(
                self.db, principal.type, principal.id, changes, now
            )
            return ApplyResult(ApplyOutcome.APPLIED, principal)

        written = await self.subscriptions.apply_changes(self.db, existing, changes, now)
        if not written:
            logger.info(f"Subscription for {principal} already up to date")
            return ApplyResult(ApplyOutcome.UNCHANGED, principal)

        logger.info(f"Updated subscription for {principal}: {sorted(written)}")
        return ApplyResult(ApplyOutcome.APPLIED, principal)

    async def _lookup_external(self, external_id: str, event_id: str) -> Subscription | None:
        existing = await self.subscriptions.get_by_external_id(self.db, external_id)
        if existing is None:
            logger.info(
                f"No subscription matches {external_id} ({event_id}); treating as lookup miss"
            )
        return existing

    async def _principal_exists(self, principal: PrincipalRef, event_id: str) -> bool:
        if await self.principals.exists(self.db, principal.type, principal.id):
            return True
        logger.info(f"Unknown {principal} for event {event_id}; treating as lookup miss")
        return False

    def _plan_changes(self, price_or_product_id: str | None) -> dict[str, Any]:
        """Plan and interval from the catalog; nothing when the id is unknown."""
        price = self.catalog.resolve(price_or_product_id)
        if not price.known:
            if price_or_product_id:
                logger.warning(
                    f"Unknown price/product id {price_or_product_id}; plan left unchanged"
                )
            return {}
        return {"plan": price.plan, "is_annual": price.is_annual}

    # ─────────────────────────────────────────────────────────────────────────
    # Stripe events
    # ─────────────────────────────────────────────────────────────────────────

    async def _checkout_completed(self, event: CheckoutCompleted) -> ApplyResult:
        principal = event.principal
        if principal is None:
            logger.info(
                f"Checkout session {event.session_id} has no correlation metadata; skipping"
            )
            return ApplyResult(ApplyOutcome.LOOKUP_MISS)

        if not await self._principal_exists(principal, event.event_id):
            return ApplyResult(ApplyOutcome.LOOKUP_MISS, principal)

        if event.is_promotion:
            return await self._promotion_purchased(event, principal)

        # Personal checkouts always carry a subscription id (checked by the decoder)
        subscription_id = event.subscription_id or ""
        stripe_sub = await self._fetch(self.provider.get_subscription, subscription_id)
        active = stripe_sub.get("status") == ACTIVE_STATUS
        existing = await self.subscriptions.get_for_principal(self.db, principal.type, principal.id)

        if existing is not None and existing.owned_by_app_store:
            if not active:
                # Only an activation takes ownership from the other provider
                logger.info(
                    f"Ignoring {stripe_sub.get('status')} Stripe checkout for {principal}: "
                    f"app store owns the subscription"
                )
                return ApplyResult(ApplyOutcome.IGNORED, principal)
            logger.warning(
                f"Stripe checkout for {principal} displaces an active app store subscription"
            )

        changes: dict[str, Any] = {
            "active": active,
            "source": SubscriptionSource.PRIMARY_PROVIDER if active else SubscriptionSource.NONE,
            "external_subscription_id": subscription_id,
            "cancel_at": None,
            **self._plan_changes(first_price_id(stripe_sub)),
        }
        customer_id = event.customer_id or optional_str(stripe_sub.get("customer"))
        if customer_id:
            changes["external_customer_id"] = customer_id
        if existing is None or existing.external_subscription_id != subscription_id:
            changes["purchase_date"] = from_unix(stripe_sub.get("start_date")) or self.clock()

        logger.info(
            f"Checkout completed for {principal}: subscription {subscription_id} active={active}"
        )
        return await self._write(principal, existing, changes)

    async def _promotion_purchased(
        self, event: CheckoutCompleted, principal: PrincipalRef
    ) -> ApplyResult:
        payment_id = event.payment_intent_id or ""
        existing = await self.subscriptions.get_for_principal(self.db, principal.type, principal.id)
        if existing is not None and existing.external_subscription_id == payment_id:
            # Redelivery: extending again would double-count the purchase
            logger.info(f"Promotion payment {payment_id} already applied to {principal}")
            return ApplyResult(ApplyOutcome.UNCHANGED, principal)

        price_id = event.price_id or await self._fetch(
            self.provider.get_session_price_id, event.session_id
        )
        price = self.catalog.resolve(price_id)
        if not price.known:
            logger.warning(
                f"Promotion session {event.session_id} has unknown price {price_id}; "
                f"treating as lookup miss"
            )
            return ApplyResult(ApplyOutcome.LOOKUP_MISS, principal)

        now = self.clock()
        current = (
            PromotionState(existing.active, existing.plan, existing.expiration_date)
            if existing is not None
            else None
        )
        purchase = PromotionPurchase(
            price.plan.value, event.duration_months, event.metadata_expiration
        )
        expiration = compute_promotion_expiration(current, purchase, now)

        changes: dict[str, Any] = {
            "active": True,
            "plan": price.plan,
            "is_annual": False,
            "source": SubscriptionSource.PRIMARY_PROVIDER,
            "external_subscription_id": payment_id,
            "purchase_date": now,
            "expiration_date": expiration,
            "duration_months": normalize_duration(event.duration_months),
            "created_by": event.created_by,
            "cancel_at": None,
        }
        if event.customer_id:
            changes["external_customer_id"] = event.customer_id
        logger.info(
            f"Promotion {price.plan.value} for {principal} runs until {expiration.isoformat()}"
        )
        return await self._write(principal, existing, changes)

    async def _invoice_paid(self, event: InvoicePaid) -> ApplyResult:
        if event.subscription_id is None:
            logger.info(f"Invoice {event.invoice_id} is not for a subscription; skipping")
            return ApplyResult(ApplyOutcome.IGNORED)

        existing = await self._lookup_external(event.subscription_id, event.event_id)
        if existing is None:
            return ApplyResult(ApplyOutcome.LOOKUP_MISS)

        stripe_sub = await self._fetch(self.provider.get_subscription, event.subscription_id)
        active = stripe_sub.get("status") == ACTIVE_STATUS
        changes = {
            "active": active,
            "source": SubscriptionSource.PRIMARY_PROVIDER if active else SubscriptionSource.NONE,
        }
        return await self._write(_principal_of(existing), existing, changes)

    async def _invoice_failed(self, event: InvoiceFailed) -> ApplyResult:
        if event.subscription_id is None:
            logger.info(f"Failed invoice {event.invoice_id} is not for a subscription; skipping")
            return ApplyResult(ApplyOutcome.IGNORED)

        existing = await self._lookup_external(event.subscription_id, event.event_id)
        if existing is None:
            return ApplyResult(ApplyOutcome.LOOKUP_MISS)

        principal = _principal_of(existing)
        logger.warning(f"Payment failed for {principal} (invoice {event.invoice_id})")
        return await self._write(principal, existing, self._billing_issue_changes(existing))

    async def _subscription_updated(self, event: SubscriptionUpdated) -> ApplyResult:
        existing = await self._lookup_external(event.subscription_id, event.event_id)
        if existing is None:
            return ApplyResult(ApplyOutcome.LOOKUP_MISS)

        active = event.status == ACTIVE_STATUS
        changes: dict[str, Any] = {
            "active": active,
            "source": SubscriptionSource.PRIMARY_PROVIDER if active else SubscriptionSource.NONE,
            # A cleared cancel_at is a reactivation
            "cancel_at": event.cancel_at,
            **self._plan_changes(event.price_id),
        }
        return await self._write(_principal_of(existing), existing, changes)

    async def _subscription_deleted(self, event: SubscriptionDeleted) -> ApplyResult:
        existing = await self._lookup_external(event.subscription_id, event.event_id)
        if existing is None:
            return ApplyResult(ApplyOutcome.LOOKUP_MISS)

        principal = _principal_of(existing)
        fallback = await self.fallback.resolve(self.db, principal)
        logger.info(
            f"Stripe subscription {event.subscription_id} ended for {principal}; "
            f"now {fallback.plan}"
        )
        return await self._write(principal, existing, _downgrade(fallback))

    def _billing_issue_changes(self, existing: Subscription) -> dict[str, Any]:
        grace_days = self.policy.billing_issue_grace_days
        if grace_days <= 0:
            return _downgrade(FREE_FALLBACK)

        now = self.clock()
        if existing.expiration_date is not None and existing.expiration_date > now:
            # Grace already running; repeated failures do not extend it
            return {}
        return {"expiration_date": now + timedelta(days=grace_days)}

    # ─────────────────────────────────────────────────────────────────────────
    # App store events
    # ─────────────────────────────────────────────────────────────────────────

    async def _app_store_target(
        self, event: AppStoreEvent
    ) -> tuple[PrincipalRef | None, Subscription | None]:
        if event.principal_id is None:
            logger.info(f"App store event {event.event_id} has no known app_user_id; lookup miss")
            return None, None
        principal = PrincipalRef(PrincipalType.USER, event.principal_id)
        existing = await self.subscriptions.get_for_principal(self.db, principal.type, principal.id)
        return principal, existing

    async def _app_store_activated(self, event: AppStoreEvent) -> ApplyResult:
        principal, existing = await self._app_store_target(event)
        if principal is None:
            return ApplyResult(ApplyOutcome.LOOKUP_MISS)
        if existing is None and not await self._principal_exists(principal, event.event_id):
            return ApplyResult(ApplyOutcome.LOOKUP_MISS, principal)

        if existing is not None and existing.owned_by_primary:
            logger.warning(
                f"App store {type(event).__name__} for {principal} displaces an active "
                f"Stripe subscription"
            )

        changes: dict[str, Any] = {
            "active": True,
            "source": SubscriptionSource.APP_STORE_PROVIDER,
            "cancel_at": None,
            **self._plan_changes(event.product_id),
        }
        if event.transaction_id:
            changes["external_subscription_id"] = event.transaction_id
        if event.purchased_at:
            changes["purchase_date"] = event.purchased_at
        if event.expires_at:
            changes["expiration_date"] = event.expires_at

        logger.info(f"App store {type(event).__name__} for {principal}")
        return await self._write(principal, existing, changes)

    async def _app_store_ended(self, event: AppStoreEvent) -> ApplyResult:
        principal, existing = await self._app_store_target(event)
        if principal is None or existing is None:
            return ApplyResult(ApplyOutcome.LOOKUP_MISS, principal)
        if existing.owned_by_primary:
            logger.info(
                f"Ignoring app store {type(event).__name__} for {principal}: "
                f"Stripe owns the subscription"
            )
            return ApplyResult(ApplyOutcome.IGNORED, principal)

        fallback = await self.fallback.resolve(self.db, principal)
        logger.info(f"App store {type(event).__name__} for {principal}; now {fallback.plan}")
        return await self._write(principal, existing, _downgrade(fallback))

    async def _app_store_billing_issue(self, event: AppStoreBillingIssue) -> ApplyResult:
        principal, existing = await self._app_store_target(event)
        if principal is None or existing is None:
            return ApplyResult(ApplyOutcome.LOOKUP_MISS, principal)
        if existing.owned_by_primary:
            logger.info(
                f"Ignoring app store billing issue for {principal}: Stripe owns the subscription"
            )
            return ApplyResult(ApplyOutcome.IGNORED, principal)

        logger.warning(f"App store billing issue for {principal}")
        return await self._write(principal, existing, self._billing_issue_changes(existing))
