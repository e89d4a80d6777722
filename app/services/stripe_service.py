"""Stripe payment service: outbound sessions and lookups for thin webhook payloads."""

import logging
import uuid as uuid_pkg
from typing import Any

import stripe
from stripe import StripeError

from app.config import settings
from app.models.subscription import PrincipalType

logger = logging.getLogger(__name__)

# Initialize Stripe with secret key
stripe.api_key = settings.stripe_secret_key


def _billing_interval(is_annual: bool) -> str:
    return "annual" if is_annual else "monthly"


def _to_dict(obj: Any) -> dict[str, Any]:
    """Plain nested dict from a StripeObject, across SDK versions."""
    if isinstance(obj, dict) and not hasattr(obj, "to_dict"):
        return obj
    to_dict = getattr(obj, "to_dict", None) or getattr(obj, "to_dict_recursive", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


class StripeService:
    """
    Handles all Stripe API interactions.

    All methods are static, synchronous and stateless; the webhook path calls
    them through asyncio.to_thread. Errors propagate as StripeError so the
    caller decides whether a failure is retryable.

    Checkout sessions carry the correlation metadata that webhooks later use
    to find the principal:
    - principalType / principalId: who the purchase is for
    - tier / billingInterval: what was offered (display only)
    - createdBy / durationMonths: community promotions
    The legacy keys (userId, communityId, type) are written too so that
    sessions remain readable by older consumers.
    """

    @staticmethod
    def create_checkout_session(
        user_id: uuid_pkg.UUID,
        tier: str,
        is_annual: bool,
        price_id: str,
        success_url: str,
        cancel_url: str,
        customer_id: str | None = None,
    ) -> str:
        """
        Create a Stripe Checkout session for a personal plan subscription.

        Returns the checkout session URL.
        """
        interval = _billing_interval(is_annual)
        metadata = {
            "principalType": PrincipalType.USER.value,
            "principalId": str(user_id),
            "userId": str(user_id),
            "tier": tier,
            "billingInterval": interval,
            "source": "stripe",
        }

        params: dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
        }
        if customer_id:
            params["customer"] = customer_id

        try:
            session = stripe.checkout.Session.create(**params)
            logger.info(f"Created checkout session for user {user_id}, tier {tier} ({interval})")
            return session.url or ""
        except StripeError as e:
            logger.error(f"Failed to create checkout session: {e}")
            raise

    @staticmethod
    def create_promotion_checkout_session(
        user_id: uuid_pkg.UUID,
        community_id: uuid_pkg.UUID,
        tier: str,
        duration_months: int,
        price_id: str,
        success_url: str,
        cancel_url: str,
    ) -> str:
        """
        Create a one-time payment Checkout session for a community promotion.

        The promotion price is per month, so quantity is the duration.
        Returns the checkout session URL.
        """
        metadata = {
            "principalType": PrincipalType.COMMUNITY.value,
            "principalId": str(community_id),
            "createdBy": str(user_id),
            "type": "community_promotion",
            "communityId": str(community_id),
            "userId": str(user_id),
            "tier": tier,
            "billingInterval": "monthly",
            "durationMonths": str(duration_months),
            "source": "stripe",
        }

        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                line_items=[{"price": price_id, "quantity": duration_months}],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
            )
            logger.info(
                f"Created promotion checkout session for community {community_id}, "
                f"tier {tier}, {duration_months} month(s)"
            )
            return session.url or ""
        except StripeError as e:
            logger.error(f"Failed to create promotion checkout session: {e}")
            raise

    @staticmethod
    def create_portal_session(customer_id: str, return_url: str) -> str:
        """
        Create a Stripe Customer Portal session for self-service billing.

        Returns the portal session URL.
        """
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
            )
            return session.url
        except StripeError as e:
            logger.error(f"Failed to create portal session: {e}")
            raise

    @staticmethod
    def cancel_subscription(stripe_subscription_id: str) -> dict[str, Any]:
        """
        Cancel a Stripe subscription at period end.

        Returns the updated subscription; its cancel_at is the end of the
        current billing cycle.
        """
        try:
            sub = stripe.Subscription.modify(
                stripe_subscription_id,
                cancel_at_period_end=True,
            )
            logger.info(f"Marked subscription {stripe_subscription_id} for cancellation")
            return _to_dict(sub)
        except StripeError as e:
            logger.error(f"Failed to cancel subscription: {e}")
            raise

    @staticmethod
    def get_checkout_session(session_id: str) -> dict[str, Any]:
        """Retrieve a Checkout session by ID (after the success redirect)."""
        try:
            session = stripe.checkout.Session.retrieve(session_id)
            return _to_dict(session)
        except StripeError as e:
            logger.error(f"Failed to retrieve checkout session {session_id}: {e}")
            raise

    @staticmethod
    def get_subscription(stripe_subscription_id: str) -> dict[str, Any]:
        """Retrieve a Stripe subscription by ID."""
        try:
            sub = stripe.Subscription.retrieve(stripe_subscription_id)
            return _to_dict(sub)
        except StripeError as e:
            logger.error(f"Failed to retrieve subscription {stripe_subscription_id}: {e}")
            raise

    @staticmethod
    def get_session_price_id(session_id: str) -> str | None:
        """Price ID of the first line item of a checkout session."""
        try:
            line_items = stripe.checkout.Session.list_line_items(session_id, limit=1)
        except StripeError as e:
            logger.error(f"Failed to list line items for session {session_id}: {e}")
            raise

        for item in line_items.data:
            price = _to_dict(item).get("price")
            if isinstance(price, dict):
                return price.get("id")
            if isinstance(price, str):
                return price
        return None


# Singleton instance
stripe_service = StripeService()
