"""Unit tests for StripeService — payment integration."""

import uuid
from unittest.mock import MagicMock, patch

import pytest
from stripe import StripeError

from app.services.stripe_service import StripeService


class TestCreateCheckoutSession:
    """Tests for personal plan checkout sessions."""

    @patch("app.services.stripe_service.stripe")
    def test_carries_correlation_metadata(self, mock_stripe):
        mock_stripe.checkout.Session.create.return_value = MagicMock(
            url="https://checkout.stripe.com/test_session"
        )
        user_id = uuid.uuid4()

        result = StripeService.create_checkout_session(
            user_id=user_id,
            tier="premium",
            is_annual=True,
            price_id="price_premium_annual",
            success_url="https://app.com/success",
            cancel_url="https://app.com/cancel",
        )

        assert result == "https://checkout.stripe.com/test_session"
        call_kwargs = mock_stripe.checkout.Session.create.call_args[1]
        assert call_kwargs["mode"] == "subscription"
        assert call_kwargs["line_items"] == [{"price": "price_premium_annual", "quantity": 1}]
        metadata = call_kwargs["metadata"]
        assert metadata["principalType"] == "user"
        assert metadata["principalId"] == str(user_id)
        assert metadata["userId"] == str(user_id)
        assert metadata["billingInterval"] == "annual"
        assert call_kwargs["subscription_data"]["metadata"] == metadata
        assert "customer" not in call_kwargs

    @patch("app.services.stripe_service.stripe")
    def test_reuses_existing_customer(self, mock_stripe):
        mock_stripe.checkout.Session.create.return_value = MagicMock(url="https://x")

        StripeService.create_checkout_session(
            uuid.uuid4(), "base", False, "price_base_monthly", "s", "c", customer_id="cus_123"
        )

        call_kwargs = mock_stripe.checkout.Session.create.call_args[1]
        assert call_kwargs["customer"] == "cus_123"

    @patch("app.services.stripe_service.stripe")
    def test_raises_on_stripe_error(self, mock_stripe):
        mock_stripe.checkout.Session.create.side_effect = StripeError("API error")
        with pytest.raises(StripeError):
            StripeService.create_checkout_session(
                uuid.uuid4(), "base", False, "price_base_monthly", "s", "c"
            )


class TestCreatePromotionCheckoutSession:
    @patch("app.services.stripe_service.stripe")
    def test_one_time_payment_with_duration_quantity(self, mock_stripe):
        mock_stripe.checkout.Session.create.return_value = MagicMock(url="https://promo")
        user_id, community_id = uuid.uuid4(), uuid.uuid4()

        result = StripeService.create_promotion_checkout_session(
            user_id=user_id,
            community_id=community_id,
            tier="elite",
            duration_months=3,
            price_id="price_promo_elite",
            success_url="s",
            cancel_url="c",
        )

        assert result == "https://promo"
        call_kwargs = mock_stripe.checkout.Session.create.call_args[1]
        assert call_kwargs["mode"] == "payment"
        assert call_kwargs["line_items"] == [{"price": "price_promo_elite", "quantity": 3}]
        metadata = call_kwargs["metadata"]
        assert metadata["principalType"] == "community"
        assert metadata["principalId"] == str(community_id)
        assert metadata["createdBy"] == str(user_id)
        assert metadata["type"] == "community_promotion"
        assert metadata["durationMonths"] == "3"


class TestCreatePortalSession:
    @patch("app.services.stripe_service.stripe")
    def test_returns_portal_url(self, mock_stripe):
        mock_stripe.billing_portal.Session.create.return_value = MagicMock(
            url="https://billing.stripe.com/session"
        )

        result = StripeService.create_portal_session("cus_123", "https://app.com/manage")

        assert result == "https://billing.stripe.com/session"
        mock_stripe.billing_portal.Session.create.assert_called_once_with(
            customer="cus_123", return_url="https://app.com/manage"
        )


class TestLookups:
    """Tests for the lookups used when webhook payloads are thin."""

    @patch("app.services.stripe_service.stripe")
    def test_get_subscription_returns_plain_dict(self, mock_stripe):
        stripe_sub = MagicMock()
        stripe_sub.to_dict.return_value = {"id": "sub_123", "status": "active"}
        mock_stripe.Subscription.retrieve.return_value = stripe_sub

        assert StripeService.get_subscription("sub_123") == {"id": "sub_123", "status": "active"}

    @patch("app.services.stripe_service.stripe")
    def test_get_subscription_propagates_errors(self, mock_stripe):
        mock_stripe.Subscription.retrieve.side_effect = StripeError("Not found")
        with pytest.raises(StripeError):
            StripeService.get_subscription("sub_missing")

    @patch("app.services.stripe_service.stripe")
    def test_get_session_price_id_from_expanded_price(self, mock_stripe):
        mock_stripe.checkout.Session.list_line_items.return_value = MagicMock(
            data=[{"price": {"id": "price_promo_basic"}}]
        )
        assert StripeService.get_session_price_id("cs_123") == "price_promo_basic"

    @patch("app.services.stripe_service.stripe")
    def test_get_session_price_id_no_items(self, mock_stripe):
        mock_stripe.checkout.Session.list_line_items.return_value = MagicMock(data=[])
        assert StripeService.get_session_price_id("cs_123") is None

    @patch("app.services.stripe_service.stripe")
    def test_get_checkout_session_returns_plain_dict(self, mock_stripe):
        session = MagicMock()
        session.to_dict.return_value = {"id": "cs_123", "payment_status": "paid"}
        mock_stripe.checkout.Session.retrieve.return_value = session

        assert StripeService.get_checkout_session("cs_123")["payment_status"] == "paid"
        mock_stripe.checkout.Session.retrieve.assert_called_once_with("cs_123")


class TestCancelSubscription:
    """Tests for cancel-at-period-end."""

    @patch("app.services.stripe_service.stripe")
    def test_cancels_at_period_end(self, mock_stripe):
        stripe_sub = MagicMock()
        stripe_sub.to_dict.return_value = {"id": "sub_123", "cancel_at": 1_800_000_000}
        mock_stripe.Subscription.modify.return_value = stripe_sub

        result = StripeService.cancel_subscription("sub_123")

        assert result["cancel_at"] == 1_800_000_000
        mock_stripe.Subscription.modify.assert_called_once_with(
            "sub_123", cancel_at_period_end=True
        )

    @patch("app.services.stripe_service.stripe")
    def test_propagates_errors(self, mock_stripe):
        mock_stripe.Subscription.modify.side_effect = StripeError("No such subscription")
        with pytest.raises(StripeError):
            StripeService.cancel_subscription("sub_missing")
