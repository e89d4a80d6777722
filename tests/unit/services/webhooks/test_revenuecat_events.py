"""Unit tests for RevenueCat payload decoding."""

import uuid
from datetime import UTC, datetime

import pytest

from app.core.exceptions import DecodeError, MalformedPayloadError
from app.services.webhooks.events import (
    AppStoreBillingIssue,
    AppStoreCancellation,
    AppStoreExpiration,
    AppStoreInitialPurchase,
    AppStoreNonRenewing,
    AppStoreProductChange,
    AppStoreRenewal,
    AppStoreUncancellation,
    Provider,
    UnhandledEvent,
)
from app.services.webhooks.revenuecat_events import decode_revenuecat_event

from tests.helpers.webhook_payloads import revenuecat_event


class TestEventTypes:
    """Every handled RevenueCat type maps to its canonical event."""

    @pytest.mark.parametrize(
        ("event_type", "expected"),
        [
            ("INITIAL_PURCHASE", AppStoreInitialPurchase),
            ("RENEWAL", AppStoreRenewal),
            ("CANCELLATION", AppStoreCancellation),
            ("UNCANCELLATION", AppStoreUncancellation),
            ("NON_RENEWING_PURCHASE", AppStoreNonRenewing),
            ("EXPIRATION", AppStoreExpiration),
            ("BILLING_ISSUE", AppStoreBillingIssue),
            ("PRODUCT_CHANGE", AppStoreProductChange),
        ],
    )
    def test_maps_type(self, event_type, expected):
        event = decode_revenuecat_event(revenuecat_event(event_type, str(uuid.uuid4())))
        assert type(event) is expected

    def test_unknown_type_decodes_to_unhandled(self):
        event = decode_revenuecat_event(revenuecat_event("SUBSCRIBER_ALIAS", str(uuid.uuid4())))
        assert event == UnhandledEvent(Provider.REVENUECAT, "SUBSCRIBER_ALIAS", "rc_evt_1")

    def test_test_event_is_unhandled(self):
        event = decode_revenuecat_event({"event": {"type": "TEST", "id": "rc_test"}})
        assert isinstance(event, UnhandledEvent)

    def test_missing_type_is_malformed(self):
        with pytest.raises(MalformedPayloadError):
            decode_revenuecat_event({"event": {"app_user_id": str(uuid.uuid4())}})

    def test_type_at_root_is_accepted(self):
        user_id = uuid.uuid4()
        body = {"type": "RENEWAL", "app_user_id": str(user_id), "event": {"id": "rc_1"}}
        event = decode_revenuecat_event(body)
        assert isinstance(event, AppStoreRenewal)
        assert event.principal_id == user_id


class TestFields:
    """Field extraction from the RevenueCat event body."""

    def test_reads_user_product_and_dates(self):
        user_id = uuid.uuid4()
        event = decode_revenuecat_event(revenuecat_event("INITIAL_PURCHASE", str(user_id)))
        assert event.principal_id == user_id
        assert event.product_id == "app_premium_monthly"
        assert event.purchased_at == datetime.fromtimestamp(1_700_000_000, tz=UTC)
        assert event.expires_at == datetime.fromtimestamp(1_702_592_000, tz=UTC)

    def test_prefers_original_transaction_id(self):
        event = decode_revenuecat_event(revenuecat_event("RENEWAL", str(uuid.uuid4())))
        assert event.transaction_id == "1000000000000001"

    def test_falls_back_to_transaction_id(self):
        body = revenuecat_event("RENEWAL", str(uuid.uuid4()), original_transaction_id=None)
        event = decode_revenuecat_event(body)
        assert event.transaction_id == "1000000000000099"

    def test_product_change_uses_new_product(self):
        body = revenuecat_event(
            "PRODUCT_CHANGE", str(uuid.uuid4()), new_product_id="app_premium_annual"
        )
        event = decode_revenuecat_event(body)
        assert event.product_id == "app_premium_annual"

    def test_anonymous_app_user_id_has_no_principal(self):
        event = decode_revenuecat_event(
            revenuecat_event("INITIAL_PURCHASE", "$RCAnonymousID:abc123")
        )
        assert event.principal_id is None

    def test_missing_app_user_id_is_decode_error(self):
        with pytest.raises(DecodeError):
            decode_revenuecat_event(revenuecat_event("INITIAL_PURCHASE", None))

    def test_missing_dates_are_none(self):
        body = revenuecat_event(
            "NON_RENEWING_PURCHASE", str(uuid.uuid4()), expiration_at_ms=None
        )
        event = decode_revenuecat_event(body)
        assert event.expires_at is None
