"""Decode RevenueCat webhook payloads into canonical events."""

from typing import Any

from app.core.exceptions import DecodeError, MalformedPayloadError
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
    Provider,
    UnhandledEvent,
    WebhookEvent,
    as_dict,
    from_unix_ms,
    optional_str,
    parse_uuid,
)

REVENUECAT_EVENTS: dict[str, type[AppStoreEvent]] = {
    "INITIAL_PURCHASE": AppStoreInitialPurchase,
    "RENEWAL": AppStoreRenewal,
    "CANCELLATION": AppStoreCancellation,
    "UNCANCELLATION": AppStoreUncancellation,
    "NON_RENEWING_PURCHASE": AppStoreNonRenewing,
    "EXPIRATION": AppStoreExpiration,
    "BILLING_ISSUE": AppStoreBillingIssue,
    "PRODUCT_CHANGE": AppStoreProductChange,
}


def decode_revenuecat_event(payload: Any) -> WebhookEvent:
    """
    Turn a RevenueCat webhook body into a canonical event.

    The event lives under "event"; app_user_id is read from there, falling
    back to the body root for older payloads. Every handled type needs an
    app_user_id. One that is not a UUID (an anonymous RevenueCat id) decodes
    with principal_id=None and is reported as a lookup miss downstream.
    """
    body = as_dict(payload)
    event = as_dict(body.get("event"))
    event_type = optional_str(event.get("type")) or optional_str(body.get("type"))
    if event_type is None:
        raise MalformedPayloadError("RevenueCat event has no type")
    event_id = optional_str(event.get("id")) or "unknown"

    event_cls = REVENUECAT_EVENTS.get(event_type)
    if event_cls is None:
        return UnhandledEvent(Provider.REVENUECAT, event_type, event_id)

    app_user_id = optional_str(event.get("app_user_id")) or optional_str(body.get("app_user_id"))
    if app_user_id is None:
        raise DecodeError(f"{event_type}: missing required field 'app_user_id'")

    # PRODUCT_CHANGE reports the product being switched to separately
    product_id = optional_str(event.get("new_product_id")) or optional_str(event.get("product_id"))

    return event_cls(
        event_id=event_id,
        principal_id=parse_uuid(app_user_id),
        product_id=product_id,
        transaction_id=optional_str(event.get("original_transaction_id"))
        or optional_str(event.get("transaction_id")),
        purchased_at=from_unix_ms(event.get("purchased_at_ms")),
        expires_at=from_unix_ms(event.get("expiration_at_ms")),
    )
