"""Decode Stripe webhook payloads into canonical events."""

from collections.abc import Callable
from typing import Any

from app.core.exceptions import DecodeError, MalformedPayloadError
from app.models.subscription import PrincipalType
from app.services.webhooks.events import (
    CheckoutCompleted,
    InvoiceFailed,
    InvoicePaid,
    PrincipalRef,
    Provider,
    SubscriptionDeleted,
    SubscriptionUpdated,
    TrialWillEnd,
    UnhandledEvent,
    WebhookEvent,
    as_dict,
    from_unix,
    optional_str,
    parse_iso_datetime,
    parse_uuid,
    require_str,
)

# Legacy checkout metadata marker for community promotion sessions
LEGACY_PROMOTION_TYPE = "community_promotion"


# ─────────────────────────────────────────────────────────────────────────────
# Shared extraction helpers
# ─────────────────────────────────────────────────────────────────────────────


def first_price_id(stripe_object: dict[str, Any]) -> str | None:
    """Price id of the first item of a subscription or expanded line item list."""
    items = as_dict(stripe_object.get("items")) or as_dict(stripe_object.get("line_items"))
    data = items.get("data")
    if not isinstance(data, list) or not data:
        return None
    # Expanded price objects and bare price ids are both accepted
    return optional_str(as_dict(data[0]).get("price"))


def invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    """
    Subscription id of an invoice.

    Current API versions nest it under parent.subscription_details; older
    ones put it at the top level.
    """
    details = as_dict(as_dict(invoice.get("parent")).get("subscription_details"))
    return optional_str(details.get("subscription")) or optional_str(invoice.get("subscription"))


def _parse_duration(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    return None


def _correlation(metadata: dict[str, Any]) -> PrincipalRef | None:
    """
    Recover the principal from checkout metadata.

    Sessions created by this service carry principalType/principalId.
    Older sessions carry userId, plus communityId and type=community_promotion
    for promotions.
    """
    principal_type = metadata.get("principalType")
    if principal_type in (PrincipalType.USER.value, PrincipalType.COMMUNITY.value):
        principal_id = parse_uuid(metadata.get("principalId"))
        if principal_id is None:
            return None
        return PrincipalRef(PrincipalType(principal_type), principal_id)

    if metadata.get("type") == LEGACY_PROMOTION_TYPE:
        community_id = parse_uuid(metadata.get("communityId"))
        return PrincipalRef(PrincipalType.COMMUNITY, community_id) if community_id else None

    user_id = parse_uuid(metadata.get("userId"))
    return PrincipalRef(PrincipalType.USER, user_id) if user_id else None


# ─────────────────────────────────────────────────────────────────────────────
# Per-type decoders
# ─────────────────────────────────────────────────────────────────────────────


def _decode_checkout_completed(
    event_id: str, event_type: str, session: dict[str, Any]
) -> WebhookEvent:
    session_id = require_str(session, "id", event_type)
    metadata = {k: v for k, v in as_dict(session.get("metadata")).items() if v not in ("", None)}
    principal = _correlation(metadata)

    subscription_id = optional_str(session.get("subscription"))
    payment_intent_id = optional_str(session.get("payment_intent"))

    if principal is not None:
        if principal.type is PrincipalType.USER and subscription_id is None:
            raise DecodeError(f"{event_type}: missing required field 'subscription'")
        if principal.type is PrincipalType.COMMUNITY and payment_intent_id is None:
            raise DecodeError(f"{event_type}: missing required field 'payment_intent'")

    created_by = parse_uuid(metadata.get("createdBy"))
    if created_by is None and principal is not None and principal.type is PrincipalType.COMMUNITY:
        created_by = parse_uuid(metadata.get("userId"))

    return CheckoutCompleted(
        event_id=event_id,
        session_id=session_id,
        principal=principal,
        customer_id=optional_str(session.get("customer")),
        subscription_id=subscription_id,
        payment_intent_id=payment_intent_id,
        price_id=first_price_id(session),
        tier=metadata.get("tier"),
        billing_interval=metadata.get("billingInterval"),
        created_by=created_by,
        duration_months=_parse_duration(metadata.get("durationMonths")),
        metadata_expiration=parse_iso_datetime(metadata.get("expirationDate")),
    )


def _decode_invoice_paid(event_id: str, event_type: str, invoice: dict[str, Any]) -> WebhookEvent:
    return InvoicePaid(
        event_id=event_id,
        invoice_id=require_str(invoice, "id", event_type),
        subscription_id=invoice_subscription_id(invoice),
    )


def _decode_invoice_failed(event_id: str, event_type: str, invoice: dict[str, Any]) -> WebhookEvent:
    return InvoiceFailed(
        event_id=event_id,
        invoice_id=require_str(invoice, "id", event_type),
        subscription_id=invoice_subscription_id(invoice),
    )


def _decode_subscription_updated(
    event_id: str, event_type: str, sub: dict[str, Any]
) -> WebhookEvent:
    return SubscriptionUpdated(
        event_id=event_id,
        subscription_id=require_str(sub, "id", event_type),
        status=require_str(sub, "status", event_type),
        price_id=first_price_id(sub),
        cancel_at=from_unix(sub.get("cancel_at")),
    )


def _decode_subscription_deleted(
    event_id: str, event_type: str, sub: dict[str, Any]
) -> WebhookEvent:
    return SubscriptionDeleted(
        event_id=event_id,
        subscription_id=require_str(sub, "id", event_type),
    )


def _decode_trial_will_end(event_id: str, event_type: str, sub: dict[str, Any]) -> WebhookEvent:
    return TrialWillEnd(
        event_id=event_id,
        subscription_id=require_str(sub, "id", event_type),
        trial_end=from_unix(sub.get("trial_end")),
    )


StripeDecoder = Callable[[str, str, dict[str, Any]], WebhookEvent]

STRIPE_DECODERS: dict[str, StripeDecoder] = {
    "checkout.session.completed": _decode_checkout_completed,
    "invoice.payment_succeeded": _decode_invoice_paid,
    "invoice.paid": _decode_invoice_paid,
    "invoice.payment_failed": _decode_invoice_failed,
    "customer.subscription.updated": _decode_subscription_updated,
    "customer.subscription.deleted": _decode_subscription_deleted,
    "customer.subscription.trial_will_end": _decode_trial_will_end,
}


def decode_stripe_event(payload: Any) -> WebhookEvent:
    """
    Turn a Stripe event envelope into a canonical event.

    Raises MalformedPayloadError when the envelope has no type and
    DecodeError when a handled event lacks a field it needs. Unknown types
    decode to UnhandledEvent.
    """
    envelope = as_dict(payload)
    event_type = optional_str(envelope.get("type"))
    if event_type is None:
        raise MalformedPayloadError("Stripe event has no type")
    event_id = optional_str(envelope.get("id")) or "unknown"

    decoder = STRIPE_DECODERS.get(event_type)
    if decoder is None:
        return UnhandledEvent(Provider.STRIPE, event_type, event_id)

    obj = as_dict(envelope.get("data")).get("object")
    if not isinstance(obj, dict):
        raise DecodeError(f"{event_type}: missing data.object")
    return decoder(event_id, event_type, obj)
