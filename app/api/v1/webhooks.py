"""Provider webhook endpoints for Stripe and RevenueCat."""

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import Catalog, DbSession, Policy, Secrets
from app.core.exceptions import (
    AuthenticationError,
    DecodeError,
    MalformedPayloadError,
    StoreError,
)
from app.services.webhooks.catalog import PriceCatalog
from app.services.webhooks.events import Provider, WebhookEvent
from app.services.webhooks.reconciler import ReconcilePolicy, SubscriptionReconciler
from app.services.webhooks.revenuecat_events import decode_revenuecat_event
from app.services.webhooks.signature import verify_signature
from app.services.webhooks.stripe_events import decode_stripe_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


# ─────────────────────────────────────────────────────────────────────────────
# Shared pipeline
#
# Status codes drive provider retries: 200 for anything redelivery can not
# change (including lookup misses and unknown event types), 400 for deliveries
# that are not authentic or not an event at all, 500 for failures a retry may
# fix.
# ─────────────────────────────────────────────────────────────────────────────


async def _process_webhook(
    request: Request,
    db: AsyncSession,
    provider: Provider,
    header_name: str,
    secret: str,
    tolerance: int | None,
    decode: Callable[[Any], WebhookEvent],
    catalog: PriceCatalog,
    policy: ReconcilePolicy,
) -> dict[str, str]:
    payload = await request.body()

    try:
        verify_signature(payload, request.headers.get(header_name), secret, tolerance)
    except AuthenticationError as e:
        logger.warning(f"Rejected {provider.value} webhook: {e}")
        raise HTTPException(400, "Invalid webhook signature") from None

    try:
        body = json.loads(payload)
        event = decode(body)
    except (ValueError, MalformedPayloadError) as e:
        # json.JSONDecodeError is a ValueError
        logger.warning(f"Malformed {provider.value} webhook payload: {e}")
        raise HTTPException(400, "Invalid webhook payload") from None
    except DecodeError as e:
        logger.error(f"Failed to decode {provider.value} webhook: {e}")
        raise HTTPException(500, "Webhook processing failed") from None

    event_name = type(event).__name__
    logger.info(f"Received {provider.value} webhook: {event_name} ({event.event_id})")

    reconciler = SubscriptionReconciler(db, catalog, policy)
    try:
        async with asyncio.timeout(policy.deadline_seconds):
            result = await reconciler.apply(event)
            await db.commit()
    except (StoreError, SQLAlchemyError, TimeoutError) as e:
        logger.error(f"Failed to apply {provider.value} {event_name} ({event.event_id}): {e!r}")
        raise HTTPException(500, "Webhook processing failed") from None

    logger.info(
        f"Processed {provider.value} {event_name} ({event.event_id}): {result.outcome.value}"
        + (f" for {result.principal}" if result.principal else "")
    )
    return {"status": result.outcome.value, "event_type": event_name}


# ─────────────────────────────────────────────────────────────────────────────
# Endpoints
# ─────────────────────────────────────────────────────────────────────────────


@router.post("/stripe")
async def handle_stripe_webhook(
    request: Request,
    db: DbSession,
    catalog: Catalog,
    policy: Policy,
    secrets: Secrets,
) -> dict[str, str]:
    """
    Handle Stripe webhook events.

    No authentication required (verified by the Stripe-Signature header).
    """
    return await _process_webhook(
        request,
        db,
        provider=Provider.STRIPE,
        header_name="stripe-signature",
        secret=secrets.stripe,
        tolerance=secrets.tolerance_seconds,
        decode=decode_stripe_event,
        catalog=catalog,
        policy=policy,
    )


@router.post("/revenuecat")
async def handle_revenuecat_webhook(
    request: Request,
    db: DbSession,
    catalog: Catalog,
    policy: Policy,
    secrets: Secrets,
) -> dict[str, str]:
    """
    Handle RevenueCat (app store) webhook events.

    Signed with the same timestamped HMAC scheme as Stripe, using the
    RevenueCat-Signature header and its own secret.
    """
    return await _process_webhook(
        request,
        db,
        provider=Provider.REVENUECAT,
        header_name="revenuecat-signature",
        secret=secrets.revenuecat,
        tolerance=secrets.tolerance_seconds,
        decode=decode_revenuecat_event,
        catalog=catalog,
        policy=policy,
    )
