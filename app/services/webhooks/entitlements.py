"""
Entitlement fallback for terminal subscription events.

Cancelling a paid subscription must not strip a plan granted independently
(e.g. the content creator programme). Before a user is collapsed to free we
look for an active entitlement and land on its plan instead.
"""

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import StoreError
from app.domain.entitlement_operations import entitlement_ops
from app.models.subscription import Plan, PrincipalType
from app.services.webhooks.events import PrincipalRef

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FallbackPlan:
    """Where a terminal event leaves the principal."""

    plan: str
    active: bool


FREE_FALLBACK = FallbackPlan(Plan.FREE.value, False)


class EntitlementFallback:
    """
    Resolves the plan a principal falls back to on cancellation/expiry.

    fails_open: when the entitlement lookup itself fails (database error or
    timeout) the principal falls to free and the cancellation is still
    recorded. Turning this off makes the lookup failure a StoreError, so the
    provider redelivers the event instead.
    """

    def __init__(self, entitlements: Any = entitlement_ops, fails_open: bool = True):
        self.entitlements = entitlements
        self.fails_open = fails_open

    async def resolve(self, db: AsyncSession, principal: PrincipalRef) -> FallbackPlan:
        # Entitlements are only granted to users
        if principal.type is not PrincipalType.USER:
            return FREE_FALLBACK

        try:
            entitlement = await self.entitlements.get_active_for_target(
                db, PrincipalType.USER.value, principal.id
            )
        except (SQLAlchemyError, TimeoutError) as e:
            if not self.fails_open:
                raise StoreError(f"Entitlement lookup failed for {principal}") from e
            logger.warning(f"Entitlement lookup failed for {principal}, falling back to free: {e}")
            return FREE_FALLBACK

        if entitlement is None:
            return FREE_FALLBACK

        logger.info(f"Keeping entitlement plan '{entitlement.plan}' for {principal}")
        return FallbackPlan(entitlement.plan, True)
