"""Read-only access to independently-granted entitlements."""

import uuid as uuid_pkg

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.entitlement import Entitlement


class EntitlementOperations:
    """Queries against the entitlements table. Never writes."""

    async def get_active_for_target(
        self,
        db: AsyncSession,
        target_type: str,
        target_id: uuid_pkg.UUID,
    ) -> Entitlement | None:
        """
        Most recent active entitlement for a user or community.

        Runs inside a savepoint: a failed lookup rolls back only itself and
        leaves the caller's transaction usable.
        """
        statement = (
            select(Entitlement)
            .where(
                Entitlement.target_type == target_type,
                Entitlement.target_id == target_id,
                Entitlement.active == True,  # noqa: E712
            )
            .order_by(Entitlement.created_at.desc())  # type: ignore[attr-defined]
            .limit(1)
        )
        async with db.begin_nested():
            result = await db.execute(statement)
            return result.scalar_one_or_none()


entitlement_ops = EntitlementOperations()
