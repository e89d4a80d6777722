"""Domain operations for Subscription model."""

import logging
import uuid as uuid_pkg
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.subscription import WRITABLE_FIELDS, PrincipalType, Subscription

logger = logging.getLogger(__name__)


def _column_value(value: Any) -> Any:
    """Enums are stored by value."""
    return value.value if isinstance(value, Enum) else value


class SubscriptionOperations:
    """
    Reads and field-filtered writes for the subscriptions table.

    Writes never increment or append: they set the requested fields to
    absolute values, and only the fields whose value actually changes. An
    event applied twice therefore leaves the row exactly as applying it once,
    updated_at included.
    """

    async def get_for_principal(
        self,
        db: AsyncSession,
        principal_type: PrincipalType,
        principal_id: uuid_pkg.UUID,
    ) -> Subscription | None:
        """Get the subscription owned by a user or community."""
        statement = select(Subscription).where(
            Subscription.principal_type == principal_type.value,
            Subscription.principal_id == principal_id,
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_by_external_id(
        self,
        db: AsyncSession,
        external_subscription_id: str,
    ) -> Subscription | None:
        """Get subscription by provider subscription (or payment/transaction) ID."""
        statement = select(Subscription).where(
            Subscription.external_subscription_id == external_subscription_id
        )
        result = await db.execute(statement)
        return result.scalars().first()

    def diff(self, subscription: Subscription, changes: dict[str, Any]) -> dict[str, Any]:
        """Subset of changes whose value differs from the stored row."""
        unknown = set(changes) - WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Not writable from webhooks: {sorted(unknown)}")

        delta: dict[str, Any] = {}
        for field, value in changes.items():
            value = _column_value(value)
            if getattr(subscription, field) != value:
                delta[field] = value
        return delta

    async def apply_changes(
        self,
        db: AsyncSession,
        subscription: Subscription,
        changes: dict[str, Any],
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """
        Write the changed fields in one filtered UPDATE.

        Returns the fields that were written; an empty dict means the row
        already matched and nothing was issued.
        """
        delta = self.diff(subscription, changes)
        if not delta:
            return {}

        statement = (
            update(Subscription)
            .where(Subscription.id == subscription.id)  # type: ignore[arg-type]
            .values(**delta, updated_at=now or datetime.now(UTC))
        )
        await db.execute(statement)
        logger.debug(f"Updated subscription {subscription.id}: {sorted(delta)}")
        return delta

    async def create_for_principal(
        self,
        db: AsyncSession,
        principal_type: PrincipalType,
        principal_id: uuid_pkg.UUID,
        changes: dict[str, Any],
        now: datetime | None = None,
    ) -> None:
        """
        Create the principal's subscription row with the given fields.

        A single INSERT ... ON CONFLICT DO UPDATE, so two first events racing
        for the same principal converge on one row.
        """
        unknown = set(changes) - WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Not writable from webhooks: {sorted(unknown)}")

        timestamp = now or datetime.now(UTC)
        values = {field: _column_value(value) for field, value in changes.items()}
        statement = insert(Subscription).values(
            id=uuid_pkg.uuid4(),
            principal_type=principal_type.value,
            principal_id=principal_id,
            created_at=timestamp,
            updated_at=timestamp,
            **values,
        )
        statement = statement.on_conflict_do_update(
            constraint="uq_subscriptions_principal",
            set_={**values, "updated_at": timestamp},
        )
        await db.execute(statement)
        logger.info(f"Created subscription for {principal_type.value} {principal_id}")


subscription_ops = SubscriptionOperations()
