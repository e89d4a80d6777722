"""Mock object factories for unit tests.

Creates consistent objects that match the real model shapes, plus small
in-memory stand-ins for the domain operations the reconciler depends on.
Used in unit tests where the database is fully mocked.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any
from unittest.mock import MagicMock

from app.domain.subscription_operations import SubscriptionOperations
from app.models.entitlement import Entitlement
from app.models.subscription import Plan, PrincipalType, Subscription, SubscriptionSource


def make_subscription(**overrides: Any) -> Subscription:
    """A real (unsaved) Subscription row; defaults to a free user row."""
    values: dict[str, Any] = {
        "principal_type": PrincipalType.USER.value,
        "principal_id": uuid.uuid4(),
        "active": False,
        "plan": Plan.FREE.value,
        "is_annual": False,
        "source": SubscriptionSource.NONE.value,
        "created_at": datetime.now(UTC),
        "updated_at": datetime.now(UTC),
    }
    values.update(overrides)
    return Subscription(**values)


def make_entitlement(target_id: uuid.UUID, plan: str = "premium", **overrides: Any) -> Entitlement:
    values: dict[str, Any] = {
        "target_type": PrincipalType.USER.value,
        "target_id": target_id,
        "plan": plan,
        "active": True,
    }
    values.update(overrides)
    return Entitlement(**values)


def make_stripe_subscription(
    subscription_id: str = "sub_test_123",
    status: str = "active",
    price_id: str | None = "price_premium_monthly",
    **overrides: Any,
) -> dict[str, Any]:
    """A Stripe subscription object as returned by StripeService.get_subscription."""
    sub: dict[str, Any] = {
        "id": subscription_id,
        "object": "subscription",
        "status": status,
        "customer": "cus_test_123",
        "start_date": 1_700_000_000,
        "cancel_at": None,
        "items": {"data": [{"price": {"id": price_id}}] if price_id else []},
    }
    sub.update(overrides)
    return sub


def mock_scalar_result(value: object) -> MagicMock:
    """Create a mock execute() result that yields a single value."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    result.scalar.return_value = value
    result.scalars.return_value.first.return_value = value
    return result


# ─────────────────────────────────────────────────────────────────────────────
# In-memory stand-ins for domain operations
# ─────────────────────────────────────────────────────────────────────────────


class InMemorySubscriptions:
    """
    Subscription store keyed by principal.

    Uses SubscriptionOperations.diff so redelivery and write filtering behave
    exactly as against the database. Every issued write is recorded in
    `writes` for assertions.
    """

    def __init__(self, *rows: Subscription):
        self.rows: dict[tuple[str, uuid.UUID], Subscription] = {}
        self.writes: list[dict[str, Any]] = []
        self._ops = SubscriptionOperations()
        for row in rows:
            self.add(row)

    def add(self, row: Subscription) -> Subscription:
        self.rows[(row.principal_type, row.principal_id)] = row
        return row

    async def get_for_principal(self, db, principal_type, principal_id):
        return self.rows.get((principal_type.value, principal_id))

    async def get_by_external_id(self, db, external_subscription_id):
        for row in self.rows.values():
            if row.external_subscription_id == external_subscription_id:
                return row
        return None

    async def apply_changes(self, db, subscription, changes, now=None):
        delta = self._ops.diff(subscription, changes)
        if not delta:
            return {}
        for field, value in delta.items():
            setattr(subscription, field, value)
        subscription.updated_at = now or datetime.now(UTC)
        self.writes.append(delta)
        return delta

    async def create_for_principal(self, db, principal_type, principal_id, changes, now=None):
        row = make_subscription(principal_type=principal_type.value, principal_id=principal_id)
        delta = self._ops.diff(row, changes)
        for field, value in delta.items():
            setattr(row, field, value)
        self.add(row)
        self.writes.append(delta)

    def get(self, principal_type: PrincipalType, principal_id: uuid.UUID) -> Subscription | None:
        return self.rows.get((principal_type.value, principal_id))


class InMemoryPrincipals:
    """Known users and communities."""

    def __init__(self, users=(), communities=()):
        self.users = set(users)
        self.communities = set(communities)

    async def exists(self, db, principal_type, principal_id):
        if principal_type is PrincipalType.USER:
            return principal_id in self.users
        return principal_id in self.communities


class InMemoryEntitlements:
    """Active entitlements by user id; `error` makes every lookup fail."""

    def __init__(self, *entitlements: Entitlement, error: Exception | None = None):
        self.entitlements = list(entitlements)
        self.error = error
        self.calls = 0

    async def get_active_for_target(self, db, target_type, target_id):
        self.calls += 1
        if self.error is not None:
            raise self.error
        for entitlement in self.entitlements:
            if (
                entitlement.active
                and entitlement.target_type == target_type
                and entitlement.target_id == target_id
            ):
                return entitlement
        return None
