"""Unit tests for SubscriptionOperations — filtered, idempotent writes."""

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.domain.subscription_operations import SubscriptionOperations
from app.models.subscription import Plan, PrincipalType, SubscriptionSource

from tests.helpers.mock_factories import make_subscription, mock_scalar_result

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


class TestDiff:
    """Tests for computing the changed-field subset."""

    def setup_method(self):
        self.ops = SubscriptionOperations()

    def test_returns_only_changed_fields(self):
        sub = make_subscription(active=True, plan="premium", source="primary_provider")
        delta = self.ops.diff(sub, {"active": True, "plan": "premium_plus", "is_annual": False})
        assert delta == {"plan": "premium_plus"}

    def test_unwraps_enums(self):
        sub = make_subscription()
        delta = self.ops.diff(
            sub, {"plan": Plan.BASE, "source": SubscriptionSource.PRIMARY_PROVIDER}
        )
        assert delta == {"plan": "base", "source": "primary_provider"}

    def test_matching_enum_is_not_a_change(self):
        sub = make_subscription(plan="free", source="none")
        assert self.ops.diff(sub, {"plan": Plan.FREE, "source": SubscriptionSource.NONE}) == {}

    def test_rejects_fields_not_writable_from_webhooks(self):
        sub = make_subscription()
        with pytest.raises(ValueError):
            self.ops.diff(sub, {"principal_id": uuid.uuid4()})


class TestApplyChanges:
    """Tests for the single filtered UPDATE."""

    def setup_method(self):
        self.ops = SubscriptionOperations()
        self.db = MagicMock()
        self.db.execute = AsyncMock()

    @pytest.mark.asyncio
    async def test_no_delta_issues_no_write(self):
        sub = make_subscription(active=True, plan="premium")
        written = await self.ops.apply_changes(self.db, sub, {"active": True, "plan": "premium"}, NOW)

        assert written == {}
        self.db.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_delta_issues_one_update_with_timestamp(self):
        sub = make_subscription(active=True, plan="premium")
        cancel_at = NOW + timedelta(days=3)
        written = await self.ops.apply_changes(
            self.db, sub, {"active": True, "cancel_at": cancel_at}, NOW
        )

        assert written == {"cancel_at": cancel_at}
        self.db.execute.assert_called_once()
        statement = self.db.execute.call_args[0][0]
        params = statement.compile().params
        assert params["cancel_at"] == cancel_at
        assert params["updated_at"] == NOW
        assert "active" not in params


class TestCreateForPrincipal:
    """Tests for the first-event upsert."""

    def setup_method(self):
        self.ops = SubscriptionOperations()
        self.db = MagicMock()
        self.db.execute = AsyncMock()

    @pytest.mark.asyncio
    async def test_issues_upsert_on_principal_constraint(self):
        principal_id = uuid.uuid4()
        await self.ops.create_for_principal(
            self.db,
            PrincipalType.USER,
            principal_id,
            {"active": True, "plan": Plan.PREMIUM, "source": SubscriptionSource.PRIMARY_PROVIDER},
            NOW,
        )

        self.db.execute.assert_called_once()
        statement = self.db.execute.call_args[0][0]
        assert "ON CONFLICT" in str(statement.compile(dialect=_postgres()))
        params = statement.compile(dialect=_postgres()).params
        assert params["principal_type"] == "user"
        assert params["principal_id"] == principal_id
        assert params["plan"] == "premium"

    @pytest.mark.asyncio
    async def test_rejects_non_writable_fields(self):
        with pytest.raises(ValueError):
            await self.ops.create_for_principal(
                self.db, PrincipalType.USER, uuid.uuid4(), {"created_at": NOW}
            )
        self.db.execute.assert_not_called()


class TestLookups:
    def setup_method(self):
        self.ops = SubscriptionOperations()
        self.db = MagicMock()

    @pytest.mark.asyncio
    async def test_get_for_principal(self):
        sub = make_subscription()
        self.db.execute = AsyncMock(return_value=mock_scalar_result(sub))
        result = await self.ops.get_for_principal(self.db, PrincipalType.USER, sub.principal_id)
        assert result is sub

    @pytest.mark.asyncio
    async def test_get_by_external_id_missing(self):
        self.db.execute = AsyncMock(return_value=mock_scalar_result(None))
        assert await self.ops.get_by_external_id(self.db, "sub_missing") is None


def _postgres():
    from sqlalchemy.dialects import postgresql

    return postgresql.dialect()
