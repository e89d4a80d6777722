"""API test fixtures — domain operation mocks and Stripe configuration.

Builds on root conftest fixtures (db_session, price_catalog, api_client,
mock_external_services).
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from app.config import settings
from app.services.webhooks.reconciler import ApplyOutcome, ApplyResult


@pytest.fixture
def stripe_enabled():
    """Pretend a Stripe secret key is configured."""
    with patch.object(settings, "stripe_secret_key", "sk_test_123"):
        yield


@pytest.fixture
def mock_principals():
    """Every principal exists unless a test says otherwise."""
    with patch("app.api.v1.billing.principal_ops") as mock_ops:
        mock_ops.exists = AsyncMock(return_value=True)
        yield mock_ops


@pytest.fixture
def mock_subscriptions():
    """No stored subscription unless a test says otherwise."""
    with patch("app.api.v1.billing.subscription_ops") as mock_ops:
        mock_ops.get_for_principal = AsyncMock(return_value=None)
        mock_ops.apply_changes = AsyncMock(return_value={})
        yield mock_ops


@pytest.fixture
def mock_reconciler():
    """Replace the reconciler behind the webhook endpoints.

    Defaults to an APPLIED outcome; tests set apply.return_value or
    apply.side_effect on the yielded instance.
    """
    with patch("app.api.v1.webhooks.SubscriptionReconciler") as mock_cls:
        instance = mock_cls.return_value
        instance.apply = AsyncMock(return_value=ApplyResult(ApplyOutcome.APPLIED))
        yield instance
