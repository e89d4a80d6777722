"""Root conftest — test infrastructure for all backend tests.

Provides:
- Test signing secrets for both providers
- A fixed price catalog and reconcile policy
- API client with dependency overrides (mocked DB session, test secrets)
- Autouse mock for outbound Stripe calls
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from app.api.deps.webhooks import WebhookSecrets
from app.models.subscription import Plan
from app.services.webhooks.catalog import PriceCatalog, PricePlan
from app.services.webhooks.reconciler import ReconcilePolicy

from tests.helpers.webhook_payloads import REVENUECAT_TEST_SECRET, STRIPE_TEST_SECRET


# ─────────────────────────────────────────────────────────────────────────────
# Configuration fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def price_catalog() -> PriceCatalog:
    """Catalog with one id per plan, mirroring the settings naming scheme."""
    return PriceCatalog(
        personal_prices={
            "price_base_monthly": PricePlan(Plan.BASE, False),
            "price_base_annual": PricePlan(Plan.BASE, True),
            "price_premium_monthly": PricePlan(Plan.PREMIUM, False),
            "price_premium_annual": PricePlan(Plan.PREMIUM, True),
            "price_premium_plus_monthly": PricePlan(Plan.PREMIUM_PLUS, False),
            "price_premium_plus_annual": PricePlan(Plan.PREMIUM_PLUS, True),
        },
        promotion_prices={
            "price_promo_basic": Plan.BASIC,
            "price_promo_standard": Plan.STANDARD,
            "price_promo_premium": Plan.PREMIUM,
            "price_promo_elite": Plan.ELITE,
        },
        app_store_products={
            "app_premium_monthly": PricePlan(Plan.PREMIUM, False),
            "app_premium_annual": PricePlan(Plan.PREMIUM, True),
        },
    )


@pytest.fixture
def reconcile_policy() -> ReconcilePolicy:
    return ReconcilePolicy()


@pytest.fixture
def webhook_secrets() -> WebhookSecrets:
    return WebhookSecrets(stripe=STRIPE_TEST_SECRET, revenuecat=REVENUECAT_TEST_SECRET)


# ─────────────────────────────────────────────────────────────────────────────
# API Client
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def db_session() -> MagicMock:
    """Mocked AsyncSession; endpoints under test never reach a real database."""
    session = MagicMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


@pytest.fixture
async def api_client(db_session, price_catalog, reconcile_policy, webhook_secrets):
    """HTTP client with the DB session and webhook configuration overridden.

    Overrides: get_db, get_price_catalog, get_reconcile_policy, get_webhook_secrets
    """
    from app.api.deps.webhooks import (
        get_price_catalog,
        get_reconcile_policy,
        get_webhook_secrets,
    )
    from app.core.database import get_db
    from app.main import app

    async def override_db():
        yield db_session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_price_catalog] = lambda: price_catalog
    app.dependency_overrides[get_reconcile_policy] = lambda: reconcile_policy
    app.dependency_overrides[get_webhook_secrets] = lambda: webhook_secrets

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ─────────────────────────────────────────────────────────────────────────────
# External Service Mocks (autouse)
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def mock_external_services():
    """SAFETY: Always mock outbound Stripe calls made by the billing endpoints.

    Prevents accidental checkout or portal sessions against a real account.
    """
    with patch("app.api.v1.billing.stripe_service", new_callable=MagicMock) as mock_stripe:
        mock_stripe.create_checkout_session = MagicMock(
            return_value="https://checkout.stripe.com/test"
        )
        mock_stripe.create_promotion_checkout_session = MagicMock(
            return_value="https://checkout.stripe.com/promo_test"
        )
        mock_stripe.create_portal_session = MagicMock(
            return_value="https://billing.stripe.com/test"
        )
        mock_stripe.get_checkout_session = MagicMock(
            return_value={"id": "cs_test", "payment_status": "unpaid", "metadata": {}}
        )
        mock_stripe.get_subscription = MagicMock(return_value={})
        mock_stripe.get_session_price_id = MagicMock(return_value=None)
        mock_stripe.cancel_subscription = MagicMock(return_value={})

        yield {"stripe": mock_stripe}
