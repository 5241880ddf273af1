"""
Pytest fixtures for settlement tests.

The gateway is never called for real: the ``gateway`` fixture injects a
MagicMock adapter into SettlementService and ReconciliationService, and
``mock_redis_lock`` replaces the Redis connection behind DistributedLock.

Usage:
    pytestmark = pytest.mark.usefixtures("mock_redis_lock")

    def test_settle(gateway, charge_with_cleaner, two_days_before):
        breakdown = SettlementService.settle_cancellation(...)
        gateway.create_refund.assert_called_once()
"""

import itertools
from datetime import datetime
from datetime import timezone as dt_timezone
from unittest.mock import MagicMock, patch

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from accounts.tests.factories import StaffUserFactory, UserFactory
from settlements.adapters import GatewayResult
from settlements.services import ReconciliationService, SettlementService
from settlements.tests.factories import (
    AppointmentChargeFactory,
    CleanerAssignmentFactory,
    CleanerFactory,
)


# =============================================================================
# Infrastructure
# =============================================================================


@pytest.fixture
def mock_redis_lock():
    """Mock Redis for distributed locking."""
    mock_redis = MagicMock()
    mock_redis.set.return_value = True
    mock_redis.get.return_value = None
    mock_redis.delete.return_value = 1
    mock_redis.eval.return_value = 1

    with patch("settlements.locks.get_redis_connection", return_value=mock_redis):
        yield mock_redis


@pytest.fixture(autouse=True)
def fast_gateway_retries(settings):
    """No backoff sleeps between gateway retries."""
    settings.GATEWAY_MAX_RETRIES = 2
    settings.GATEWAY_RETRY_BASE_DELAY_SECONDS = 0
    settings.GATEWAY_RETRY_MAX_DELAY_SECONDS = 0


@pytest.fixture
def gateway():
    """
    Mock gateway adapter that succeeds for every call.

    Each call returns a fresh object id and echoes the requested amount.
    Override a method's side_effect to simulate declines or outages.
    """
    counter = itertools.count(1)
    adapter = MagicMock()

    def refund(**kwargs):
        return GatewayResult(
            object_type="refund",
            object_id=f"re_test_{next(counter)}",
            amount_cents=kwargs["amount_cents"],
            status="succeeded",
        )

    def charge(**kwargs):
        return GatewayResult(
            object_type="payment_intent",
            object_id=f"pi_fee_{next(counter)}",
            amount_cents=kwargs["amount_cents"],
            status="succeeded",
        )

    def transfer(**kwargs):
        return GatewayResult(
            object_type="transfer",
            object_id=f"tr_test_{next(counter)}",
            amount_cents=kwargs["amount_cents"],
            status="succeeded",
        )

    adapter.create_refund.side_effect = refund
    adapter.charge_off_session.side_effect = charge
    adapter.create_transfer.side_effect = transfer

    SettlementService.set_gateway_adapter(adapter)
    ReconciliationService.set_gateway_adapter(adapter)
    yield adapter
    SettlementService.set_gateway_adapter(None)
    ReconciliationService.set_gateway_adapter(None)


# =============================================================================
# Clock
# =============================================================================


@pytest.fixture
def two_days_before():
    """Two days before the default 2026-03-10 appointment (inside both windows)."""
    return datetime(2026, 3, 8, 15, 0, tzinfo=dt_timezone.utc)


@pytest.fixture
def ten_days_before():
    """Ten days before the default appointment (outside both windows)."""
    return datetime(2026, 2, 28, 15, 0, tzinfo=dt_timezone.utc)


# =============================================================================
# Users and charges
# =============================================================================


@pytest.fixture
def homeowner(db):
    return UserFactory()


@pytest.fixture
def cleaner(db):
    return CleanerFactory()


@pytest.fixture
def reviewer(db):
    return StaffUserFactory()


@pytest.fixture
def charge(db, homeowner):
    """$150 booking with no cleaners assigned."""
    return AppointmentChargeFactory(homeowner=homeowner)


@pytest.fixture
def charge_with_cleaner(db, homeowner, cleaner):
    """$150 booking with one assigned cleaner."""
    charge = AppointmentChargeFactory(homeowner=homeowner)
    CleanerAssignmentFactory(charge=charge, cleaner=cleaner)
    return charge


# =============================================================================
# API clients
# =============================================================================


@pytest.fixture
def api_client():
    """Unauthenticated API client."""
    return APIClient()


@pytest.fixture
def client_for(db):
    """
    Factory for API clients authenticated with a JWT for the given user.

    Usage:
        def test_example(client_for, homeowner):
            response = client_for(homeowner).get(url)
    """

    def _client(user) -> APIClient:
        client = APIClient()
        refresh = RefreshToken.for_user(user)
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
        return client

    return _client
