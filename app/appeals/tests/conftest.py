"""
Pytest fixtures for appeal tests.

Gateway, lock, user and charge fixtures are shared with the settlement
tests. ``settled`` cancels the default $150 booking two days out (homeowner
cancels: $75 refunded, $25 fee charged) so appeals have something real to
contest.
"""

from datetime import timedelta

import pytest

from accounts.models import UserRole
from accounts.tests.factories import StaffUserFactory
from settlements.services import SettlementService
from settlements.tests.conftest import (  # noqa: F401
    api_client,
    charge,
    charge_with_cleaner,
    cleaner,
    client_for,
    fast_gateway_retries,
    gateway,
    homeowner,
    mock_redis_lock,
    reviewer,
    ten_days_before,
    two_days_before,
)


@pytest.fixture
def supervisor(db):
    """Owner-role reviewer who may act on escalated appeals."""
    return StaffUserFactory(role=UserRole.OWNER)


@pytest.fixture
def settled(gateway, charge_with_cleaner, two_days_before):
    """Homeowner cancellation two days before the appointment."""
    SettlementService.settle_cancellation(
        appointment_id=charge_with_cleaner.appointment_id,
        cancelled_by="homeowner",
        actor_id=charge_with_cleaner.homeowner_id,
        now=two_days_before,
    )
    return charge_with_cleaner


@pytest.fixture
def submit_time(two_days_before):
    """One hour after the cancellation, inside the appeal window."""
    return two_days_before + timedelta(hours=1)
