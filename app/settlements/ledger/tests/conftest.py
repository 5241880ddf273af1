"""
Pytest fixtures for ledger tests.

Sections:
    - Test Data Fixtures
    - Posting Fixtures
"""

import uuid

import pytest

from settlements.ledger.models import EntryType, GatewayObjectType
from settlements.ledger.services import LedgerService
from settlements.ledger.types import RecordPairParams


# ==========================================================================
# Test Data Fixtures
# ==========================================================================


@pytest.fixture
def appointment_id():
    return uuid.uuid4()


@pytest.fixture
def homeowner_id():
    return uuid.uuid4()


@pytest.fixture
def cleaner_id():
    return uuid.uuid4()


@pytest.fixture
def unique_idempotency_key():
    """Generate a unique idempotency key for testing."""
    return f"test-{uuid.uuid4()}"


# ==========================================================================
# Posting Fixtures
# ==========================================================================


@pytest.fixture
def make_params(appointment_id, homeowner_id):
    """
    Build RecordPairParams with sensible defaults.

    Defaults to a $150 booking revenue pair for the fixture appointment.
    """

    def _make(**overrides) -> RecordPairParams:
        values = {
            "appointment_id": appointment_id,
            "entry_type": EntryType.BOOKING_REVENUE,
            "amount_cents": 15000,
            "idempotency_key": f"test:{uuid.uuid4()}",
            "party_user_id": homeowner_id,
        }
        values.update(overrides)
        return RecordPairParams(**values)

    return _make


@pytest.fixture
def booking_pair(db, make_params):
    """$150 booking revenue already posted."""
    return LedgerService.record_pair(
        make_params(
            gateway_object_type=GatewayObjectType.PAYMENT_INTENT,
            gateway_object_id="pi_booking_123",
        )
    )
