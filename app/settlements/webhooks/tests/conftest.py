"""
Pytest fixtures for webhook tests.

Gateway, lock and charge fixtures are shared with the settlement tests.
``make_event`` stores a WebhookEvent wrapping a Stripe object the way the
intake view would.
"""

import itertools

import pytest

from settlements.models import WebhookEvent
from settlements.state_machines import WebhookEventStatus
from settlements.tests.conftest import (  # noqa: F401
    charge,
    charge_with_cleaner,
    cleaner,
    fast_gateway_retries,
    gateway,
    homeowner,
    mock_redis_lock,
)

_event_ids = itertools.count(1)


def event_payload(event_type: str, obj: dict, event_id: str | None = None) -> dict:
    """A Stripe event envelope around obj."""
    return {
        "id": event_id or f"evt_test_{next(_event_ids):06d}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


@pytest.fixture
def make_event(db):
    """
    Factory for stored webhook events.

    Usage:
        event = make_event("charge.refunded", {"id": "ch_123", ...})
    """

    def _create(
        event_type: str,
        obj: dict,
        status: str = WebhookEventStatus.PENDING,
        retry_count: int = 0,
    ) -> WebhookEvent:
        payload = event_payload(event_type, obj)
        return WebhookEvent.objects.create(
            stripe_event_id=payload["id"],
            event_type=event_type,
            payload=payload,
            status=status,
            retry_count=retry_count,
        )

    return _create


@pytest.fixture
def pending_webhook_event(make_event):
    return make_event("payment_intent.payment_failed", {"id": "pi_declined"})


@pytest.fixture
def processed_webhook_event(make_event):
    return make_event(
        "payment_intent.payment_failed",
        {"id": "pi_declined"},
        status=WebhookEventStatus.PROCESSED,
        retry_count=1,
    )


@pytest.fixture
def failed_webhook_event(make_event):
    return make_event(
        "charge.refunded",
        {"id": "ch_unknown"},
        status=WebhookEventStatus.FAILED,
        retry_count=1,
    )


@pytest.fixture
def intent_payload(charge):
    """payment_intent.succeeded object for the default $150 booking."""
    return {
        "id": charge.payment_intent_id,
        "object": "payment_intent",
        "amount": 15000,
        "amount_received": 15000,
        "currency": "usd",
        "status": "succeeded",
        "metadata": {},
    }


@pytest.fixture
def charge_payload(charge):
    """Captured Stripe charge for the default booking."""
    return {
        "id": "ch_test_booking",
        "object": "charge",
        "amount": 15000,
        "amount_captured": 15000,
        "currency": "usd",
        "payment_intent": charge.payment_intent_id,
        "balance_transaction": "txn_test_booking",
        "created": 1772964000,
        "metadata": {},
        "refunds": {"object": "list", "data": []},
    }


@pytest.fixture
def dispute_payload(charge):
    """Open dispute over the default booking."""
    return {
        "id": "dp_test_booking",
        "object": "dispute",
        "amount": 15000,
        "currency": "usd",
        "charge": "ch_test_booking",
        "payment_intent": charge.payment_intent_id,
        "reason": "fraudulent",
        "status": "needs_response",
        "created": 1772964000,
        "balance_transactions": [
            {"id": "txn_dispute_withdrawal", "amount": -15000, "fee": 1500},
        ],
        "metadata": {},
    }
