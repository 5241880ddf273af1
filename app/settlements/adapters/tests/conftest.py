"""
Pytest fixtures for gateway adapter tests.

Sections:
    - Mock Stripe Object Fixtures
    - Mock Stripe Error Fixtures
    - Mock Stripe Client Fixtures
"""

import uuid
from dataclasses import dataclass
from typing import Any
from unittest.mock import patch

import pytest
import stripe

from settlements.adapters import StripeGatewayAdapter


@dataclass
class MockStripeObject:
    """Mock Stripe API object with to_dict support."""

    data: dict[str, Any]

    def __getattr__(self, name: str) -> Any:
        if name == "data":
            return self.__dict__["data"]
        return self.data.get(name)

    def to_dict(self) -> dict[str, Any]:
        return self.data


# =============================================================================
# Mock Stripe Object Fixtures
# =============================================================================


@pytest.fixture
def idempotency_key():
    """Generate an idempotency key for testing."""
    return f"test-{uuid.uuid4()}"


@pytest.fixture
def mock_refund():
    """Create a mock Refund response."""

    def _create(
        id: str = "re_test123456",
        amount: int = 7500,
        status: str = "succeeded",
        metadata: dict | None = None,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "refund",
                "amount": amount,
                "currency": "usd",
                "status": status,
                "payment_intent": "pi_test123456",
                "metadata": metadata or {},
            }
        )

    return _create


@pytest.fixture
def mock_payment_intent():
    """Create a mock PaymentIntent response."""

    def _create(
        id: str = "pi_fee123456",
        status: str = "succeeded",
        amount: int = 2500,
        amount_received: int = 2500,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "payment_intent",
                "status": status,
                "amount": amount,
                "amount_received": amount_received,
                "currency": "usd",
                "metadata": {},
            }
        )

    return _create


@pytest.fixture
def mock_transfer():
    """Create a mock Transfer response."""

    def _create(
        id: str = "tr_test123456",
        amount: int = 6750,
        destination: str = "acct_cleaner123",
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "transfer",
                "amount": amount,
                "currency": "usd",
                "destination": destination,
                "metadata": {},
            }
        )

    return _create


@pytest.fixture
def mock_charge():
    """Create a mock Charge response."""

    def _create(
        id: str = "ch_test123456",
        amount_captured: int = 15000,
        amount_refunded: int = 0,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "charge",
                "amount": amount_captured,
                "amount_captured": amount_captured,
                "amount_refunded": amount_refunded,
                "currency": "usd",
                "status": "succeeded",
                "metadata": {},
            }
        )

    return _create


@pytest.fixture
def mock_balance_transaction():
    """Create a mock BalanceTransaction response."""

    def _create(
        id: str = "txn_test123456",
        type: str = "charge",
        amount: int = 15000,
        fee: int = 465,
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "balance_transaction",
                "type": type,
                "amount": amount,
                "fee": fee,
                "currency": "usd",
                "status": "available",
            }
        )

    return _create


@pytest.fixture
def mock_dispute():
    """Create a mock Dispute response."""

    def _create(
        id: str = "dp_test123456",
        amount: int = 15000,
        status: str = "needs_response",
    ) -> MockStripeObject:
        return MockStripeObject(
            {
                "id": id,
                "object": "dispute",
                "amount": amount,
                "currency": "usd",
                "status": status,
                "metadata": {},
            }
        )

    return _create


# =============================================================================
# Mock Stripe Error Fixtures
# =============================================================================


@pytest.fixture
def card_error():
    """Create a Stripe CardError."""

    def _create(
        message: str = "Your card was declined.",
        code: str = "card_declined",
        decline_code: str | None = "generic_decline",
    ) -> stripe.CardError:
        error = stripe.CardError(message=message, param=None, code=code)
        error.decline_code = decline_code
        return error

    return _create


@pytest.fixture
def invalid_request_error():
    """Create a Stripe InvalidRequestError."""

    def _create(
        message: str = "No such refund: 're_missing'",
        param: str | None = "id",
        code: str = "resource_missing",
    ) -> stripe.InvalidRequestError:
        return stripe.InvalidRequestError(message=message, param=param, code=code)

    return _create


@pytest.fixture
def rate_limit_error():
    return stripe.RateLimitError(message="Too many requests hit the API too quickly.")


@pytest.fixture
def api_connection_error():
    return stripe.APIConnectionError(message="Could not connect to Stripe.")


@pytest.fixture
def authentication_error():
    return stripe.AuthenticationError(message="Invalid API Key provided.")


# =============================================================================
# Mock Stripe Client Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def skip_stripe_configuration():
    """Never touch the real Stripe client configuration."""
    with patch.object(StripeGatewayAdapter, "_configure_stripe"):
        yield


@pytest.fixture
def mock_stripe_refund(mock_refund):
    """Mock stripe.Refund API."""
    with patch("stripe.Refund") as mock:
        mock.create.return_value = mock_refund()
        mock.retrieve.return_value = mock_refund()
        yield mock


@pytest.fixture
def mock_stripe_payment_intent(mock_payment_intent):
    """Mock stripe.PaymentIntent API."""
    with patch("stripe.PaymentIntent") as mock:
        mock.create.return_value = mock_payment_intent()
        mock.retrieve.return_value = mock_payment_intent()
        yield mock


@pytest.fixture
def mock_stripe_transfer(mock_transfer):
    """Mock stripe.Transfer API."""
    with patch("stripe.Transfer") as mock:
        mock.create.return_value = mock_transfer()
        mock.retrieve.return_value = mock_transfer()
        yield mock


@pytest.fixture
def mock_stripe_charge(mock_charge):
    """Mock stripe.Charge API."""
    with patch("stripe.Charge") as mock:
        mock.retrieve.return_value = mock_charge()
        yield mock
