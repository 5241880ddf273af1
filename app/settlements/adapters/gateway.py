"""
Payment gateway adapter backed by Stripe.

All gateway calls made by the settlement engine go through
StripeGatewayAdapter so they share timeouts, idempotency keys, error
translation and timing logs. Services hold the adapter as a class and
allow a replacement to be injected for tests.

Operations:
    create_refund: Refund part or all of a captured payment intent
    charge_off_session: Charge a saved payment method (cancellation fees)
    create_transfer: Pay a cleaner's connected account
    retrieve_object: Fetch the authoritative record for reconciliation
    verify_webhook_signature: Verify and parse a Stripe webhook event

Configuration (via settings):
    STRIPE_SECRET_KEY: Stripe API secret key
    STRIPE_WEBHOOK_SECRET: Webhook endpoint signing secret
    STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
    GATEWAY_MAX_RETRIES / GATEWAY_RETRY_BASE_DELAY_SECONDS /
    GATEWAY_RETRY_MAX_DELAY_SECONDS: Retry policy

Usage:
    from settlements.adapters import StripeGatewayAdapter, IdempotencyKeyGenerator

    key = IdempotencyKeyGenerator.for_settlement(appointment_id, "cancellation_refund")
    result = StripeGatewayAdapter.create_refund(
        payment_intent_id="pi_123",
        amount_cents=7500,
        idempotency_key=key,
    )
"""

from __future__ import annotations

import hashlib
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar

import stripe
from django.conf import settings

from settlements.exceptions import (
    GatewayCallError,
    GatewayObjectNotFound,
    GatewayPermanentError,
    GatewayTransientError,
    InvalidWebhookSignature,
)


R = TypeVar("R")

logger = logging.getLogger(__name__)


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class GatewayResult:
    """
    Result of a gateway money movement or retrieval.

    Attributes:
        object_type: payment_intent, charge, refund, transfer, dispute or
            balance_transaction
        object_id: Gateway id (pi_, ch_, re_, tr_, dp_, txn_)
        amount_cents: Amount the gateway recorded
        currency: Currency code
        status: Gateway status string
        metadata: Attached metadata
        raw_response: Full gateway response (for debugging)
    """

    object_type: str
    object_id: str
    amount_cents: int
    currency: str = "usd"
    status: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Idempotency Keys and Retries
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Deterministic idempotency keys for gateway calls.

    Format: "{scope}:{entity_id}:{entry_type}[:{discriminator}]:{hash}"

    The same (entity, entry type, discriminator) always yields the same key,
    so a retried settlement or a replayed webhook can never move money
    twice. The hash binds the key to this deployment's SECRET_KEY.
    """

    @staticmethod
    def generate(
        scope: str,
        entity_id: uuid.UUID | str,
        entry_type: str,
        discriminator: str = "",
    ) -> str:
        parts = [scope, str(entity_id), str(entry_type)]
        if discriminator:
            parts.append(str(discriminator))
        base = ":".join(parts)
        short_hash = hashlib.sha256(
            f"{base}:{settings.SECRET_KEY}".encode()
        ).hexdigest()[:8]
        return f"{base}:{short_hash}"

    @classmethod
    def for_settlement(
        cls,
        appointment_id: uuid.UUID | str,
        entry_type: str,
        discriminator: str = "",
    ) -> str:
        """Key for a cancellation settlement step."""
        return cls.generate("settlement", appointment_id, entry_type, discriminator)

    @classmethod
    def for_appeal(
        cls,
        appeal_id: uuid.UUID | str,
        entry_type: str,
        discriminator: str = "",
    ) -> str:
        """Key for an appeal relief step."""
        return cls.generate("appeal", appeal_id, entry_type, discriminator)

    @classmethod
    def for_booking(
        cls,
        appointment_id: uuid.UUID | str,
        entry_type: str,
        discriminator: str = "",
    ) -> str:
        """Key for booking revenue postings."""
        return cls.generate("booking", appointment_id, entry_type, discriminator)

    @classmethod
    def for_bonus(
        cls,
        appointment_id: uuid.UUID | str,
        cleaner_id: uuid.UUID | str,
        reference: str,
    ) -> str:
        """Key for a cleaner bonus; reference names the reason it was granted."""
        return cls.generate(
            "bonus", appointment_id, "cleaner_bonus", f"{cleaner_id}:{reference}"
        )

    @classmethod
    def for_webhook(cls, object_id: str, entry_type: str) -> str:
        """Key for a pair posted from a gateway webhook."""
        return cls.generate("webhook", object_id, entry_type)


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Exponential backoff delay with jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base: Base delay in seconds
        max_delay: Cap on the delay before jitter

    Returns:
        Delay in seconds plus 0-25% jitter

    Example:
        # Attempt 0: 1.0 - 1.25 seconds
        # Attempt 2: 4.0 - 5.0 seconds
        delay = backoff_delay(attempt=2)
    """
    delay = min(base * (2**attempt), max_delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry policy for gateway calls.

    Only GatewayCallError with is_retryable=True is retried. After
    max_retries retries the last error propagates to the caller.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    @classmethod
    def from_settings(cls) -> RetryPolicy:
        return cls(
            max_retries=settings.GATEWAY_MAX_RETRIES,
            base_delay=settings.GATEWAY_RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.GATEWAY_RETRY_MAX_DELAY_SECONDS,
        )

    def run(
        self,
        call: Callable[[], R],
        on_attempt: Callable[[int], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> R:
        """
        Invoke call until it succeeds, fails permanently or retries run out.

        Args:
            call: Zero-argument gateway call
            on_attempt: Called with the 1-based attempt number before each try
            sleep: Injected for tests

        Raises:
            GatewayCallError: The last error once retries are exhausted, or
                the first permanent error
        """
        attempt = 0
        while True:
            if on_attempt is not None:
                on_attempt(attempt + 1)
            try:
                return call()
            except GatewayCallError as exc:
                if not exc.is_retryable or attempt >= self.max_retries:
                    raise
                delay = backoff_delay(attempt, self.base_delay, self.max_delay)
                logger.warning(
                    "Transient gateway error, retrying",
                    extra={
                        "attempt": attempt + 1,
                        "delay_seconds": round(delay, 3),
                        "error_code": exc.error_code,
                    },
                )
                sleep(delay)
                attempt += 1


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeGatewayAdapter:
    """
    Adapter for Stripe API operations.

    All methods are classmethods - no instance state is maintained.
    Safe for use from Celery workers.
    """

    OBJECT_RETRIEVERS = {
        "payment_intent": "PaymentIntent",
        "charge": "Charge",
        "refund": "Refund",
        "transfer": "Transfer",
        "dispute": "Dispute",
        "balance_transaction": "BalanceTransaction",
    }

    # Balance transaction types whose gateway amount is the processing fee
    FEE_TRANSACTION_TYPES = ("charge", "payment")

    @staticmethod
    def _configure_stripe() -> None:
        """Configure the Stripe client with API key and timeout."""
        stripe.api_key = settings.STRIPE_SECRET_KEY
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def _call(
        cls,
        operation: str,
        log_context: dict[str, Any],
        call: Callable[[], Any],
    ) -> Any:
        """Run one Stripe call with timing logs and error translation."""
        cls._configure_stripe()
        logger = cls.get_logger()
        log_context = {"operation": operation, **log_context}

        start_time = time.time()
        logger.info("Starting gateway operation", extra=log_context)
        try:
            response = call()
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Gateway operation completed",
            extra={
                **log_context,
                "object_id": getattr(response, "id", None),
                "duration_ms": duration_ms,
            },
        )
        return response

    @classmethod
    def create_refund(
        cls,
        payment_intent_id: str,
        amount_cents: int,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
        reason: str = "requested_by_customer",
    ) -> GatewayResult:
        """
        Refund part or all of a captured payment intent.

        Raises:
            GatewayPermanentError: Refund not possible (already refunded, etc.)
            GatewayTransientError: Rate limit, timeout or Stripe outage
        """
        refund = cls._call(
            "create_refund",
            {
                "payment_intent_id": payment_intent_id,
                "amount_cents": amount_cents,
                "idempotency_key": idempotency_key,
            },
            lambda: stripe.Refund.create(
                payment_intent=payment_intent_id,
                amount=amount_cents,
                reason=reason,
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            ),
        )
        return GatewayResult(
            object_type="refund",
            object_id=refund.id,
            amount_cents=refund.amount,
            currency=refund.currency,
            status=refund.status,
            metadata=dict(refund.metadata or {}),
            raw_response=refund.to_dict(),
        )

    @classmethod
    def charge_off_session(
        cls,
        customer_id: str,
        payment_method_id: str,
        amount_cents: int,
        idempotency_key: str,
        currency: str = "usd",
        description: str = "",
        metadata: dict[str, str] | None = None,
    ) -> GatewayResult:
        """
        Charge a saved payment method without the customer present.

        Used for cancellation fees. The payment intent is confirmed
        immediately; a decline surfaces as GatewayPermanentError.
        """
        intent = cls._call(
            "charge_off_session",
            {
                "customer_id": customer_id,
                "amount_cents": amount_cents,
                "idempotency_key": idempotency_key,
            },
            lambda: stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=currency,
                customer=customer_id,
                payment_method=payment_method_id,
                off_session=True,
                confirm=True,
                description=description,
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            ),
        )
        if intent.status != "succeeded":
            raise GatewayPermanentError(
                f"Off-session charge ended in status {intent.status}",
                error_code="CHARGE_NOT_SUCCEEDED",
                details={"payment_intent_id": intent.id, "status": intent.status},
            )
        return GatewayResult(
            object_type="payment_intent",
            object_id=intent.id,
            amount_cents=intent.amount_received,
            currency=intent.currency,
            status=intent.status,
            metadata=dict(intent.metadata or {}),
            raw_response=intent.to_dict(),
        )

    @classmethod
    def create_transfer(
        cls,
        destination_account: str,
        amount_cents: int,
        idempotency_key: str,
        currency: str = "usd",
        transfer_group: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> GatewayResult:
        """Transfer funds to a cleaner's connected account."""
        params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency,
            "destination": destination_account,
            "metadata": metadata or {},
        }
        if transfer_group:
            params["transfer_group"] = transfer_group

        transfer = cls._call(
            "create_transfer",
            {
                "destination_account": destination_account,
                "amount_cents": amount_cents,
                "idempotency_key": idempotency_key,
            },
            lambda: stripe.Transfer.create(idempotency_key=idempotency_key, **params),
        )
        return GatewayResult(
            object_type="transfer",
            object_id=transfer.id,
            amount_cents=transfer.amount,
            currency=transfer.currency,
            status="succeeded",
            metadata=dict(transfer.metadata or {}),
            raw_response=transfer.to_dict(),
        )

    @classmethod
    def retrieve_object(cls, object_type: str, object_id: str) -> GatewayResult:
        """
        Fetch the gateway's authoritative record of an object.

        The returned amount is what actually moved: amount_received for
        payment intents, amount_captured minus amount_refunded for charges,
        the fee for charge balance transactions, the absolute amount for
        other balance transactions, and amount for everything else.

        Raises:
            GatewayObjectNotFound: If the gateway has no such object
            GatewayPermanentError: If the object type is not supported
        """
        resource_name = cls.OBJECT_RETRIEVERS.get(object_type)
        if resource_name is None:
            raise GatewayPermanentError(
                f"Unsupported gateway object type: {object_type}",
                error_code="UNSUPPORTED_OBJECT_TYPE",
                details={"object_type": object_type},
            )
        resource = getattr(stripe, resource_name)

        obj = cls._call(
            "retrieve_object",
            {"object_type": object_type, "object_id": object_id},
            lambda: resource.retrieve(object_id),
        )

        if object_type == "payment_intent":
            amount = obj.amount_received
        elif object_type == "charge":
            amount = obj.amount_captured - obj.amount_refunded
        elif object_type == "balance_transaction":
            amount = (
                obj.fee if obj.type in cls.FEE_TRANSACTION_TYPES else abs(obj.amount)
            )
        else:
            amount = obj.amount

        return GatewayResult(
            object_type=object_type,
            object_id=obj.id,
            amount_cents=amount,
            currency=obj.currency,
            status=getattr(obj, "status", "") or "",
            metadata=dict(getattr(obj, "metadata", None) or {}),
            raw_response=obj.to_dict(),
        )

    @classmethod
    def verify_webhook_signature(cls, payload: bytes, signature: str) -> dict[str, Any]:
        """
        Verify and parse a Stripe webhook event.

        Raises:
            InvalidWebhookSignature: Bad signature or malformed payload
        """
        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                settings.STRIPE_WEBHOOK_SECRET,
            )
        except (stripe.SignatureVerificationError, ValueError) as e:
            raise InvalidWebhookSignature(
                "Invalid webhook signature",
                gateway_code="signature_verification_failed",
                details={"error": str(e)},
            ) from e
        return event.to_dict()

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to gateway exceptions.

        Raises:
            GatewayPermanentError: Declines, invalid requests, auth failures
            GatewayObjectNotFound: resource_missing on retrieve
            GatewayTransientError: Rate limits, connection errors, 5xx
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, GatewayCallError):
            raise error

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Card error from gateway",
                extra={**log_context, "decline_code": decline_code},
            )
            raise GatewayPermanentError(
                str(error.user_message or error),
                error_code="CARD_DECLINED",
                gateway_code=error.code,
                decline_code=decline_code,
            )

        if isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to gateway",
                extra={**log_context, "gateway_code": error.code},
            )
            if error.code == "resource_missing":
                raise GatewayObjectNotFound(
                    str(error),
                    gateway_code=error.code,
                    details={"object_id": log_context.get("object_id")},
                )
            raise GatewayPermanentError(str(error), gateway_code=error.code)

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by gateway", extra=log_context)
            raise GatewayTransientError(
                "Gateway rate limit exceeded. Please retry.",
                error_code="GATEWAY_RATE_LIMITED",
                gateway_code="rate_limit",
            )

        if isinstance(error, stripe.APIConnectionError):
            logger.error("Connection error to gateway", extra=log_context, exc_info=True)
            raise GatewayTransientError(
                "Could not connect to the payment gateway. Please retry.",
                gateway_code="api_connection_error",
            )

        if isinstance(error, stripe.APIError):
            logger.error("Gateway API error", extra=log_context, exc_info=True)
            raise GatewayTransientError(
                "Payment gateway error. Please retry.",
                gateway_code="api_error",
            )

        if isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Gateway authentication failed - check API key",
                extra=log_context,
            )
            raise GatewayPermanentError(
                "Payment gateway authentication failed",
                error_code="GATEWAY_AUTH_FAILED",
                gateway_code="authentication_error",
            )

        logger.error(
            f"Unexpected error from gateway: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        raise GatewayTransientError(
            f"Unexpected gateway error: {error}",
            gateway_code="unknown_error",
        )
