"""
Webhook event handlers for Stripe events.

Handlers turn gateway-side money movements into ledger pairs. Each handler
returns a ServiceResult; a failure marks the WebhookEvent failed so
retry_failed_webhooks picks it up again.

Postings:
    payment_intent.succeeded: booking_revenue and addon_* pairs
    charge.succeeded: stripe_fee pair for the processing fee
    charge.refunded: manual_adjustment pair per refund made outside the engine
    charge.dispute.created: dispute_chargeback pair
    charge.dispute.closed (won): dispute_reversal pair

Every pair uses a key derived from the gateway object id, so a replayed
event never posts twice.

Usage:
    from settlements.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("custom.event")
    def handle_custom_event(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from datetime import timezone as dt_timezone
from typing import Callable

from audit.types import Actor
from core.services import ServiceResult
from settlements.adapters import IdempotencyKeyGenerator
from settlements.ledger.models import (
    AccountType,
    EntryType,
    GatewayObjectType,
    LedgerEntry,
    PartyType,
)
from settlements.ledger.services import LedgerService
from settlements.ledger.types import EntryMetadata, LegAccount, RecordPairParams
from settlements.models import AppointmentCharge, GatewayOperation, WebhookEvent
from settlements.services import SettlementService

logger = logging.getLogger(__name__)

# Refund statuses that never moved money
INACTIVE_REFUND_STATUSES = ("failed", "canceled")

EXTERNAL_REFUND_DEBIT = LegAccount(AccountType.REFUNDS_PAYABLE, PartyType.HOMEOWNER)
EXTERNAL_REFUND_CREDIT = LegAccount(AccountType.ACCOUNTS_RECEIVABLE, PartyType.GATEWAY)


# =============================================================================
# Handler Registry
# =============================================================================


WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(event_type: str) -> Callable:
    """Register a handler for a Stripe event type."""

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[event_type] = func
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Dispatch a webhook event to its handler.

    Event types without a handler succeed without doing anything.
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            "No handler registered for event type",
            extra={
                "event_type": webhook_event.event_type,
                "stripe_event_id": webhook_event.stripe_event_id,
            },
        )
        return ServiceResult.success(None)

    logger.info(
        "Dispatching webhook to handler",
        extra={
            "event_type": webhook_event.event_type,
            "stripe_event_id": webhook_event.stripe_event_id,
        },
    )
    return handler(webhook_event)


# =============================================================================
# Lookups
# =============================================================================


def find_charge(obj: dict) -> AppointmentCharge | None:
    """
    AppointmentCharge a gateway object belongs to.

    Objects the engine created carry appointment_id in their metadata;
    bookings are matched on their payment intent.
    """
    appointment_id = (obj.get("metadata") or {}).get("appointment_id")
    if appointment_id:
        try:
            charge = AppointmentCharge.objects.filter(
                appointment_id=uuid.UUID(str(appointment_id))
            ).first()
        except ValueError:
            charge = None
        if charge is not None:
            return charge

    payment_intent_id = obj.get("payment_intent")
    if not payment_intent_id and obj.get("object") == "payment_intent":
        payment_intent_id = obj.get("id")
    if not payment_intent_id:
        return None
    return AppointmentCharge.objects.filter(payment_intent_id=payment_intent_id).first()


def _charge_not_found(webhook_event: WebhookEvent) -> ServiceResult:
    logger.warning(
        "No appointment charge for webhook object",
        extra={
            "stripe_event_id": webhook_event.stripe_event_id,
            "object_id": webhook_event.get_object_id(),
        },
    )
    return ServiceResult.failure(
        f"No appointment charge for {webhook_event.get_object_id()}",
        error_code="CHARGE_NOT_FOUND",
    )


def _created_at(obj: dict) -> datetime | None:
    created = obj.get("created")
    if not created:
        return None
    return datetime.fromtimestamp(created, tz=dt_timezone.utc)


def _is_engine_object(obj: dict) -> bool:
    """Whether the settlement engine created this object itself."""
    return bool((obj.get("metadata") or {}).get("operation_id"))


# =============================================================================
# Payment Intent Handlers
# =============================================================================


@register_handler("payment_intent.succeeded")
def handle_payment_intent_succeeded(webhook_event: WebhookEvent) -> ServiceResult:
    """Post the booking's revenue pairs once its payment intent captures."""
    obj = webhook_event.data_object
    if _is_engine_object(obj):
        # Off-session fee charges are posted by the settlement that made them
        return ServiceResult.success([])

    charge = AppointmentCharge.objects.filter(payment_intent_id=obj.get("id")).first()
    if charge is None:
        return _charge_not_found(webhook_event)

    pairs = SettlementService.record_booking_charge(
        charge.appointment_id, actor=Actor.system()
    )
    return ServiceResult.success(pairs)


@register_handler("payment_intent.payment_failed")
def handle_payment_intent_failed(webhook_event: WebhookEvent) -> ServiceResult:
    """Nothing moved; record the decline in the logs only."""
    obj = webhook_event.data_object
    error = obj.get("last_payment_error") or {}
    logger.warning(
        "Payment intent failed",
        extra={
            "stripe_event_id": webhook_event.stripe_event_id,
            "payment_intent_id": obj.get("id"),
            "decline_code": error.get("decline_code"),
            "gateway_code": error.get("code"),
        },
    )
    return ServiceResult.success(None)


# =============================================================================
# Charge Handlers
# =============================================================================


@register_handler("charge.succeeded")
def handle_charge_succeeded(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Post the gateway's processing fee as a stripe_fee pair.

    The fee lives on the charge's balance transaction. When the event
    carries only its id the transaction is fetched from the gateway.
    """
    obj = webhook_event.data_object
    charge = find_charge(obj)
    if charge is None:
        return _charge_not_found(webhook_event)

    balance_transaction = obj.get("balance_transaction")
    if not balance_transaction:
        logger.info(
            "Charge has no balance transaction yet",
            extra={
                "stripe_event_id": webhook_event.stripe_event_id,
                "charge_id": obj.get("id"),
            },
        )
        return ServiceResult.success(None)

    if isinstance(balance_transaction, dict):
        transaction_id = balance_transaction["id"]
        fee_cents = balance_transaction.get("fee") or 0
    else:
        transaction_id = balance_transaction
        fee_cents = (
            SettlementService.get_gateway_adapter()
            .retrieve_object(GatewayObjectType.BALANCE_TRANSACTION, transaction_id)
            .amount_cents
        )
    if fee_cents <= 0:
        return ServiceResult.success(None)

    pair = LedgerService.record_pair(
        RecordPairParams(
            appointment_id=charge.appointment_id,
            entry_type=EntryType.STRIPE_FEE,
            amount_cents=fee_cents,
            idempotency_key=IdempotencyKeyGenerator.for_webhook(
                transaction_id, EntryType.STRIPE_FEE
            ),
            gateway_object_type=GatewayObjectType.BALANCE_TRANSACTION,
            gateway_object_id=transaction_id,
            effective_date=_created_at(obj),
            currency=obj.get("currency") or charge.currency,
            description=f"Processing fee for {obj.get('id')}",
            created_by="stripe_webhook",
        )
    )
    return ServiceResult.success([pair])


@register_handler("charge.refunded")
def handle_charge_refunded(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Post refunds issued outside the settlement engine.

    Refunds the engine created carry its operation id in their metadata
    and were posted when they were made. Any other refund (one issued from
    the Stripe dashboard, say) is posted as a manual_adjustment moving the
    amount from refunds payable against the gateway receivable.
    """
    obj = webhook_event.data_object
    charge = find_charge(obj)
    if charge is None:
        return _charge_not_found(webhook_event)

    pairs = []
    for refund in (obj.get("refunds") or {}).get("data") or []:
        refund_id = refund.get("id")
        if (
            not refund_id
            or _is_engine_object(refund)
            or refund.get("status") in INACTIVE_REFUND_STATUSES
            or GatewayOperation.objects.filter(gateway_object_id=refund_id).exists()
        ):
            continue
        pairs.append(
            RecordPairParams(
                appointment_id=charge.appointment_id,
                entry_type=EntryType.MANUAL_ADJUSTMENT,
                amount_cents=refund["amount"],
                idempotency_key=IdempotencyKeyGenerator.for_webhook(
                    refund_id, EntryType.MANUAL_ADJUSTMENT
                ),
                party_user_id=charge.homeowner_id,
                gateway_object_type=GatewayObjectType.REFUND,
                gateway_object_id=refund_id,
                effective_date=_created_at(refund),
                currency=refund.get("currency") or charge.currency,
                description="Refund issued outside the settlement engine",
                metadata=EntryMetadata(reason=refund.get("reason") or "external_refund"),
                created_by="stripe_webhook",
                debit_account=EXTERNAL_REFUND_DEBIT,
                credit_account=EXTERNAL_REFUND_CREDIT,
            )
        )

    results = LedgerService.record_pairs(pairs)
    if results:
        logger.info(
            "External refunds posted",
            extra={
                "appointment_id": str(charge.appointment_id),
                "refunds": len(results),
                "pairs_created": sum(1 for pair in results if pair.created),
            },
        )
    return ServiceResult.success(results)


# =============================================================================
# Dispute Handlers
# =============================================================================


@register_handler("charge.dispute.created")
def handle_dispute_created(webhook_event: WebhookEvent) -> ServiceResult:
    """Post the disputed amount as a dispute_chargeback pair."""
    dispute = webhook_event.data_object
    charge = find_charge(dispute)
    if charge is None:
        return _charge_not_found(webhook_event)

    pair = LedgerService.record_pair(
        RecordPairParams(
            appointment_id=charge.appointment_id,
            entry_type=EntryType.DISPUTE_CHARGEBACK,
            amount_cents=dispute["amount"],
            idempotency_key=IdempotencyKeyGenerator.for_webhook(
                dispute["id"], EntryType.DISPUTE_CHARGEBACK
            ),
            party_user_id=charge.homeowner_id,
            gateway_object_type=GatewayObjectType.DISPUTE,
            gateway_object_id=dispute["id"],
            effective_date=_created_at(dispute),
            currency=dispute.get("currency") or charge.currency,
            description="Chargeback opened by the card issuer",
            metadata=EntryMetadata(reason=dispute.get("reason")),
            created_by="stripe_webhook",
        )
    )
    logger.warning(
        "Dispute chargeback posted",
        extra={
            "appointment_id": str(charge.appointment_id),
            "dispute_id": dispute["id"],
            "amount_cents": dispute["amount"],
        },
    )
    return ServiceResult.success([pair])


@register_handler("charge.dispute.closed")
def handle_dispute_closed(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Post a dispute_reversal pair when the dispute is won.

    The pair references the balance transaction that returned the funds,
    leaving the dispute id to the chargeback. A lost dispute posts nothing.
    """
    dispute = webhook_event.data_object
    if dispute.get("status") != "won":
        logger.info(
            "Dispute closed without reinstatement",
            extra={"dispute_id": dispute.get("id"), "status": dispute.get("status")},
        )
        return ServiceResult.success(None)

    charge = find_charge(dispute)
    if charge is None:
        return _charge_not_found(webhook_event)

    chargeback = LedgerEntry.objects.filter(
        gateway_object_id=dispute["id"],
        entry_type=EntryType.DISPUTE_CHARGEBACK,
    ).exists()
    if not chargeback:
        return ServiceResult.failure(
            f"Chargeback for {dispute['id']} not posted yet",
            error_code="CHARGEBACK_NOT_POSTED",
        )

    reinstated = [
        txn for txn in dispute.get("balance_transactions") or [] if txn.get("amount", 0) > 0
    ]
    transaction_id = reinstated[0]["id"] if reinstated else None
    amount_cents = reinstated[0]["amount"] if reinstated else dispute["amount"]

    pair = LedgerService.record_pair(
        RecordPairParams(
            appointment_id=charge.appointment_id,
            entry_type=EntryType.DISPUTE_REVERSAL,
            amount_cents=amount_cents,
            idempotency_key=IdempotencyKeyGenerator.for_webhook(
                dispute["id"], EntryType.DISPUTE_REVERSAL
            ),
            party_user_id=charge.homeowner_id,
            gateway_object_type=(
                GatewayObjectType.BALANCE_TRANSACTION if transaction_id else None
            ),
            gateway_object_id=transaction_id,
            currency=dispute.get("currency") or charge.currency,
            description="Dispute won, funds reinstated",
            metadata=EntryMetadata(reason=f"dispute {dispute['id']} won"),
            created_by="stripe_webhook",
        )
    )
    return ServiceResult.success([pair])
