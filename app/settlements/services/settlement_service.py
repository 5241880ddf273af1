"""
Cancellation settlement orchestration.

SettlementService turns a cancellation request into gateway money
movements and balanced ledger pairs, following a three-phase pattern for
every money movement:

    Phase 1: Record a GatewayOperation (idempotency key derived from
             appointment, entry type and discriminator)
    Phase 2: Call the gateway OUTSIDE any transaction, with bounded
             retries on transient errors only
    Phase 3: Post the ledger pair from the stored gateway reference

If phase 3 fails the operation stays succeeded/unposted and
retry_unposted_operations() finishes it later without calling the gateway
again.

Usage:
    from settlements.services import SettlementService

    breakdown = SettlementService.settle_cancellation(
        appointment_id=appointment_id,
        cancelled_by="homeowner",
        actor_id=request.user.id,
    )
    print(breakdown.net_cost_cents)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from django.db import DatabaseError, transaction
from django.db.models import F, Sum
from django.utils import timezone

from audit.models import AuditEventType, AuditSeverity
from audit.services import AuditLog
from audit.types import Actor, StateSnapshot
from core.exceptions import ConflictError, ValidationError
from core.services import BaseService, ServiceResult
from settlements.adapters import IdempotencyKeyGenerator, RetryPolicy, StripeGatewayAdapter
from settlements.exceptions import (
    GatewayCallError,
    GatewayPermanentError,
    SettlementFailedError,
    SettlementNotFound,
)
from settlements.ledger.exceptions import DuplicateEntryConflict, LedgerInvariantViolation
from settlements.ledger.models import EntryType, GatewayObjectType
from settlements.ledger.posting_rules import ADDON_ENTRY_TYPES
from settlements.ledger.services import LedgerService
from settlements.ledger.types import EntryMetadata, LedgerPair, RecordPairParams
from settlements.locks import DistributedLock, check_version
from settlements.models import AppointmentCharge, GatewayOperation, Settlement
from settlements.policy import (
    CancellationOutcome,
    CancelledBy,
    PolicyConfig,
    compute_cancellation_outcome,
)
from settlements.services.breakdown import (
    AppealEligibility,
    Breakdown,
    CancellationFeeSummary,
    ChargeLine,
    CleanerCompensation,
    CleanerShareSummary,
    FeeStatus,
    OriginalCharges,
    PlatformSummary,
    RefundSummary,
)
from settlements.state_machines import (
    GatewayOperationKind,
    GatewayOperationState,
    LedgerPostingState,
    SettlementState,
)

if TYPE_CHECKING:
    from datetime import datetime

    from appeals.models import Appeal


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Distributed lock TTL for a whole settlement (seconds)
SETTLEMENT_LOCK_TTL = 120

# Maximum wait for the settlement lock (seconds)
SETTLEMENT_LOCK_TIMEOUT = 10.0

# Gateway result type for each operation kind
OPERATION_OBJECT_TYPES = {
    GatewayOperationKind.CHARGE: GatewayObjectType.PAYMENT_INTENT,
    GatewayOperationKind.REFUND: GatewayObjectType.REFUND,
    GatewayOperationKind.TRANSFER: GatewayObjectType.TRANSFER,
}

# (attempted, succeeded, failed) audit events per operation kind
OPERATION_AUDIT_EVENTS = {
    GatewayOperationKind.CHARGE: (
        AuditEventType.FEE_CHARGE_ATTEMPTED,
        AuditEventType.FEE_CHARGE_SUCCEEDED,
        AuditEventType.FEE_CHARGE_FAILED,
    ),
    GatewayOperationKind.REFUND: (
        AuditEventType.REFUND_INITIATED,
        AuditEventType.REFUND_COMPLETED,
        AuditEventType.REFUND_FAILED,
    ),
    GatewayOperationKind.TRANSFER: (
        AuditEventType.PAYOUT_INITIATED,
        AuditEventType.PAYOUT_COMPLETED,
        AuditEventType.PAYOUT_FAILED,
    ),
}


# =============================================================================
# Data Types
# =============================================================================


@dataclass(frozen=True)
class OperationSpec:
    """One money movement to run through the three phases."""

    entry_type: EntryType
    operation: GatewayOperationKind
    amount_cents: int
    idempotency_key: str
    party_user_id: uuid.UUID | None = None
    destination: str = ""
    description: str = ""


@dataclass
class StepOutcome:
    """What happened to one operation."""

    operation: GatewayOperation
    posted: bool = False
    ledger_pair: LedgerPair | None = None
    error: GatewayCallError | None = None

    @property
    def gateway_failed(self) -> bool:
        return self.error is not None


@dataclass
class UnpostedRetryResult:
    posted: int = 0
    failed: int = 0
    completed_settlements: list[uuid.UUID] = field(default_factory=list)
    completed_appeals: list[uuid.UUID] = field(default_factory=list)


@dataclass
class AppealReliefResult:
    """
    Result of posting appeal relief.

    Attributes:
        appeal_id: Appeal the relief belongs to
        operations: Gateway operations created for the relief
        ledger_entry_ids: Entries posted (empty for a replay with nothing new)
        fully_posted: Whether every relief operation reached the ledger
    """

    appeal_id: uuid.UUID
    operations: list[GatewayOperation] = field(default_factory=list)
    ledger_entry_ids: list[uuid.UUID] = field(default_factory=list)
    fully_posted: bool = True

    @property
    def total_cents(self) -> int:
        return sum(op.amount_cents for op in self.operations)


@dataclass(frozen=True)
class ReliefAllowance:
    """
    Relief still available to an appeal.

    Attributes:
        fee_cents: Collected cancellation fee not yet reversed by another appeal
        withheld_cents: Withheld booking amount not yet returned by another appeal
    """

    fee_cents: int
    withheld_cents: int


# -----------------------------------------------------------------------------
# Audit payloads
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class CancellationRequestPayload:
    cancelled_by: str
    requested_at: datetime
    confirmation_id: str
    resumed: bool = False


@dataclass(frozen=True)
class PolicyComputedPayload:
    total_cents: int
    refund_amount_cents: int
    refund_percentage: int
    cancellation_fee_cents: int
    cleaner_payout_cents: int
    platform_fee_cents: int
    days_until: int
    within_penalty_window: bool
    within_fee_window: bool
    cleaner_penalty_applies: bool
    rationale: str


@dataclass(frozen=True)
class GatewayStepPayload:
    operation_id: uuid.UUID
    operation: str
    entry_type: str
    amount_cents: int
    idempotency_key: str
    attempt_count: int = 0
    gateway_object_id: str | None = None
    error_code: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class SettlementConfirmedPayload:
    confirmation_id: str
    net_cost_cents: int
    refund_amount_cents: int
    cancellation_fee_cents: int


@dataclass(frozen=True)
class SettlementFailedPayload:
    reason: str
    error_code: str | None = None
    operation_id: uuid.UUID | None = None


@dataclass(frozen=True)
class AppealReliefPayload:
    settlement_id: uuid.UUID
    amounts: dict[str, int]
    fully_posted: bool


# =============================================================================
# Settlement Service
# =============================================================================


class SettlementService(BaseService):
    """
    Orchestrates cancellation settlements, booking postings and appeal relief.

    Two-phase commit around every gateway call:
        - The gateway is never called inside a database transaction
        - The GatewayOperation row exists before the call is made
        - The ledger is written only from a recorded gateway result

    All methods are classmethods - no instance state is maintained.
    """

    # Gateway adapter class - can be swapped for testing
    _gateway_adapter: type | None = None

    @classmethod
    def get_gateway_adapter(cls) -> type:
        """Get the gateway adapter class (allows injection for testing)."""
        return cls._gateway_adapter or StripeGatewayAdapter

    @classmethod
    def set_gateway_adapter(cls, adapter: type | None) -> None:
        """Set a custom gateway adapter (for testing)."""
        cls._gateway_adapter = adapter

    # =========================================================================
    # Cancellation
    # =========================================================================

    @classmethod
    def settle_cancellation(
        cls,
        appointment_id: uuid.UUID,
        cancelled_by: CancelledBy | str,
        actor_id: uuid.UUID | None = None,
        now: datetime | None = None,
        config: PolicyConfig | None = None,
        request_id: str | None = None,
    ) -> Breakdown:
        """
        Settle the cancellation of an appointment.

        Idempotent per appointment: a completed settlement returns its
        stored breakdown, and a settlement left failed or requiring
        attention resumes with the amounts computed the first time.

        Args:
            appointment_id: Appointment being cancelled
            cancelled_by: "homeowner" or "cleaner"
            actor_id: User requesting the cancellation
            now: Cancellation time (defaults to now)
            config: Policy configuration (defaults to settings)
            request_id: Correlation id for audit events

        Returns:
            Breakdown of the settlement

        Raises:
            SettlementNotFound: No charge recorded for the appointment
            PolicyComputationError: Malformed charge or configuration
            SettlementFailedError: The gateway refused before any money moved
            LockAcquisitionError: Another settlement holds the appointment
        """
        now = now or timezone.now()
        config = config or PolicyConfig.from_settings()
        request_id = request_id or str(uuid.uuid4())

        cls.get_logger().info(
            "Starting cancellation settlement",
            extra={
                "appointment_id": str(appointment_id),
                "cancelled_by": str(cancelled_by),
                "request_id": request_id,
            },
        )

        with DistributedLock(
            f"settlement:{appointment_id}",
            ttl=SETTLEMENT_LOCK_TTL,
            timeout=SETTLEMENT_LOCK_TIMEOUT,
        ):
            return cls._settle_with_lock(
                appointment_id=appointment_id,
                cancelled_by=cancelled_by,
                actor_id=actor_id,
                now=now,
                config=config,
                request_id=request_id,
            )

    @classmethod
    def request_cancellation(
        cls,
        appointment_id: uuid.UUID,
        cancelled_by: CancelledBy | str,
        actor_id: uuid.UUID | None = None,
        now: datetime | None = None,
        request_id: str | None = None,
    ) -> ServiceResult[Breakdown]:
        """
        Settle a cancellation, returning gateway refusals as a failed result.

        Returns:
            ServiceResult with the Breakdown, or a failure carrying the
            homeowner-facing message when nothing was charged
        """
        try:
            breakdown = cls.settle_cancellation(
                appointment_id=appointment_id,
                cancelled_by=cancelled_by,
                actor_id=actor_id,
                now=now,
                request_id=request_id,
            )
        except SettlementFailedError as exc:
            return ServiceResult.failure(exc.message, error_code=exc.error_code)
        return ServiceResult.success(breakdown)

    @classmethod
    def _settle_with_lock(
        cls,
        appointment_id: uuid.UUID,
        cancelled_by: CancelledBy | str,
        actor_id: uuid.UUID | None,
        now: datetime,
        config: PolicyConfig,
        request_id: str,
    ) -> Breakdown:
        charge = cls._load_charge(appointment_id)
        actor = cls._actor_for(cancelled_by, actor_id)

        existing = Settlement.objects.filter(appointment_id=appointment_id).first()
        if existing is not None and existing.is_completed:
            cls.get_logger().info(
                "Settlement already completed, returning stored breakdown",
                extra={
                    "appointment_id": str(appointment_id),
                    "confirmation_id": existing.confirmation_id,
                },
            )
            return Breakdown.from_dict(existing.breakdown)

        if existing is None:
            if charge.is_cancelled:
                raise ConflictError(
                    f"Appointment {appointment_id} is already cancelled",
                    error_code="APPOINTMENT_ALREADY_CANCELLED",
                    details={"appointment_id": str(appointment_id)},
                )
            outcome = compute_cancellation_outcome(
                charge.to_terms(), cancelled_by, now, config
            )
            cls._validate_payment_details(charge, outcome)
            settlement = cls._create_settlement(
                charge, outcome, actor, now, config, request_id
            )
        else:
            settlement = cls._resume_settlement(existing, actor, request_id)

        return cls._execute(settlement, charge, actor, request_id)

    @classmethod
    def _create_settlement(
        cls,
        charge: AppointmentCharge,
        outcome: CancellationOutcome,
        actor: Actor,
        now: datetime,
        config: PolicyConfig,
        request_id: str,
    ) -> Settlement:
        """Phase 0: persist the settlement and its computed outcome."""
        with transaction.atomic():
            settlement = Settlement.objects.create(
                appointment_id=charge.appointment_id,
                charge=charge,
                cancelled_by=outcome.cancelled_by,
                actor_id=actor.id,
                requested_at=now,
                total_cents=outcome.total_cents,
                refund_amount_cents=outcome.refund_amount_cents,
                refund_percentage=outcome.refund_percentage,
                cancellation_fee_cents=outcome.cancellation_fee_cents,
                cleaner_payout_cents=outcome.cleaner_payout_cents,
                platform_fee_cents=outcome.platform_fee_cents,
                days_until=outcome.days_until,
                policy_outcome=cls._outcome_snapshot(outcome),
                appeal_window_expires_at=now + timedelta(hours=config.appeal_window_hours),
            )
            settlement.start_processing()
            settlement.save()

            AuditLog.record(
                AuditEventType.CANCELLATION_INITIATED,
                actor=actor,
                appointment_id=charge.appointment_id,
                request_id=request_id,
                event_data=CancellationRequestPayload(
                    cancelled_by=outcome.cancelled_by,
                    requested_at=now,
                    confirmation_id=settlement.confirmation_id,
                ),
                previous_state=StateSnapshot(state=SettlementState.PENDING),
                new_state=cls._snapshot(settlement),
            )
            AuditLog.record(
                AuditEventType.CANCELLATION_POLICY_COMPUTED,
                actor=actor,
                appointment_id=charge.appointment_id,
                request_id=request_id,
                event_data=PolicyComputedPayload(
                    total_cents=outcome.total_cents,
                    refund_amount_cents=outcome.refund_amount_cents,
                    refund_percentage=outcome.refund_percentage,
                    cancellation_fee_cents=outcome.cancellation_fee_cents,
                    cleaner_payout_cents=outcome.cleaner_payout_cents,
                    platform_fee_cents=outcome.platform_fee_cents,
                    days_until=outcome.days_until,
                    within_penalty_window=outcome.within_penalty_window,
                    within_fee_window=outcome.within_fee_window,
                    cleaner_penalty_applies=outcome.cleaner_penalty_applies,
                    rationale=outcome.rationale,
                ),
            )

        cls.get_logger().info(
            "Settlement created",
            extra={
                "appointment_id": str(charge.appointment_id),
                "settlement_id": str(settlement.id),
                "confirmation_id": settlement.confirmation_id,
                "refund_cents": outcome.refund_amount_cents,
                "fee_cents": outcome.cancellation_fee_cents,
            },
        )
        return settlement

    @classmethod
    def _resume_settlement(
        cls,
        settlement: Settlement,
        actor: Actor,
        request_id: str,
    ) -> Settlement:
        """Move a failed or attention-requiring settlement back to processing."""
        with transaction.atomic():
            settlement = check_version(Settlement, settlement.pk, settlement.version)
            previous = cls._snapshot(settlement)
            if settlement.state != SettlementState.PROCESSING:
                settlement.start_processing()
                settlement.save()
            AuditLog.record(
                AuditEventType.CANCELLATION_INITIATED,
                actor=actor,
                appointment_id=settlement.appointment_id,
                request_id=request_id,
                event_data=CancellationRequestPayload(
                    cancelled_by=settlement.cancelled_by,
                    requested_at=settlement.requested_at,
                    confirmation_id=settlement.confirmation_id,
                    resumed=True,
                ),
                previous_state=previous,
                new_state=cls._snapshot(settlement),
            )

        cls.get_logger().info(
            "Resuming settlement",
            extra={
                "appointment_id": str(settlement.appointment_id),
                "settlement_id": str(settlement.id),
                "previous_state": previous.state,
            },
        )
        return settlement

    @classmethod
    def _execute(
        cls,
        settlement: Settlement,
        charge: AppointmentCharge,
        actor: Actor,
        request_id: str,
    ) -> Breakdown:
        """Run every money movement of the settlement and record the result."""
        outcomes: list[StepOutcome] = []
        attention_reasons: list[str] = []

        for spec in cls._cancellation_specs(settlement, charge):
            step = cls._run_step(
                spec,
                charge=charge,
                actor=actor,
                request_id=request_id,
                settlement=settlement,
            )
            outcomes.append(step)

            if step.gateway_failed:
                money_moved = any(
                    o.operation.is_succeeded
                    and o.operation.operation != GatewayOperationKind.NONE
                    for o in outcomes
                )
                if isinstance(step.error, GatewayPermanentError) and not money_moved:
                    cls._fail_settlement(settlement, step, actor, request_id)
                attention_reasons.append(
                    f"{step.operation.entry_type}: {step.operation.last_error}"
                )
                break
            if not step.posted:
                attention_reasons.append(
                    f"{step.operation.entry_type}: ledger posting pending"
                )

        with transaction.atomic():
            settlement = check_version(Settlement, settlement.pk)
            charge = AppointmentCharge.objects.select_for_update().get(pk=charge.pk)
            previous = cls._snapshot(settlement)

            if attention_reasons:
                settlement.require_attention(reason="; ".join(attention_reasons))
            else:
                settlement.complete()
            if not charge.is_cancelled:
                charge.cancel(at=settlement.requested_at)
                charge.save(update_fields=["status", "cancelled_at", "updated_at"])

            breakdown = cls.build_breakdown(settlement, charge)
            settlement.breakdown = breakdown.to_dict()
            settlement.save()

            if attention_reasons:
                AuditLog.record(
                    AuditEventType.SETTLEMENT_FAILED,
                    actor=actor,
                    appointment_id=settlement.appointment_id,
                    request_id=request_id,
                    event_data=SettlementFailedPayload(reason=settlement.failure_reason),
                    previous_state=previous,
                    new_state=cls._snapshot(settlement),
                    severity=AuditSeverity.CRITICAL,
                )
            else:
                AuditLog.record(
                    AuditEventType.CANCELLATION_CONFIRMED,
                    actor=actor,
                    appointment_id=settlement.appointment_id,
                    request_id=request_id,
                    ledger_entry_ids=[
                        entry_id
                        for o in outcomes
                        if o.ledger_pair is not None
                        for entry_id in o.ledger_pair.entry_ids
                    ],
                    event_data=SettlementConfirmedPayload(
                        confirmation_id=settlement.confirmation_id,
                        net_cost_cents=breakdown.net_cost_cents,
                        refund_amount_cents=settlement.refund_amount_cents,
                        cancellation_fee_cents=settlement.cancellation_fee_cents,
                    ),
                    previous_state=previous,
                    new_state=cls._snapshot(settlement),
                )

        log_method = cls.get_logger().warning if attention_reasons else cls.get_logger().info
        log_method(
            "Settlement finished",
            extra={
                "appointment_id": str(settlement.appointment_id),
                "settlement_id": str(settlement.id),
                "state": settlement.state,
                "reasons": attention_reasons,
            },
        )
        return breakdown

    @classmethod
    def _fail_settlement(
        cls,
        settlement: Settlement,
        step: StepOutcome,
        actor: Actor,
        request_id: str,
    ) -> None:
        """Mark the settlement failed and raise; nothing was charged."""
        with transaction.atomic():
            locked = check_version(Settlement, settlement.pk)
            previous = cls._snapshot(locked)
            locked.fail(reason=step.operation.last_error)
            locked.save()
            AuditLog.record(
                AuditEventType.SETTLEMENT_FAILED,
                actor=actor,
                appointment_id=locked.appointment_id,
                request_id=request_id,
                event_data=SettlementFailedPayload(
                    reason=step.operation.last_error,
                    error_code=step.error.error_code if step.error else None,
                    operation_id=step.operation.id,
                ),
                previous_state=previous,
                new_state=cls._snapshot(locked),
                severity=AuditSeverity.WARNING,
            )

        cls.get_logger().warning(
            "Settlement failed before any money moved",
            extra={
                "appointment_id": str(locked.appointment_id),
                "settlement_id": str(locked.id),
                "error_code": step.error.error_code if step.error else None,
            },
        )
        raise SettlementFailedError(
            details={
                "appointment_id": str(locked.appointment_id),
                "confirmation_id": locked.confirmation_id,
                "gateway_error_code": step.error.error_code if step.error else None,
            },
        )

    # =========================================================================
    # Booking revenue
    # =========================================================================

    @classmethod
    def record_booking_charge(
        cls,
        appointment_id: uuid.UUID,
        actor: Actor | None = None,
    ) -> list[LedgerPair]:
        """
        Post booking_revenue and one addon_* pair per line item.

        All pairs reference the captured payment intent. Safe to call
        repeatedly: already-posted pairs come back with created=False.

        Raises:
            SettlementNotFound: No charge recorded for the appointment
            ValidationError: The charge has no captured payment intent
        """
        charge = cls._load_charge(appointment_id)
        if not charge.payment_intent_id:
            raise ValidationError(
                "Booking has no captured payment intent",
                error_code="PAYMENT_INTENT_REQUIRED",
                details={"appointment_id": str(appointment_id)},
            )

        pairs = []
        if charge.base_price_cents > 0:
            pairs.append(
                cls._booking_params(charge, EntryType.BOOKING_REVENUE, charge.base_price_cents)
            )
        for item in charge.line_items.all():
            if item.amount_cents <= 0:
                continue
            pairs.append(
                cls._booking_params(
                    charge,
                    ADDON_ENTRY_TYPES[item.kind],
                    item.amount_cents,
                    line_item_kind=item.kind,
                    description=item.label,
                )
            )

        with DistributedLock(
            f"settlement:{appointment_id}",
            ttl=SETTLEMENT_LOCK_TTL,
            timeout=SETTLEMENT_LOCK_TIMEOUT,
        ):
            results = LedgerService.record_pairs(
                pairs, actor=actor or Actor.homeowner(charge.homeowner_id)
            )

        cls.get_logger().info(
            "Booking charge recorded",
            extra={
                "appointment_id": str(appointment_id),
                "pairs": len(results),
                "pairs_created": sum(1 for pair in results if pair.created),
            },
        )
        return results

    @staticmethod
    def _booking_params(
        charge: AppointmentCharge,
        entry_type: EntryType,
        amount_cents: int,
        line_item_kind: str | None = None,
        description: str = "",
    ) -> RecordPairParams:
        return RecordPairParams(
            appointment_id=charge.appointment_id,
            entry_type=entry_type,
            amount_cents=amount_cents,
            idempotency_key=IdempotencyKeyGenerator.for_booking(
                charge.appointment_id, entry_type
            ),
            party_user_id=charge.homeowner_id,
            gateway_object_type=GatewayObjectType.PAYMENT_INTENT,
            gateway_object_id=charge.payment_intent_id,
            effective_date=charge.created_at,
            currency=charge.currency,
            description=description or entry_type.label,
            metadata=EntryMetadata(line_item_kind=line_item_kind),
            created_by="settlement_service.record_booking_charge",
        )

    # =========================================================================
    # Cleaner bonus
    # =========================================================================

    @classmethod
    def pay_cleaner_bonus(
        cls,
        appointment_id: uuid.UUID,
        cleaner_id: uuid.UUID,
        amount_cents: int,
        reference: str,
        actor: Actor | None = None,
        request_id: str | None = None,
    ) -> GatewayOperation:
        """
        Transfer a bonus to an assigned cleaner and post a cleaner_bonus pair.

        The bonus runs through the same three phases as a cancellation
        payout. reference identifies why the bonus was granted (a conflict
        or review id); repeating a reference replays the same transfer.

        Raises:
            SettlementNotFound: No charge recorded for the appointment
            ValidationError: Bad amount, or the cleaner is not assigned or
                has no connected account
            ConflictError: The reference was already used for another amount
            GatewayCallError: The transfer failed or exhausted its retries
        """
        if (
            isinstance(amount_cents, bool)
            or not isinstance(amount_cents, int)
            or amount_cents <= 0
        ):
            raise ValidationError(
                "Bonus amount must be a positive number of cents",
                error_code="INVALID_AMOUNT",
                details={"amount_cents": repr(amount_cents)},
            )
        if not reference:
            raise ValidationError(
                "A bonus needs a reference",
                error_code="BONUS_REFERENCE_REQUIRED",
            )

        charge = cls._load_charge(appointment_id)
        assignment = charge.cleaner_assignments.filter(cleaner_id=cleaner_id).first()
        if assignment is None:
            raise ValidationError(
                "Cleaner is not assigned to this appointment",
                error_code="CLEANER_NOT_ASSIGNED",
                details={"cleaner_id": str(cleaner_id)},
            )
        if not assignment.connected_account_id:
            raise ValidationError(
                "Cleaner has no connected payout account",
                error_code="CONNECTED_ACCOUNT_REQUIRED",
                details={"cleaner_id": str(cleaner_id)},
            )

        key = IdempotencyKeyGenerator.for_bonus(appointment_id, cleaner_id, reference)
        existing = GatewayOperation.objects.filter(idempotency_key=key).first()
        if existing is not None and existing.amount_cents != amount_cents:
            raise ConflictError(
                "Bonus reference already used for a different amount",
                error_code="BONUS_REFERENCE_REUSED",
                details={
                    "reference": reference,
                    "amount_cents": existing.amount_cents,
                },
            )

        spec = OperationSpec(
            entry_type=EntryType.CLEANER_BONUS,
            operation=GatewayOperationKind.TRANSFER,
            amount_cents=amount_cents,
            idempotency_key=key,
            party_user_id=cleaner_id,
            destination=assignment.connected_account_id,
            description=f"Cleaner bonus ({reference})",
        )
        with DistributedLock(
            f"settlement:{appointment_id}",
            ttl=SETTLEMENT_LOCK_TTL,
            timeout=SETTLEMENT_LOCK_TIMEOUT,
        ):
            step = cls._run_step(
                spec,
                charge=charge,
                actor=actor or Actor.system(),
                request_id=request_id,
            )
        if step.gateway_failed:
            raise step.error

        cls.get_logger().info(
            "Cleaner bonus paid",
            extra={
                "appointment_id": str(appointment_id),
                "cleaner_id": str(cleaner_id),
                "amount_cents": amount_cents,
                "posted": step.posted,
            },
        )
        return step.operation

    # =========================================================================
    # Appeal relief
    # =========================================================================

    @classmethod
    def settle_appeal_relief(
        cls,
        appeal: Appeal,
        actor: Actor | None = None,
        request_id: str | None = None,
    ) -> AppealReliefResult:
        """
        Move the money an approved appeal grants.

        Posts new appeal_fee_reversal and appeal_refund pairs backed by
        compensating gateway refunds. The original cancellation entries are
        never touched. Amounts are capped by what earlier appeals on the
        same appointment have not already returned, computed under the
        settlement lock.

        Raises:
            SettlementNotFound: The appointment has no settlement
            ValidationError: Relief exceeds what the settlement still retains
            GatewayCallError: A relief refund failed permanently or exhausted
                its retries
        """
        resolution = appeal.typed_resolution
        actor = actor or Actor.system()
        settlement = cls._load_settlement(appeal.appointment_id)
        charge = settlement.charge

        result = AppealReliefResult(appeal_id=appeal.id)
        if resolution is None or not resolution.moves_money:
            return result

        with DistributedLock(
            f"settlement:{appeal.appointment_id}",
            ttl=SETTLEMENT_LOCK_TTL,
            timeout=SETTLEMENT_LOCK_TIMEOUT,
        ):
            specs = cls._appeal_relief_specs(appeal, settlement, resolution)
            for spec in specs:
                step = cls._run_step(
                    spec,
                    charge=charge,
                    actor=actor,
                    request_id=request_id,
                    appeal_id=appeal.id,
                )
                result.operations.append(step.operation)
                if step.ledger_pair is not None:
                    result.ledger_entry_ids.extend(step.ledger_pair.entry_ids)
                if step.gateway_failed:
                    raise step.error
                if not step.posted:
                    result.fully_posted = False

        if not specs:
            return result

        AuditLog.record(
            AuditEventType.APPEAL_RELIEF_POSTED,
            actor=actor,
            appointment_id=appeal.appointment_id,
            appeal_id=appeal.id,
            request_id=request_id,
            ledger_entry_ids=result.ledger_entry_ids,
            event_data=AppealReliefPayload(
                settlement_id=settlement.id,
                amounts={str(op.entry_type): op.amount_cents for op in result.operations},
                fully_posted=result.fully_posted,
            ),
        )
        cls.get_logger().info(
            "Appeal relief settled",
            extra={
                "appeal_id": str(appeal.id),
                "appointment_id": str(appeal.appointment_id),
                "total_cents": result.total_cents,
                "fully_posted": result.fully_posted,
            },
        )
        return result

    @classmethod
    def remaining_appeal_relief(
        cls,
        appointment_id: uuid.UUID,
        exclude_appeal_id: uuid.UUID | None = None,
    ) -> ReliefAllowance:
        """
        Fee and withheld amount not yet returned by appeal relief.

        Relief operations that did not fail permanently count as granted,
        including ones still waiting on a retry.

        Args:
            appointment_id: Appointment whose settlement is appealed
            exclude_appeal_id: Ignore this appeal's own relief operations

        Raises:
            SettlementNotFound: The appointment has no settlement
        """
        settlement = cls._load_settlement(appointment_id)
        return cls._relief_allowance(settlement, exclude_appeal_id)

    @staticmethod
    def _relief_allowance(
        settlement: Settlement,
        exclude_appeal_id: uuid.UUID | None,
    ) -> ReliefAllowance:
        granted_ops = GatewayOperation.objects.filter(
            appointment_id=settlement.appointment_id,
            entry_type__in=[EntryType.APPEAL_FEE_REVERSAL, EntryType.APPEAL_REFUND],
        ).exclude(state=GatewayOperationState.FAILED)
        if exclude_appeal_id is not None:
            granted_ops = granted_ops.exclude(appeal_id=exclude_appeal_id)
        granted = dict(
            granted_ops.order_by()
            .values_list("entry_type")
            .annotate(total=Sum("amount_cents"))
        )

        fee_collected = (
            settlement.operations.filter(
                entry_type=EntryType.CANCELLATION_FEE_REVENUE,
                state=GatewayOperationState.SUCCEEDED,
            ).aggregate(total=Sum("amount_cents"))["total"]
            or 0
        )
        withheld = settlement.total_cents - settlement.refund_amount_cents
        return ReliefAllowance(
            fee_cents=max(fee_collected - granted.get(EntryType.APPEAL_FEE_REVERSAL, 0), 0),
            withheld_cents=max(withheld - granted.get(EntryType.APPEAL_REFUND, 0), 0),
        )

    @classmethod
    def _appeal_relief_specs(
        cls,
        appeal: Appeal,
        settlement: Settlement,
        resolution,
    ) -> list[OperationSpec]:
        """Relief operations for the appeal. Call with the settlement lock held."""
        charge = settlement.charge
        allowance = cls._relief_allowance(settlement, exclude_appeal_id=appeal.id)
        own_ops = {
            op.entry_type: op for op in GatewayOperation.objects.filter(appeal_id=appeal.id)
        }

        specs: list[OperationSpec] = []
        if resolution.fee_refunded:
            fee_op = settlement.operations.filter(
                entry_type=EntryType.CANCELLATION_FEE_REVENUE,
                state=GatewayOperationState.SUCCEEDED,
            ).first()
            fee_cents = cls._relief_amount(
                own_ops.get(EntryType.APPEAL_FEE_REVERSAL),
                requested=allowance.fee_cents,
                available=allowance.fee_cents,
            )
            if fee_op is not None and fee_cents:
                specs.append(
                    OperationSpec(
                        entry_type=EntryType.APPEAL_FEE_REVERSAL,
                        operation=GatewayOperationKind.REFUND,
                        amount_cents=fee_cents,
                        idempotency_key=IdempotencyKeyGenerator.for_appeal(
                            appeal.id, EntryType.APPEAL_FEE_REVERSAL
                        ),
                        party_user_id=charge.homeowner_id,
                        destination=fee_op.gateway_object_id or "",
                        description="Cancellation fee refunded on appeal",
                    )
                )

        requested = resolution.refund_amount_cents or 0
        if not requested and resolution.penalty_waived:
            requested = allowance.withheld_cents
        refund_cents = cls._relief_amount(
            own_ops.get(EntryType.APPEAL_REFUND),
            requested=requested,
            available=allowance.withheld_cents,
        )
        if refund_cents:
            specs.append(
                OperationSpec(
                    entry_type=EntryType.APPEAL_REFUND,
                    operation=GatewayOperationKind.REFUND,
                    amount_cents=refund_cents,
                    idempotency_key=IdempotencyKeyGenerator.for_appeal(
                        appeal.id, EntryType.APPEAL_REFUND
                    ),
                    party_user_id=charge.homeowner_id,
                    destination=charge.payment_intent_id,
                    description="Withheld refund returned on appeal",
                )
            )
        return specs

    @staticmethod
    def _relief_amount(
        existing: GatewayOperation | None,
        requested: int,
        available: int,
    ) -> int:
        """
        Amount for one relief operation.

        An operation this appeal already started keeps its recorded amount;
        a succeeded one is always returned so its ledger pair can post.
        """
        if existing is not None:
            if existing.state == GatewayOperationState.SUCCEEDED:
                return existing.amount_cents
            requested = existing.amount_cents
        if requested > available:
            raise ValidationError(
                "Appeal refund exceeds the amount still withheld",
                error_code="APPEAL_REFUND_TOO_LARGE",
                details={"refund_amount_cents": requested, "withheld_cents": available},
            )
        return requested

    # =========================================================================
    # Unposted operations
    # =========================================================================

    @classmethod
    def retry_unposted_operations(cls, limit: int = 100) -> UnpostedRetryResult:
        """
        Post ledger pairs for operations the gateway completed but the
        ledger never recorded.

        Uses the stored gateway object id; the gateway is never called.
        A settlement left in requires_attention only because of unposted
        pairs is completed once they are all posted.
        """
        result = UnpostedRetryResult()
        operations = list(
            GatewayOperation.objects.filter(
                state=GatewayOperationState.SUCCEEDED,
                ledger_state=LedgerPostingState.UNPOSTED,
            )
            .select_related("settlement")
            .order_by("created_at")[:limit]
        )

        settlements: dict[uuid.UUID, Settlement] = {}
        appeal_ids: set[uuid.UUID] = set()
        for op in operations:
            with DistributedLock(
                f"settlement:{op.appointment_id}",
                ttl=SETTLEMENT_LOCK_TTL,
                timeout=SETTLEMENT_LOCK_TIMEOUT,
            ):
                pair = cls._post_operation(op, Actor.system(), request_id=None)
            if pair is None:
                result.failed += 1
                continue
            result.posted += 1
            if op.settlement is not None:
                settlements[op.settlement_id] = op.settlement
            elif op.appeal_id is not None:
                appeal_ids.add(op.appeal_id)

        for settlement in settlements.values():
            if cls._complete_if_fully_posted(settlement):
                result.completed_settlements.append(settlement.id)

        for appeal_id in sorted(appeal_ids, key=str):
            if cls._mark_relief_posted_if_complete(appeal_id):
                result.completed_appeals.append(appeal_id)

        cls.get_logger().info(
            "Unposted operation retry finished",
            extra={
                "posted": result.posted,
                "failed": result.failed,
                "completed_settlements": len(result.completed_settlements),
                "completed_appeals": len(result.completed_appeals),
            },
        )
        return result

    @classmethod
    def _complete_if_fully_posted(cls, settlement: Settlement) -> bool:
        if settlement.state != SettlementState.REQUIRES_ATTENTION:
            return False
        pending = settlement.operations.exclude(
            state=GatewayOperationState.SUCCEEDED,
            ledger_state=LedgerPostingState.POSTED,
        )
        if pending.exists():
            return False

        with DistributedLock(
            f"settlement:{settlement.appointment_id}",
            ttl=SETTLEMENT_LOCK_TTL,
            timeout=SETTLEMENT_LOCK_TIMEOUT,
        ):
            with transaction.atomic():
                locked = check_version(Settlement, settlement.pk)
                if locked.state != SettlementState.REQUIRES_ATTENTION:
                    return False
                previous = cls._snapshot(locked)
                locked.complete()
                breakdown = cls.build_breakdown(locked, locked.charge)
                locked.breakdown = breakdown.to_dict()
                locked.save()
                AuditLog.record(
                    AuditEventType.CANCELLATION_CONFIRMED,
                    actor=Actor.system(),
                    appointment_id=locked.appointment_id,
                    event_data=SettlementConfirmedPayload(
                        confirmation_id=locked.confirmation_id,
                        net_cost_cents=breakdown.net_cost_cents,
                        refund_amount_cents=locked.refund_amount_cents,
                        cancellation_fee_cents=locked.cancellation_fee_cents,
                    ),
                    previous_state=previous,
                    new_state=cls._snapshot(locked),
                )
        return True

    @staticmethod
    def _mark_relief_posted_if_complete(appeal_id: uuid.UUID) -> bool:
        pending = GatewayOperation.objects.filter(appeal_id=appeal_id).exclude(
            state=GatewayOperationState.SUCCEEDED,
            ledger_state=LedgerPostingState.POSTED,
        )
        if pending.exists():
            return False

        # appeals.services imports this module
        from appeals.services import AppealService

        return AppealService.mark_relief_posted(appeal_id)

    # =========================================================================
    # Three-phase step
    # =========================================================================

    @classmethod
    def _run_step(
        cls,
        spec: OperationSpec,
        charge: AppointmentCharge,
        actor: Actor,
        request_id: str | None,
        settlement: Settlement | None = None,
        appeal_id: uuid.UUID | None = None,
    ) -> StepOutcome:
        """Run phases 1-3 for one money movement."""
        # Phase 1: record the operation
        op, created = GatewayOperation.objects.get_or_create(
            idempotency_key=spec.idempotency_key,
            defaults={
                "settlement": settlement,
                "appointment_id": charge.appointment_id,
                "appeal_id": appeal_id,
                "operation": spec.operation,
                "entry_type": spec.entry_type,
                "amount_cents": spec.amount_cents,
                "currency": charge.currency,
                "party_user_id": spec.party_user_id,
                "destination": spec.destination,
                "description": spec.description,
            },
        )
        if not created and op.state in (
            GatewayOperationState.FAILED,
            GatewayOperationState.EXHAUSTED,
        ):
            op.retry()
            op.save()

        # Phase 2: gateway call
        if op.state == GatewayOperationState.PENDING:
            if op.operation == GatewayOperationKind.NONE:
                op.succeed()
                op.save()
            else:
                error = cls._call_gateway(op, charge, actor, request_id)
                if error is not None:
                    return StepOutcome(operation=op, error=error)
        else:
            cls.get_logger().info(
                "Gateway operation already succeeded, skipping gateway call",
                extra={
                    "operation_id": str(op.id),
                    "idempotency_key": op.idempotency_key,
                    "gateway_object_id": op.gateway_object_id,
                },
            )

        # Phase 3: ledger
        if op.ledger_state == LedgerPostingState.POSTED:
            return StepOutcome(operation=op, posted=True)
        pair = cls._post_operation(op, actor, request_id)
        return StepOutcome(operation=op, posted=pair is not None, ledger_pair=pair)

    @classmethod
    def _call_gateway(
        cls,
        op: GatewayOperation,
        charge: AppointmentCharge,
        actor: Actor,
        request_id: str | None,
    ) -> GatewayCallError | None:
        """
        Phase 2: call the gateway with retries. Never inside a transaction.

        Returns:
            None on success, or the error that ended the attempt
        """
        attempted, succeeded, failed = OPERATION_AUDIT_EVENTS[op.operation]
        adapter = cls.get_gateway_adapter()
        policy = RetryPolicy.from_settings()

        AuditLog.record(
            attempted,
            actor=actor,
            appointment_id=op.appointment_id,
            appeal_id=op.appeal_id,
            request_id=request_id,
            event_data=cls._step_payload(op),
        )

        def on_attempt(attempt: int) -> None:
            GatewayOperation.objects.filter(pk=op.pk).update(
                attempt_count=F("attempt_count") + 1
            )
            op.attempt_count += 1

        try:
            gateway_result = policy.run(
                lambda: cls._dispatch(adapter, op, charge),
                on_attempt=on_attempt,
            )
        except GatewayCallError as exc:
            exhausted = exc.is_retryable
            if exhausted:
                op.exhaust(error=exc.message)
            else:
                op.fail(error=exc.message)
            op.save()

            AuditLog.record(
                AuditEventType.GATEWAY_OPERATION_EXHAUSTED if exhausted else failed,
                actor=actor,
                appointment_id=op.appointment_id,
                appeal_id=op.appeal_id,
                request_id=request_id,
                event_data=cls._step_payload(op, error=exc),
                severity=AuditSeverity.CRITICAL if exhausted else AuditSeverity.WARNING,
            )
            cls.get_logger().error(
                "Gateway operation exhausted retries" if exhausted else "Gateway operation failed",
                extra={
                    "operation_id": str(op.id),
                    "appointment_id": str(op.appointment_id),
                    "entry_type": op.entry_type,
                    "attempt_count": op.attempt_count,
                    "error_code": exc.error_code,
                },
            )
            return exc

        op.succeed(
            object_type=OPERATION_OBJECT_TYPES[op.operation],
            object_id=gateway_result.object_id,
        )
        op.save()
        AuditLog.record(
            succeeded,
            actor=actor,
            appointment_id=op.appointment_id,
            appeal_id=op.appeal_id,
            request_id=request_id,
            event_data=cls._step_payload(op),
        )
        return None

    @staticmethod
    def _dispatch(adapter: type, op: GatewayOperation, charge: AppointmentCharge):
        metadata = {
            "appointment_id": str(op.appointment_id),
            "entry_type": op.entry_type,
            "operation_id": str(op.id),
        }
        if op.operation == GatewayOperationKind.REFUND:
            return adapter.create_refund(
                payment_intent_id=op.destination,
                amount_cents=op.amount_cents,
                idempotency_key=op.idempotency_key,
                metadata=metadata,
            )
        if op.operation == GatewayOperationKind.CHARGE:
            return adapter.charge_off_session(
                customer_id=charge.gateway_customer_id,
                payment_method_id=charge.gateway_payment_method_id,
                amount_cents=op.amount_cents,
                idempotency_key=op.idempotency_key,
                currency=op.currency,
                description=op.description,
                metadata=metadata,
            )
        if op.operation == GatewayOperationKind.TRANSFER:
            return adapter.create_transfer(
                destination_account=op.destination,
                amount_cents=op.amount_cents,
                idempotency_key=op.idempotency_key,
                currency=op.currency,
                transfer_group=f"appointment_{op.appointment_id}",
                metadata=metadata,
            )
        raise ValueError(f"Operation {op.operation} has no gateway call")

    @classmethod
    def _post_operation(
        cls,
        op: GatewayOperation,
        actor: Actor,
        request_id: str | None,
    ) -> LedgerPair | None:
        """
        Phase 3: post the ledger pair from the stored gateway reference.

        Returns None and leaves the operation unposted when the ledger
        write fails; the invariant violation is re-raised.
        """
        params = RecordPairParams(
            appointment_id=op.appointment_id,
            entry_type=op.entry_type,
            amount_cents=op.amount_cents,
            idempotency_key=op.idempotency_key,
            party_user_id=op.party_user_id,
            gateway_object_type=op.gateway_object_type or None,
            gateway_object_id=op.gateway_object_id,
            effective_date=(
                op.settlement.requested_at if op.settlement_id else op.succeeded_at
            ),
            currency=op.currency,
            appeal_id=op.appeal_id,
            description=op.description,
            metadata=EntryMetadata(
                settlement_id=op.settlement_id,
                gateway_operation_id=op.id,
                confirmation_id=op.settlement.confirmation_id if op.settlement_id else None,
                cleaner_id=(
                    op.party_user_id
                    if op.operation == GatewayOperationKind.TRANSFER
                    else None
                ),
            ),
            created_by="settlement_service",
        )

        try:
            pair = LedgerService.record_pair(params, actor=actor, request_id=request_id)
        except LedgerInvariantViolation:
            cls.get_logger().critical(
                "Ledger invariant violation while posting gateway operation",
                extra={
                    "operation_id": str(op.id),
                    "appointment_id": str(op.appointment_id),
                },
            )
            raise
        except (DuplicateEntryConflict, DatabaseError) as exc:
            cls.get_logger().error(
                "Ledger posting failed after gateway success - left unposted",
                extra={
                    "operation_id": str(op.id),
                    "appointment_id": str(op.appointment_id),
                    "gateway_object_id": op.gateway_object_id,
                    "error": str(exc),
                },
                exc_info=True,
            )
            return None

        op.mark_posted()
        op.save(update_fields=["ledger_state", "posted_at", "updated_at"])
        return pair

    # =========================================================================
    # Breakdown
    # =========================================================================

    @classmethod
    def build_breakdown(
        cls,
        settlement: Settlement,
        charge: AppointmentCharge,
    ) -> Breakdown:
        """Assemble the Breakdown from a settlement and its operations."""
        ops = {op.entry_type: op for op in settlement.operations.exclude(
            operation=GatewayOperationKind.TRANSFER
        )}
        transfers = {
            op.party_user_id: op
            for op in settlement.operations.filter(operation=GatewayOperationKind.TRANSFER)
        }
        outcome = settlement.policy_outcome or {}

        refund_op = ops.get(EntryType.CANCELLATION_REFUND) or ops.get(
            EntryType.CANCELLATION_PARTIAL_REFUND
        )
        fee_op = ops.get(EntryType.CANCELLATION_FEE_REVENUE)
        fee_charged = fee_op is not None and fee_op.is_succeeded

        if not settlement.cancellation_fee_cents:
            fee_status = FeeStatus.NOT_APPLICABLE
        elif fee_charged:
            fee_status = FeeStatus.CHARGED
        elif fee_op is not None and fee_op.state == GatewayOperationState.FAILED:
            fee_status = FeeStatus.FAILED
        else:
            fee_status = FeeStatus.PENDING

        shares = []
        for split in outcome.get("cleaner_splits", []):
            cleaner_id = uuid.UUID(split["cleaner_id"])
            transfer = transfers.get(cleaner_id)
            shares.append(
                CleanerShareSummary(
                    cleaner_id=cleaner_id,
                    amount_cents=split["amount_cents"],
                    gateway_ref=transfer.gateway_object_id if transfer else None,
                )
            )

        retained = settlement.total_cents - settlement.refund_amount_cents
        if settlement.cancelled_by == CancelledBy.CLEANER:
            appeal_eligible = bool(outcome.get("cleaner_penalty_applies"))
        else:
            appeal_eligible = retained > 0 or settlement.cancellation_fee_cents > 0

        return Breakdown(
            appointment_id=settlement.appointment_id,
            confirmation_id=settlement.confirmation_id,
            cancelled_by=settlement.cancelled_by,
            settlement_state=settlement.state,
            days_until=settlement.days_until,
            original_charges=OriginalCharges(
                base_price_cents=charge.base_price_cents,
                line_items=tuple(
                    ChargeLine(
                        kind=item.kind,
                        label=item.label or item.get_kind_display(),
                        amount_cents=item.amount_cents,
                    )
                    for item in charge.line_items.all()
                ),
                total_cents=settlement.total_cents,
            ),
            refund=RefundSummary(
                eligible=settlement.refund_amount_cents > 0,
                amount_cents=settlement.refund_amount_cents,
                percentage=settlement.refund_percentage,
                reason=outcome.get("rationale", ""),
                payment_method_label=charge.payment_method_label,
                gateway_ref=refund_op.gateway_object_id if refund_op else None,
            ),
            cancellation_fee=CancellationFeeSummary(
                applicable=settlement.cancellation_fee_cents > 0,
                amount_cents=settlement.cancellation_fee_cents,
                status=fee_status,
                gateway_ref=fee_op.gateway_object_id if fee_op else None,
            ),
            cleaner_compensation=CleanerCompensation(
                total_cents=settlement.cleaner_payout_cents,
                shares=tuple(shares),
            ),
            platform_summary=PlatformSummary(
                cancellation_fee_revenue_cents=(
                    settlement.cancellation_fee_cents if fee_charged else 0
                ),
                platform_fee_cents=settlement.platform_fee_cents,
            ),
            appeal_eligibility=AppealEligibility(
                eligible=appeal_eligible,
                window_expires_at=settlement.appeal_window_expires_at,
            ),
            rationale=outcome.get("rationale", ""),
            warnings=(
                (settlement.failure_reason,)
                if settlement.state == SettlementState.REQUIRES_ATTENTION
                and settlement.failure_reason
                else ()
            ),
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _load_charge(appointment_id: uuid.UUID) -> AppointmentCharge:
        try:
            return AppointmentCharge.objects.prefetch_related(
                "line_items", "cleaner_assignments"
            ).get(appointment_id=appointment_id)
        except AppointmentCharge.DoesNotExist:
            raise SettlementNotFound(
                f"No charge recorded for appointment {appointment_id}",
                details={"appointment_id": str(appointment_id)},
            ) from None

    @staticmethod
    def _load_settlement(appointment_id: uuid.UUID) -> Settlement:
        settlement = (
            Settlement.objects.select_related("charge")
            .filter(appointment_id=appointment_id)
            .first()
        )
        if settlement is None:
            raise SettlementNotFound(
                f"No settlement for appointment {appointment_id}",
                details={"appointment_id": str(appointment_id)},
            )
        return settlement

    @staticmethod
    def _actor_for(cancelled_by: CancelledBy | str, actor_id: uuid.UUID | None) -> Actor:
        if actor_id is None:
            return Actor.system()
        if cancelled_by == CancelledBy.CLEANER:
            return Actor.cleaner(actor_id)
        return Actor.homeowner(actor_id)

    @staticmethod
    def _validate_payment_details(
        charge: AppointmentCharge,
        outcome: CancellationOutcome,
    ) -> None:
        """Refuse before anything moves if a needed gateway reference is missing."""
        missing = []
        if outcome.refund_amount_cents and not charge.payment_intent_id:
            missing.append("payment_intent_id")
        if outcome.cancellation_fee_cents and not (
            charge.gateway_customer_id and charge.gateway_payment_method_id
        ):
            missing.append("saved_payment_method")
        accounts = {
            a.cleaner_id: a.connected_account_id for a in charge.cleaner_assignments.all()
        }
        for split in outcome.cleaner_splits:
            if split.amount_cents and not accounts.get(split.cleaner_id):
                missing.append(f"connected_account:{split.cleaner_id}")
        if missing:
            raise ValidationError(
                "Appointment is missing payment details needed to settle",
                error_code="MISSING_PAYMENT_DETAILS",
                details={"appointment_id": str(charge.appointment_id), "missing": missing},
            )

    @staticmethod
    def _cancellation_specs(
        settlement: Settlement,
        charge: AppointmentCharge,
    ) -> list[OperationSpec]:
        """
        Money movements for a settlement, in execution order.

        The fee is charged first so a declined card stops the settlement
        before any refund or payout has moved money.
        """
        appointment_id = settlement.appointment_id
        key = IdempotencyKeyGenerator.for_settlement
        specs: list[OperationSpec] = []

        if settlement.cancellation_fee_cents:
            specs.append(
                OperationSpec(
                    entry_type=EntryType.CANCELLATION_FEE_REVENUE,
                    operation=GatewayOperationKind.CHARGE,
                    amount_cents=settlement.cancellation_fee_cents,
                    idempotency_key=key(appointment_id, EntryType.CANCELLATION_FEE_REVENUE),
                    party_user_id=charge.homeowner_id,
                    description=f"Cancellation fee {settlement.confirmation_id}",
                )
            )

        if settlement.refund_amount_cents:
            entry_type = (
                EntryType.CANCELLATION_REFUND
                if settlement.refund_amount_cents == settlement.total_cents
                else EntryType.CANCELLATION_PARTIAL_REFUND
            )
            specs.append(
                OperationSpec(
                    entry_type=entry_type,
                    operation=GatewayOperationKind.REFUND,
                    amount_cents=settlement.refund_amount_cents,
                    idempotency_key=key(appointment_id, entry_type),
                    party_user_id=charge.homeowner_id,
                    destination=charge.payment_intent_id,
                    description=f"Cancellation refund {settlement.confirmation_id}",
                )
            )

        accounts = {
            a.cleaner_id: a.connected_account_id for a in charge.cleaner_assignments.all()
        }
        for split in (settlement.policy_outcome or {}).get("cleaner_splits", []):
            if not split["amount_cents"]:
                continue
            cleaner_id = uuid.UUID(split["cleaner_id"])
            specs.append(
                OperationSpec(
                    entry_type=EntryType.CLEANER_PAYOUT_CANCELLATION,
                    operation=GatewayOperationKind.TRANSFER,
                    amount_cents=split["amount_cents"],
                    idempotency_key=key(
                        appointment_id,
                        EntryType.CLEANER_PAYOUT_CANCELLATION,
                        discriminator=str(cleaner_id),
                    ),
                    party_user_id=cleaner_id,
                    destination=accounts.get(cleaner_id, ""),
                    description=f"Cancellation payout {settlement.confirmation_id}",
                )
            )

        if settlement.platform_fee_cents:
            specs.append(
                OperationSpec(
                    entry_type=EntryType.PLATFORM_FEE_STANDARD,
                    operation=GatewayOperationKind.NONE,
                    amount_cents=settlement.platform_fee_cents,
                    idempotency_key=key(appointment_id, EntryType.PLATFORM_FEE_STANDARD),
                    description=f"Platform fee {settlement.confirmation_id}",
                )
            )
        return specs

    @staticmethod
    def _outcome_snapshot(outcome: CancellationOutcome) -> dict:
        return {
            "within_penalty_window": outcome.within_penalty_window,
            "within_fee_window": outcome.within_fee_window,
            "cleaner_penalty_applies": outcome.cleaner_penalty_applies,
            "rationale": outcome.rationale,
            "cleaner_splits": [
                {"cleaner_id": str(split.cleaner_id), "amount_cents": split.amount_cents}
                for split in outcome.cleaner_splits
            ],
        }

    @staticmethod
    def _snapshot(settlement: Settlement) -> StateSnapshot:
        return StateSnapshot(
            state=settlement.state,
            version=settlement.version,
            fields={"confirmation_id": settlement.confirmation_id},
        )

    @staticmethod
    def _step_payload(
        op: GatewayOperation,
        error: GatewayCallError | None = None,
    ) -> GatewayStepPayload:
        return GatewayStepPayload(
            operation_id=op.id,
            operation=op.operation,
            entry_type=op.entry_type,
            amount_cents=op.amount_cents,
            idempotency_key=op.idempotency_key,
            attempt_count=op.attempt_count,
            gateway_object_id=op.gateway_object_id,
            error_code=error.error_code if error else None,
            error=error.message if error else None,
        )


def appeal_window_open(settlement: Settlement, now: datetime | None = None) -> bool:
    """Whether an appeal may still be filed against a settlement."""
    if settlement.appeal_window_expires_at is None:
        return False
    return (now or timezone.now()) <= settlement.appeal_window_expires_at
