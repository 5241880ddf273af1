"""
Ledger service layer.

All ledger writes go through LedgerService so every post is balanced,
idempotent, serialized per appointment and audited.

Posting:
    1. Lock the AppointmentLedger head row (select_for_update)
    2. Replay check on the leg idempotency keys and gateway object id
    3. Insert the debit leg, then the credit leg pointing at it
    4. Update the head totals and verify debits == credits
    5. Write ledger_entries_posted in the same transaction

On LedgerInvariantViolation the transaction rolls back, a critical audit
event is written after the rollback, and the exception is re-raised.

Usage:
    from settlements.ledger.services import LedgerService
    from settlements.ledger.types import RecordPairParams

    pair = LedgerService.record_pair(RecordPairParams(
        appointment_id=appointment_id,
        entry_type=EntryType.CANCELLATION_REFUND,
        amount_cents=7500,
        idempotency_key=f"settlement:{appointment_id}:cancellation_refund",
        party_user_id=homeowner_id,
        gateway_object_type=GatewayObjectType.REFUND,
        gateway_object_id="re_123",
    ))
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.utils import timezone

from audit.models import AuditEventType, AuditSeverity
from audit.services import AuditLog
from audit.types import Actor
from core.exceptions import ValidationError
from core.services import BaseService

from .exceptions import DuplicateEntryConflict, LedgerInvariantViolation
from .models import (
    AppointmentLedger,
    EntryDirection,
    EntryType,
    LedgerEntry,
    PartyType,
    tax_period,
)
from .posting_rules import rule_for
from .types import EntryMetadata, LedgerBalance, LedgerPair, LegAccount, RecordPairParams

if TYPE_CHECKING:
    from collections.abc import Sequence
    from typing import Any


@dataclass(frozen=True)
class LedgerHeadSnapshot:
    """Audit snapshot of an appointment's ledger head."""

    appointment_id: uuid.UUID
    entry_count: int
    debit_total_cents: int
    credit_total_cents: int


@dataclass(frozen=True)
class PairPostedPayload:
    entry_type: str
    amount_cents: int
    idempotency_key: str
    gateway_object_id: str | None


@dataclass(frozen=True)
class InvariantViolationPayload:
    message: str
    details: dict


class LedgerService(BaseService):
    """
    Service class for ledger operations.

    Key features:
    - One transaction per batch of pairs
    - Idempotency via per-leg keys and (gateway_object_id, entry_type, direction)
    - Per-appointment serialization through the AppointmentLedger head row
    - Balance verification after every post

    All methods are classmethods - no instance state is maintained.
    """

    @classmethod
    def record_pair(
        cls,
        params: RecordPairParams,
        actor: Actor | None = None,
        request_id: str | None = None,
    ) -> LedgerPair:
        """
        Post one balanced pair.

        Idempotent: posting the same params twice returns the existing pair
        with created=False.

        Raises:
            ValidationError: On a non-positive amount
            DuplicateEntryConflict: If the key or gateway id was used for a
                different posting
            LedgerInvariantViolation: If the appointment would be unbalanced
        """
        return cls.record_pairs([params], actor=actor, request_id=request_id)[0]

    @classmethod
    def record_pairs(
        cls,
        pairs: Sequence[RecordPairParams],
        actor: Actor | None = None,
        request_id: str | None = None,
    ) -> list[LedgerPair]:
        """
        Post several balanced pairs atomically.

        All pairs succeed or none do. Head rows are locked in appointment id
        order so concurrent batches cannot deadlock.

        Call outside any enclosing transaction: the invariant-violation audit
        event is written after this method's own rollback.
        """
        if not pairs:
            return []

        actor = actor or Actor.system()
        for params in pairs:
            cls._validate_params(params)

        try:
            with transaction.atomic():
                heads = cls._lock_heads({p.appointment_id for p in pairs})
                results = [
                    cls._post(params, heads[params.appointment_id], actor, request_id)
                    for params in pairs
                ]
                for head in heads.values():
                    cls._verify_head(head)
        except LedgerInvariantViolation as exc:
            cls.get_logger().critical(
                "Ledger invariant violation; posting rolled back",
                extra={"error_code": exc.error_code, **exc.details},
            )
            appointment_id = exc.details.get("appointment_id")
            AuditLog.record(
                AuditEventType.LEDGER_INVARIANT_VIOLATION,
                actor=actor,
                appointment_id=uuid.UUID(appointment_id) if appointment_id else None,
                request_id=request_id,
                event_data=InvariantViolationPayload(
                    message=exc.message, details=exc.details
                ),
                severity=AuditSeverity.CRITICAL,
            )
            raise

        return results

    @classmethod
    def reverse_pair(
        cls,
        entry: LedgerEntry,
        idempotency_key: str,
        reason: str,
        actor: Actor | None = None,
        appeal_id: uuid.UUID | None = None,
    ) -> LedgerPair:
        """
        Post a manual_adjustment pair that reverses an existing pair.

        The original entries are never touched; the new pair swaps the
        original accounts and references the original via
        metadata.reverses_entry_id.
        """
        debit_leg = entry if entry.direction == EntryDirection.DEBIT else entry.related_entry
        credit_leg = debit_leg.paired_entries.get(direction=EntryDirection.CREDIT)

        return cls.record_pair(
            RecordPairParams(
                appointment_id=debit_leg.appointment_id,
                entry_type=EntryType.MANUAL_ADJUSTMENT,
                amount_cents=debit_leg.amount_cents,
                idempotency_key=idempotency_key,
                party_user_id=debit_leg.party_user_id or credit_leg.party_user_id,
                currency=debit_leg.currency,
                appeal_id=appeal_id,
                description=f"Reversal of {debit_leg.get_entry_type_display()}",
                metadata=EntryMetadata(reverses_entry_id=debit_leg.id, reason=reason),
                created_by="ledger_service.reverse_pair",
                debit_account=LegAccount(credit_leg.account_type, credit_leg.party_type),
                credit_account=LegAccount(debit_leg.account_type, debit_leg.party_type),
            ),
            actor=actor,
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @staticmethod
    def get_entries(appointment_id: uuid.UUID) -> list[LedgerEntry]:
        """Entries for an appointment in posting order."""
        return list(LedgerEntry.objects.for_appointment(appointment_id))

    @staticmethod
    def get_balance(appointment_id: uuid.UUID) -> LedgerBalance:
        """Debit and credit totals recomputed from the entries."""
        queryset = LedgerEntry.objects.filter(appointment_id=appointment_id)
        totals = queryset.totals()
        return LedgerBalance(
            appointment_id=appointment_id,
            debit_total_cents=totals["debits"],
            credit_total_cents=totals["credits"],
            entry_count=queryset.count(),
        )

    @staticmethod
    def get_summary(appointment_id: uuid.UUID) -> dict[str, int]:
        """Amount per entry type for an appointment (debit legs only)."""
        summary: dict[str, int] = {}
        for entry in LedgerEntry.objects.filter(appointment_id=appointment_id).debits():
            summary[entry.entry_type] = summary.get(entry.entry_type, 0) + entry.amount_cents
        return summary

    @staticmethod
    def find_by_gateway_object(
        gateway_object_id: str,
        entry_type: EntryType | str,
    ) -> LedgerPair | None:
        """Return the pair posted for a gateway object, if any."""
        debit = (
            LedgerEntry.objects.filter(
                gateway_object_id=gateway_object_id,
                entry_type=entry_type,
                direction=EntryDirection.DEBIT,
            )
            .first()
        )
        if debit is None:
            return None
        credit = debit.paired_entries.get(direction=EntryDirection.CREDIT)
        return LedgerPair(debit=debit, credit=credit, created=False)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @staticmethod
    def _validate_params(params: RecordPairParams) -> None:
        if isinstance(params.amount_cents, bool) or not isinstance(params.amount_cents, int):
            raise ValidationError(
                "Ledger amounts must be integer cents",
                error_code="INVALID_AMOUNT",
                details={"amount_cents": repr(params.amount_cents)},
            )
        if params.amount_cents <= 0:
            raise ValidationError(
                "Ledger amounts must be positive",
                error_code="INVALID_AMOUNT",
                details={
                    "amount_cents": params.amount_cents,
                    "entry_type": str(params.entry_type),
                },
            )
        if params.entry_type not in EntryType.values:
            raise ValidationError(
                f"Unknown entry type: {params.entry_type}",
                error_code="UNKNOWN_ENTRY_TYPE",
            )
        if not params.idempotency_key:
            raise ValidationError(
                "Ledger postings require an idempotency key",
                error_code="IDEMPOTENCY_KEY_REQUIRED",
            )

    @staticmethod
    def _lock_heads(appointment_ids: set[uuid.UUID]) -> dict[uuid.UUID, AppointmentLedger]:
        heads: dict[uuid.UUID, AppointmentLedger] = {}
        for appointment_id in sorted(appointment_ids):
            head, _ = AppointmentLedger.objects.select_for_update().get_or_create(
                appointment_id=appointment_id
            )
            heads[appointment_id] = head
        return heads

    @classmethod
    def _post(
        cls,
        params: RecordPairParams,
        head: AppointmentLedger,
        actor: Actor,
        request_id: str | None,
    ) -> LedgerPair:
        existing = cls._find_existing(params)
        if existing is not None:
            cls.get_logger().info(
                "Ledger pair already posted",
                extra={
                    "appointment_id": str(params.appointment_id),
                    "idempotency_key": params.idempotency_key,
                    "entry_type": str(params.entry_type),
                },
            )
            return existing

        rule = rule_for(params.entry_type, params.debit_account, params.credit_account)
        effective_date = params.effective_date or timezone.now()
        tax_year, tax_quarter = tax_period(effective_date)

        common: dict[str, Any] = {
            "appointment_id": params.appointment_id,
            "entry_type": params.entry_type,
            "amount_cents": params.amount_cents,
            "currency": params.currency,
            "gateway_object_type": params.gateway_object_type or "",
            "gateway_object_id": params.gateway_object_id or None,
            "tax_year": tax_year,
            "tax_quarter": tax_quarter,
            "tax_reportable": rule.tax_reportable,
            "tax_category": rule.tax_category,
            "effective_date": effective_date,
            "appeal_id": params.appeal_id,
            "description": params.description,
            "metadata": params.metadata.to_dict(),
            "created_by": params.created_by,
        }

        try:
            with transaction.atomic():
                debit = LedgerEntry.objects.create(
                    direction=EntryDirection.DEBIT,
                    account_type=rule.debit.account_type,
                    party_type=rule.debit.party_type,
                    party_user_id=cls._party_user(rule.debit, params),
                    form_1099_eligible=cls._is_1099(rule.debit, rule),
                    idempotency_key=f"{params.idempotency_key}:debit",
                    **common,
                )
                credit = LedgerEntry.objects.create(
                    direction=EntryDirection.CREDIT,
                    related_entry=debit,
                    account_type=rule.credit.account_type,
                    party_type=rule.credit.party_type,
                    party_user_id=cls._party_user(rule.credit, params),
                    form_1099_eligible=cls._is_1099(rule.credit, rule),
                    idempotency_key=f"{params.idempotency_key}:credit",
                    **common,
                )
        except IntegrityError:
            existing = cls._find_existing(params)
            if existing is None:
                raise
            return existing

        head.entry_count += 2
        head.debit_total_cents += params.amount_cents
        head.credit_total_cents += params.amount_cents
        head.last_posted_at = debit.posted_at
        head.save(
            update_fields=[
                "entry_count",
                "debit_total_cents",
                "credit_total_cents",
                "last_posted_at",
                "updated_at",
            ]
        )

        AuditLog.record(
            AuditEventType.LEDGER_ENTRIES_POSTED,
            actor=actor,
            appointment_id=params.appointment_id,
            appeal_id=params.appeal_id,
            request_id=request_id,
            ledger_entry_ids=[debit.id, credit.id],
            event_data=PairPostedPayload(
                entry_type=str(params.entry_type),
                amount_cents=params.amount_cents,
                idempotency_key=params.idempotency_key,
                gateway_object_id=params.gateway_object_id,
            ),
            new_state=LedgerHeadSnapshot(
                appointment_id=head.appointment_id,
                entry_count=head.entry_count,
                debit_total_cents=head.debit_total_cents,
                credit_total_cents=head.credit_total_cents,
            ),
        )

        cls.get_logger().info(
            "Ledger pair posted",
            extra={
                "appointment_id": str(params.appointment_id),
                "entry_type": str(params.entry_type),
                "amount_cents": params.amount_cents,
                "idempotency_key": params.idempotency_key,
                "gateway_object_id": params.gateway_object_id,
            },
        )
        return LedgerPair(debit=debit, credit=credit, created=True)

    @classmethod
    def _find_existing(cls, params: RecordPairParams) -> LedgerPair | None:
        debit = LedgerEntry.objects.filter(
            idempotency_key=f"{params.idempotency_key}:debit"
        ).first()
        if debit is None and params.gateway_object_id:
            debit = LedgerEntry.objects.filter(
                gateway_object_id=params.gateway_object_id,
                entry_type=params.entry_type,
                direction=EntryDirection.DEBIT,
            ).first()
        if debit is None:
            return None

        mismatched = {
            name: (getattr(debit, name), expected)
            for name, expected in (
                ("appointment_id", params.appointment_id),
                ("entry_type", str(params.entry_type)),
                ("amount_cents", params.amount_cents),
            )
            if getattr(debit, name) != expected
        }
        if mismatched:
            raise DuplicateEntryConflict(
                f"Ledger key {params.idempotency_key} was already used for a different posting",
                details={
                    "idempotency_key": params.idempotency_key,
                    "gateway_object_id": params.gateway_object_id,
                    "mismatched_fields": sorted(mismatched),
                },
            )

        credit = debit.paired_entries.get(direction=EntryDirection.CREDIT)
        return LedgerPair(debit=debit, credit=credit, created=False)

    @staticmethod
    def _party_user(leg: LegAccount, params: RecordPairParams) -> uuid.UUID | None:
        if leg.party_type in (PartyType.HOMEOWNER, PartyType.CLEANER):
            return params.party_user_id
        return None

    @staticmethod
    def _is_1099(leg: LegAccount, rule) -> bool:
        return rule.form_1099_eligible and leg.party_type == PartyType.CLEANER

    @staticmethod
    def _verify_head(head: AppointmentLedger) -> None:
        totals = LedgerEntry.objects.filter(appointment_id=head.appointment_id).totals()
        if (
            totals["debits"] != totals["credits"]
            or totals["debits"] != head.debit_total_cents
            or totals["credits"] != head.credit_total_cents
        ):
            raise LedgerInvariantViolation(
                f"Ledger for appointment {head.appointment_id} is unbalanced",
                details={
                    "appointment_id": str(head.appointment_id),
                    "debit_total_cents": totals["debits"],
                    "credit_total_cents": totals["credits"],
                    "head_debit_total_cents": head.debit_total_cents,
                    "head_credit_total_cents": head.credit_total_cents,
                },
            )
