"""
Ledger reconciliation against the payment gateway.

Compares unreconciled ledger entries that carry a gateway object id with
the gateway's authoritative record. Only the reconciliation bookkeeping
fields of an entry are ever written; financial fields stay untouched.

Usage:
    from settlements.services import ReconciliationService

    result = ReconciliationService.run_reconciliation(batch_size=100)
    print(result.batch_id, result.mismatched)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from django.conf import settings
from django.db.models import Sum
from django.utils import timezone

from audit.models import AuditEventType, AuditSeverity
from audit.services import AuditLog
from audit.types import Actor
from core.services import BaseService
from settlements.adapters import StripeGatewayAdapter
from settlements.exceptions import GatewayCallError, GatewayObjectNotFound
from settlements.ledger.models import LedgerEntry, ReconciliationStatus
from settlements.locks import DistributedLock
from settlements.models import ReconciliationRun
from settlements.models.reconciliation import generate_batch_id
from settlements.state_machines import ReconciliationRunStatus

if TYPE_CHECKING:
    import uuid


# Global lock; only one reconciliation batch runs at a time
RECONCILIATION_LOCK_KEY = "reconciliation:ledger"
RECONCILIATION_LOCK_TTL = 600


@dataclass
class ReconciliationRunResult:
    """
    Summary of one reconciliation batch.

    Attributes:
        batch_id: Batch id stamped on every examined entry
        entries_checked: Entries examined
        matched: Entries whose gateway object total matched the gateway
        mismatched: Entries flagged with a discrepancy or a missing object
        errors: Entries skipped because of transient gateway errors
        flagged_entry_ids: Entries flagged during this batch
    """

    batch_id: str
    entries_checked: int = 0
    matched: int = 0
    mismatched: int = 0
    errors: int = 0
    flagged_entry_ids: list[uuid.UUID] = field(default_factory=list)


@dataclass(frozen=True)
class DiscrepancyPayload:
    entry_id: uuid.UUID
    entry_type: str
    gateway_object_type: str
    gateway_object_id: str
    local_amount_cents: int
    gateway_amount_cents: int | None
    discrepancy_amount_cents: int | None
    batch_id: str
    notes: str


class ReconciliationService(BaseService):
    """
    Reconciles ledger entries against gateway records.

    The gateway adapter can be swapped for testing with
    set_gateway_adapter().
    """

    _gateway_adapter: type | None = None

    @classmethod
    def get_gateway_adapter(cls) -> type:
        return cls._gateway_adapter or StripeGatewayAdapter

    @classmethod
    def set_gateway_adapter(cls, adapter: type | None) -> None:
        cls._gateway_adapter = adapter

    @classmethod
    def run_reconciliation(cls, batch_size: int | None = None) -> ReconciliationRunResult:
        """
        Reconcile up to batch_size unreconciled entries.

        Raises:
            LockAcquisitionError: Another batch is already running
        """
        batch_size = batch_size or settings.RECONCILIATION_BATCH_SIZE

        with DistributedLock(
            RECONCILIATION_LOCK_KEY,
            ttl=RECONCILIATION_LOCK_TTL,
            blocking=False,
        ):
            run = ReconciliationRun.objects.create(batch_id=generate_batch_id())
            result = ReconciliationRunResult(batch_id=run.batch_id)

            cls.get_logger().info(
                "Starting reconciliation batch",
                extra={"batch_id": run.batch_id, "batch_size": batch_size},
            )

            try:
                cls._reconcile_batch(run, result, batch_size)
            except Exception as exc:
                cls._copy_counts(run, result)
                run.finish(status=ReconciliationRunStatus.FAILED, error_message=str(exc))
                cls.get_logger().error(
                    "Reconciliation batch failed",
                    extra={"batch_id": run.batch_id, "error": str(exc)},
                    exc_info=True,
                )
                raise

            cls._copy_counts(run, result)
            run.finish()

        cls.get_logger().info(
            "Reconciliation batch completed",
            extra={
                "batch_id": result.batch_id,
                "entries_checked": result.entries_checked,
                "matched": result.matched,
                "mismatched": result.mismatched,
                "errors": result.errors,
            },
        )
        return result

    @classmethod
    def _reconcile_batch(
        cls,
        run: ReconciliationRun,
        result: ReconciliationRunResult,
        batch_size: int,
    ) -> None:
        adapter = cls.get_gateway_adapter()
        entries = list(
            LedgerEntry.objects.unreconciled_with_gateway().order_by("posted_at", "id")[
                :batch_size
            ]
        )
        # Both legs of a pair share a gateway object, and so do the booking
        # and add-on pairs of one payment intent; fetch each object once
        groups: dict[tuple[str, str], list[LedgerEntry]] = {}
        for entry in entries:
            key = (entry.gateway_object_type, entry.gateway_object_id)
            groups.setdefault(key, []).append(entry)

        for (object_type, object_id), group in groups.items():
            result.entries_checked += len(group)
            try:
                record = adapter.retrieve_object(object_type, object_id)
            except GatewayObjectNotFound:
                for entry in group:
                    cls._flag(
                        entry,
                        run.batch_id,
                        result,
                        notes=f"Gateway {object_type} {object_id} not found",
                        status=ReconciliationStatus.ERROR,
                    )
                continue
            except GatewayCallError as exc:
                result.errors += len(group)
                cls.get_logger().warning(
                    "Gateway lookup failed during reconciliation, entries skipped",
                    extra={
                        "batch_id": run.batch_id,
                        "gateway_object_id": object_id,
                        "entries": len(group),
                        "error_code": exc.error_code,
                    },
                )
                continue

            ledger_cents = cls.ledger_amount(object_type, object_id)
            if ledger_cents == record.amount_cents:
                for entry in group:
                    entry.mark_matched(run.batch_id)
                result.matched += len(group)
                continue

            for entry in group:
                cls._flag(
                    entry,
                    run.batch_id,
                    result,
                    notes=(
                        f"Ledger total {ledger_cents} for {object_type} {object_id} "
                        f"does not match gateway amount {record.amount_cents}"
                    ),
                    ledger_amount_cents=ledger_cents,
                    gateway_amount_cents=record.amount_cents,
                )

    @staticmethod
    def ledger_amount(object_type: str, object_id: str) -> int:
        """Debit-leg total of every pair that references a gateway object."""
        return (
            LedgerEntry.objects.filter(
                gateway_object_type=object_type,
                gateway_object_id=object_id,
            )
            .debits()
            .aggregate(total=Sum("amount_cents"))["total"]
            or 0
        )

    @classmethod
    def _flag(
        cls,
        entry: LedgerEntry,
        batch_id: str,
        result: ReconciliationRunResult,
        notes: str,
        ledger_amount_cents: int | None = None,
        gateway_amount_cents: int | None = None,
        status: str = ReconciliationStatus.DISCREPANCY,
    ) -> None:
        if ledger_amount_cents is None:
            ledger_amount_cents = entry.amount_cents
        difference = (
            abs(ledger_amount_cents - gateway_amount_cents)
            if gateway_amount_cents is not None
            else None
        )
        entry.flag_discrepancy(
            batch_id=batch_id,
            notes=notes,
            amount_cents=difference,
            status=status,
        )
        result.mismatched += 1
        result.flagged_entry_ids.append(entry.id)

        AuditLog.record(
            AuditEventType.RECONCILIATION_DISCREPANCY_FLAGGED,
            actor=Actor.system(),
            appointment_id=entry.appointment_id,
            ledger_entry_ids=[entry.id],
            event_data=DiscrepancyPayload(
                entry_id=entry.id,
                entry_type=entry.entry_type,
                gateway_object_type=entry.gateway_object_type,
                gateway_object_id=entry.gateway_object_id,
                local_amount_cents=ledger_amount_cents,
                gateway_amount_cents=gateway_amount_cents,
                discrepancy_amount_cents=difference,
                batch_id=batch_id,
                notes=notes,
            ),
            severity=AuditSeverity.WARNING,
            occurred_at=timezone.now(),
        )
        cls.get_logger().warning(
            "Reconciliation discrepancy flagged",
            extra={
                "batch_id": batch_id,
                "entry_id": str(entry.id),
                "appointment_id": str(entry.appointment_id),
                "discrepancy_amount_cents": difference,
                "status": status,
            },
        )

    @staticmethod
    def _copy_counts(run: ReconciliationRun, result: ReconciliationRunResult) -> None:
        run.entries_checked = result.entries_checked
        run.matched = result.matched
        run.mismatched = result.mismatched
        run.errors = result.errors
