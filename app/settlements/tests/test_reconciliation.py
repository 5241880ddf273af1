"""
Tests for ReconciliationService and the scheduled settlement tasks.
"""

import uuid

import pytest

from audit.models import AuditEvent, AuditEventType, AuditSeverity
from settlements.adapters import GatewayResult
from settlements.exceptions import (
    GatewayObjectNotFound,
    GatewayTransientError,
    LockAcquisitionError,
)
from settlements.ledger.models import EntryType, GatewayObjectType, LedgerEntry, ReconciliationStatus
from settlements.ledger.services import LedgerService
from settlements.ledger.types import RecordPairParams
from settlements.models import ReconciliationRun
from settlements.services import ReconciliationService, SettlementService
from settlements.state_machines import ReconciliationRunStatus
from settlements.tasks import post_unposted_operations, reconcile_ledger
from settlements.tests.factories import ChargeLineItemFactory

pytestmark = pytest.mark.usefixtures("mock_redis_lock")


@pytest.fixture
def refund_pair(db):
    """$50 refund posted against re_test_recon."""
    return LedgerService.record_pair(
        RecordPairParams(
            appointment_id=uuid.uuid4(),
            entry_type=EntryType.CANCELLATION_REFUND,
            amount_cents=5000,
            idempotency_key=f"test:{uuid.uuid4()}",
            party_user_id=uuid.uuid4(),
            gateway_object_type=GatewayObjectType.REFUND,
            gateway_object_id="re_test_recon",
        )
    )


def gateway_refund(amount_cents):
    return GatewayResult(
        object_type="refund",
        object_id="re_test_recon",
        amount_cents=amount_cents,
        status="succeeded",
    )


class TestRunReconciliation:
    def test_matching_amounts(self, gateway, refund_pair):
        gateway.retrieve_object.return_value = gateway_refund(5000)

        result = ReconciliationService.run_reconciliation()

        assert result.entries_checked == 2
        assert result.matched == 2
        assert result.mismatched == 0
        for entry in LedgerEntry.objects.filter(id__in=refund_pair.entry_ids):
            assert entry.reconciled is True
            assert entry.reconciliation_status == ReconciliationStatus.MATCHED
            assert entry.reconciliation_batch == result.batch_id

    def test_gateway_object_fetched_once_per_pair(self, gateway, refund_pair):
        gateway.retrieve_object.return_value = gateway_refund(5000)

        ReconciliationService.run_reconciliation()

        gateway.retrieve_object.assert_called_once_with("refund", "re_test_recon")

    def test_discrepancy_flagged_on_both_legs(self, gateway, refund_pair):
        gateway.retrieve_object.return_value = gateway_refund(4900)

        result = ReconciliationService.run_reconciliation()

        assert result.mismatched == 2
        assert set(result.flagged_entry_ids) == set(refund_pair.entry_ids)
        for entry in LedgerEntry.objects.filter(id__in=refund_pair.entry_ids):
            assert entry.reconciled is False
            assert entry.reconciliation_status == ReconciliationStatus.DISCREPANCY
            assert entry.discrepancy_amount_cents == 100
            # Financial fields are never rewritten
            assert entry.amount_cents == 5000

        events = AuditEvent.objects.filter(
            event_type=AuditEventType.RECONCILIATION_DISCREPANCY_FLAGGED
        )
        assert events.count() == 2
        assert all(e.severity == AuditSeverity.WARNING for e in events)
        assert events.first().event_data["gateway_amount_cents"] == 4900

    def test_missing_gateway_object(self, gateway, refund_pair):
        gateway.retrieve_object.side_effect = GatewayObjectNotFound("No such refund")

        result = ReconciliationService.run_reconciliation()

        assert result.mismatched == 2
        entry = LedgerEntry.objects.get(id=refund_pair.debit.id)
        assert entry.reconciliation_status == ReconciliationStatus.ERROR
        assert entry.discrepancy_amount_cents is None
        assert "not found" in entry.discrepancy_notes

    def test_transient_error_skips_entry(self, gateway, refund_pair):
        gateway.retrieve_object.side_effect = GatewayTransientError("Stripe unavailable")

        result = ReconciliationService.run_reconciliation()

        assert result.errors == 2
        assert result.matched == 0
        assert result.mismatched == 0
        entry = LedgerEntry.objects.get(id=refund_pair.debit.id)
        assert entry.reconciliation_status == ReconciliationStatus.UNRECONCILED

    def test_entries_without_gateway_object_ignored(self, gateway, db):
        LedgerService.record_pair(
            RecordPairParams(
                appointment_id=uuid.uuid4(),
                entry_type=EntryType.PLATFORM_FEE_STANDARD,
                amount_cents=750,
                idempotency_key=f"test:{uuid.uuid4()}",
            )
        )

        result = ReconciliationService.run_reconciliation()

        assert result.entries_checked == 0
        gateway.retrieve_object.assert_not_called()

    def test_matched_entries_not_rechecked(self, gateway, refund_pair):
        gateway.retrieve_object.return_value = gateway_refund(5000)
        ReconciliationService.run_reconciliation()

        second = ReconciliationService.run_reconciliation()

        assert second.entries_checked == 0
        assert gateway.retrieve_object.call_count == 1

    def test_batch_size(self, gateway, refund_pair):
        gateway.retrieve_object.return_value = gateway_refund(5000)

        result = ReconciliationService.run_reconciliation(batch_size=1)

        assert result.entries_checked == 1

    def test_run_recorded(self, gateway, refund_pair):
        gateway.retrieve_object.return_value = gateway_refund(4900)

        result = ReconciliationService.run_reconciliation()

        run = ReconciliationRun.objects.get(batch_id=result.batch_id)
        assert run.status == ReconciliationRunStatus.COMPLETED
        assert (run.entries_checked, run.matched, run.mismatched) == (2, 0, 2)
        assert run.duration_seconds is not None

    def test_lock_held_elsewhere(self, gateway, refund_pair, mock_redis_lock):
        mock_redis_lock.set.return_value = False

        with pytest.raises(LockAcquisitionError):
            ReconciliationService.run_reconciliation()

        gateway.retrieve_object.assert_not_called()
        assert not ReconciliationRun.objects.exists()


class TestBookingWithAddons:
    """Booking and add-on pairs all reference one payment intent."""

    @pytest.fixture
    def booked(self, charge):
        ChargeLineItemFactory(charge=charge, amount_cents=2000)
        SettlementService.record_booking_charge(charge.appointment_id)
        return charge

    def intent(self, charge, amount_cents):
        return GatewayResult(
            object_type="payment_intent",
            object_id=charge.payment_intent_id,
            amount_cents=amount_cents,
            status="succeeded",
        )

    def test_pairs_match_intent_total(self, gateway, booked):
        gateway.retrieve_object.return_value = self.intent(booked, 17000)

        result = ReconciliationService.run_reconciliation()

        assert result.entries_checked == 4
        assert result.matched == 4
        assert result.mismatched == 0
        gateway.retrieve_object.assert_called_once_with(
            "payment_intent", booked.payment_intent_id
        )

    def test_short_capture_flags_every_leg(self, gateway, booked):
        gateway.retrieve_object.return_value = self.intent(booked, 15000)

        result = ReconciliationService.run_reconciliation()

        assert result.mismatched == 4
        entries = LedgerEntry.objects.filter(appointment_id=booked.appointment_id)
        assert {e.discrepancy_amount_cents for e in entries} == {2000}
        event = AuditEvent.objects.filter(
            event_type=AuditEventType.RECONCILIATION_DISCREPANCY_FLAGGED
        ).first()
        assert event.event_data["local_amount_cents"] == 17000

    def test_total_used_when_batch_splits_an_intent(self, gateway, booked):
        gateway.retrieve_object.return_value = self.intent(booked, 17000)

        first = ReconciliationService.run_reconciliation(batch_size=2)
        second = ReconciliationService.run_reconciliation(batch_size=2)

        assert (first.matched, second.matched) == (2, 2)
        assert first.mismatched == second.mismatched == 0

    def test_ledger_amount(self, booked):
        assert ReconciliationService.ledger_amount(
            "payment_intent", booked.payment_intent_id
        ) == 17000


class TestStripeFee:
    @pytest.fixture
    def fee_pair(self, db):
        return LedgerService.record_pair(
            RecordPairParams(
                appointment_id=uuid.uuid4(),
                entry_type=EntryType.STRIPE_FEE,
                amount_cents=465,
                idempotency_key=f"test:{uuid.uuid4()}",
                gateway_object_type=GatewayObjectType.BALANCE_TRANSACTION,
                gateway_object_id="txn_test_fee",
            )
        )

    def test_fee_matches_balance_transaction(self, gateway, fee_pair):
        gateway.retrieve_object.return_value = GatewayResult(
            object_type="balance_transaction",
            object_id="txn_test_fee",
            amount_cents=465,
            status="available",
        )

        result = ReconciliationService.run_reconciliation()

        gateway.retrieve_object.assert_called_once_with(
            "balance_transaction", "txn_test_fee"
        )
        assert result.matched == 2
        assert result.mismatched == 0


class TestTasks:
    def test_reconcile_ledger_task(self, gateway, refund_pair):
        gateway.retrieve_object.return_value = gateway_refund(5000)

        result = reconcile_ledger.apply().get()

        assert result["status"] == "completed"
        assert result["matched"] == 2

    def test_reconcile_ledger_skips_when_locked(self, gateway, db, mock_redis_lock):
        mock_redis_lock.set.return_value = False

        result = reconcile_ledger.apply().get()

        assert result == {"status": "skipped"}

    def test_post_unposted_operations_task(self, db):
        result = post_unposted_operations.apply().get()

        assert result == {
            "status": "completed",
            "posted": 0,
            "failed": 0,
            "completed_settlements": [],
        }
