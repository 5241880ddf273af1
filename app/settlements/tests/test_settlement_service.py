"""
Tests for SettlementService.

Covers the cancellation flow end to end against a mock gateway:
- Amounts, ledger postings and final states for each canceller
- Idempotent replays and resumption after partial failure
- Declines before any money moved
- Ledger failures after gateway success
- Booking revenue postings
"""

import uuid
from unittest.mock import patch

import pytest
from django.db import DatabaseError

from audit.models import AuditEvent, AuditEventType
from core.exceptions import ConflictError, ValidationError
from settlements.exceptions import (
    GatewayPermanentError,
    GatewayTransientError,
    SettlementFailedError,
    SettlementNotFound,
)
from settlements.ledger.models import EntryType, LedgerEntry
from settlements.ledger.services import LedgerService
from settlements.models import AppointmentCharge, GatewayOperation, Settlement
from settlements.services import FeeStatus, SettlementService
from settlements.state_machines import (
    AppointmentChargeStatus,
    GatewayOperationState,
    LedgerPostingState,
    SettlementState,
)
from settlements.tests.factories import (
    AppointmentChargeFactory,
    ChargeLineItemFactory,
    CleanerAssignmentFactory,
    CleanerFactory,
)

pytestmark = pytest.mark.usefixtures("mock_redis_lock")


def settle(charge, now, cancelled_by="homeowner", **kwargs):
    return SettlementService.settle_cancellation(
        appointment_id=charge.appointment_id,
        cancelled_by=cancelled_by,
        actor_id=charge.homeowner_id,
        now=now,
        **kwargs,
    )


# =============================================================================
# Homeowner cancellation
# =============================================================================


class TestHomeownerCancellation:
    def test_inside_both_windows(self, gateway, charge_with_cleaner, cleaner, two_days_before):
        """$150 booking cancelled 2 days out: $75 back, $25 fee, $100 net."""
        breakdown = settle(charge_with_cleaner, two_days_before)

        assert breakdown.settlement_state == SettlementState.COMPLETED
        assert breakdown.refund.amount_cents == 7500
        assert breakdown.refund.percentage == 50
        assert breakdown.cancellation_fee.amount_cents == 2500
        assert breakdown.cancellation_fee.status == FeeStatus.CHARGED
        assert breakdown.platform_summary.platform_fee_cents == 750
        assert breakdown.cleaner_compensation.total_cents == 6750
        assert breakdown.net_cost_cents == 10000
        assert breakdown.warnings == ()

        [share] = breakdown.cleaner_compensation.shares
        assert share.cleaner_id == cleaner.id
        assert share.amount_cents == 6750
        assert share.gateway_ref.startswith("tr_test_")

    def test_gateway_calls(self, gateway, charge_with_cleaner, two_days_before):
        settle(charge_with_cleaner, two_days_before)

        gateway.charge_off_session.assert_called_once()
        assert gateway.charge_off_session.call_args.kwargs["amount_cents"] == 2500
        assert (
            gateway.charge_off_session.call_args.kwargs["customer_id"]
            == charge_with_cleaner.gateway_customer_id
        )

        gateway.create_refund.assert_called_once()
        refund_kwargs = gateway.create_refund.call_args.kwargs
        assert refund_kwargs["payment_intent_id"] == charge_with_cleaner.payment_intent_id
        assert refund_kwargs["amount_cents"] == 7500

        gateway.create_transfer.assert_called_once()
        assert gateway.create_transfer.call_args.kwargs["amount_cents"] == 6750

    def test_fee_charged_before_refund(self, gateway, charge_with_cleaner, two_days_before):
        settle(charge_with_cleaner, two_days_before)

        names = [c[0] for c in gateway.method_calls]
        assert names.index("charge_off_session") < names.index("create_refund")
        assert names.index("create_refund") < names.index("create_transfer")

    def test_ledger_is_balanced(self, gateway, charge_with_cleaner, two_days_before):
        settle(charge_with_cleaner, two_days_before)

        appointment_id = charge_with_cleaner.appointment_id
        assert LedgerService.get_balance(appointment_id).is_balanced
        assert LedgerService.get_summary(appointment_id) == {
            "cancellation_fee_revenue": 2500,
            "cancellation_partial_refund": 7500,
            "cleaner_payout_cancellation": 6750,
            "platform_fee_standard": 750,
        }

    def test_entries_reference_gateway_objects(
        self, gateway, charge_with_cleaner, two_days_before
    ):
        settle(charge_with_cleaner, two_days_before)

        refund = LedgerEntry.objects.debits().get(
            appointment_id=charge_with_cleaner.appointment_id,
            entry_type=EntryType.CANCELLATION_PARTIAL_REFUND,
        )
        assert refund.gateway_object_type == "refund"
        assert refund.gateway_object_id.startswith("re_test_")

        platform_fee = LedgerEntry.objects.debits().get(
            appointment_id=charge_with_cleaner.appointment_id,
            entry_type=EntryType.PLATFORM_FEE_STANDARD,
        )
        assert platform_fee.gateway_object_id is None

    def test_charge_cancelled_and_settlement_stored(
        self, gateway, charge_with_cleaner, two_days_before
    ):
        breakdown = settle(charge_with_cleaner, two_days_before)

        charge = AppointmentCharge.objects.get(pk=charge_with_cleaner.pk)
        assert charge.status == AppointmentChargeStatus.CANCELLED
        assert charge.cancelled_at == two_days_before

        settlement = Settlement.objects.get(appointment_id=charge.appointment_id)
        assert settlement.state == SettlementState.COMPLETED
        assert settlement.confirmation_id == breakdown.confirmation_id
        assert settlement.breakdown["net_cost_cents"] == 10000
        assert all(
            op.ledger_state == LedgerPostingState.POSTED for op in settlement.operations.all()
        )

    def test_audit_trail(self, gateway, charge_with_cleaner, two_days_before):
        settle(charge_with_cleaner, two_days_before)

        event_types = set(
            AuditEvent.objects.filter(
                appointment_id=charge_with_cleaner.appointment_id
            ).values_list("event_type", flat=True)
        )
        assert {
            AuditEventType.CANCELLATION_INITIATED,
            AuditEventType.CANCELLATION_POLICY_COMPUTED,
            AuditEventType.FEE_CHARGE_ATTEMPTED,
            AuditEventType.FEE_CHARGE_SUCCEEDED,
            AuditEventType.REFUND_INITIATED,
            AuditEventType.REFUND_COMPLETED,
            AuditEventType.PAYOUT_INITIATED,
            AuditEventType.PAYOUT_COMPLETED,
            AuditEventType.LEDGER_ENTRIES_POSTED,
            AuditEventType.CANCELLATION_CONFIRMED,
        } <= event_types

    def test_outside_windows_full_refund(self, gateway, charge, ten_days_before):
        breakdown = settle(charge, ten_days_before)

        assert breakdown.refund.amount_cents == 15000
        assert breakdown.cancellation_fee.applicable is False
        assert breakdown.cancellation_fee.status == FeeStatus.NOT_APPLICABLE
        assert breakdown.net_cost_cents == 0
        gateway.charge_off_session.assert_not_called()
        assert LedgerService.get_summary(charge.appointment_id) == {
            "cancellation_refund": 15000,
        }

    def test_platform_keeps_retained_amount_without_cleaners(
        self, gateway, charge, two_days_before
    ):
        breakdown = settle(charge, two_days_before)

        assert breakdown.platform_summary.platform_fee_cents == 7500
        assert breakdown.cleaner_compensation.shares == ()
        gateway.create_transfer.assert_not_called()

    def test_split_between_two_cleaners(self, gateway, homeowner, two_days_before):
        charge = AppointmentChargeFactory(homeowner=homeowner)
        first, second = sorted([CleanerFactory(), CleanerFactory()], key=lambda u: u.id)
        CleanerAssignmentFactory(charge=charge, cleaner=second)
        CleanerAssignmentFactory(charge=charge, cleaner=first)

        breakdown = settle(charge, two_days_before)

        shares = {s.cleaner_id: s.amount_cents for s in breakdown.cleaner_compensation.shares}
        assert shares == {first.id: 3375, second.id: 3375}
        assert gateway.create_transfer.call_count == 2

    def test_addons_included(self, gateway, charge, two_days_before):
        ChargeLineItemFactory(charge=charge, amount_cents=1500)

        breakdown = settle(charge, two_days_before)

        assert breakdown.original_charges.total_cents == 16500
        assert breakdown.refund.amount_cents == 8250
        assert breakdown.original_charges.line_items[0].amount_cents == 1500

    def test_appeal_eligibility(self, gateway, charge, two_days_before):
        breakdown = settle(charge, two_days_before)

        assert breakdown.appeal_eligibility.eligible is True
        assert breakdown.appeal_eligibility.window_expires_at is not None


# =============================================================================
# Cleaner cancellation
# =============================================================================


class TestCleanerCancellation:
    def test_full_refund_no_fee(self, gateway, charge_with_cleaner, cleaner, two_days_before):
        breakdown = SettlementService.settle_cancellation(
            appointment_id=charge_with_cleaner.appointment_id,
            cancelled_by="cleaner",
            actor_id=cleaner.id,
            now=two_days_before,
        )

        assert breakdown.refund.amount_cents == 15000
        assert breakdown.cancellation_fee.amount_cents == 0
        assert breakdown.cleaner_compensation.total_cents == 0
        assert breakdown.net_cost_cents == 0
        gateway.charge_off_session.assert_not_called()
        gateway.create_transfer.assert_not_called()
        assert LedgerService.get_summary(charge_with_cleaner.appointment_id) == {
            "cancellation_refund": 15000,
        }

    def test_penalty_makes_cleaner_eligible_to_appeal(
        self, gateway, charge_with_cleaner, cleaner, two_days_before
    ):
        breakdown = SettlementService.settle_cancellation(
            appointment_id=charge_with_cleaner.appointment_id,
            cancelled_by="cleaner",
            actor_id=cleaner.id,
            now=two_days_before,
        )

        settlement = Settlement.objects.get(appointment_id=charge_with_cleaner.appointment_id)
        assert settlement.policy_outcome["cleaner_penalty_applies"] is True
        assert breakdown.appeal_eligibility.eligible is True


# =============================================================================
# Idempotency
# =============================================================================


class TestIdempotentReplay:
    def test_second_call_returns_stored_breakdown(
        self, gateway, charge_with_cleaner, two_days_before
    ):
        first = settle(charge_with_cleaner, two_days_before)
        calls_after_first = len(gateway.method_calls)

        second = settle(charge_with_cleaner, two_days_before)

        assert second.to_dict() == first.to_dict()
        assert len(gateway.method_calls) == calls_after_first
        assert LedgerEntry.objects.filter(
            appointment_id=charge_with_cleaner.appointment_id
        ).count() == 8
        assert Settlement.objects.filter(
            appointment_id=charge_with_cleaner.appointment_id
        ).count() == 1

    def test_replay_ignores_later_clock(self, gateway, charge, two_days_before, ten_days_before):
        first = settle(charge, two_days_before)

        # A replay with a different clock reading still returns the original amounts
        second = settle(charge, ten_days_before)

        assert second.refund.amount_cents == first.refund.amount_cents == 7500

    def test_gateway_keys_are_deterministic(self, gateway, charge, two_days_before):
        settle(charge, two_days_before)

        keys = set(
            GatewayOperation.objects.filter(appointment_id=charge.appointment_id).values_list(
                "idempotency_key", flat=True
            )
        )
        assert gateway.create_refund.call_args.kwargs["idempotency_key"] in keys
        assert all(key.startswith(f"settlement:{charge.appointment_id}:") for key in keys)


# =============================================================================
# Failures
# =============================================================================


class TestFeeDeclined:
    def test_fails_without_moving_money(self, gateway, charge, two_days_before):
        gateway.charge_off_session.side_effect = GatewayPermanentError(
            "Your card was declined.", error_code="CARD_DECLINED"
        )

        with pytest.raises(SettlementFailedError) as exc_info:
            settle(charge, two_days_before)

        assert exc_info.value.message == SettlementFailedError.USER_MESSAGE
        gateway.create_refund.assert_not_called()
        gateway.create_transfer.assert_not_called()

        settlement = Settlement.objects.get(appointment_id=charge.appointment_id)
        assert settlement.state == SettlementState.FAILED
        assert AppointmentCharge.objects.get(pk=charge.pk).status == AppointmentChargeStatus.BOOKED
        assert not LedgerEntry.objects.filter(appointment_id=charge.appointment_id).exists()
        assert AuditEvent.objects.filter(
            appointment_id=charge.appointment_id,
            event_type=AuditEventType.FEE_CHARGE_FAILED,
        ).exists()

    def test_declines_are_not_retried(self, gateway, charge, two_days_before):
        gateway.charge_off_session.side_effect = GatewayPermanentError("declined")

        with pytest.raises(SettlementFailedError):
            settle(charge, two_days_before)

        assert gateway.charge_off_session.call_count == 1

    def test_request_cancellation_returns_failure_result(
        self, gateway, charge, two_days_before
    ):
        gateway.charge_off_session.side_effect = GatewayPermanentError("declined")

        result = SettlementService.request_cancellation(
            appointment_id=charge.appointment_id,
            cancelled_by="homeowner",
            actor_id=charge.homeowner_id,
            now=two_days_before,
        )

        assert result.success is False
        assert result.error == SettlementFailedError.USER_MESSAGE
        assert result.error_code == "SETTLEMENT_FAILED"

    def test_retry_after_card_updated(self, gateway, charge, two_days_before):
        charge_ok = gateway.charge_off_session.side_effect
        gateway.charge_off_session.side_effect = GatewayPermanentError("declined")
        with pytest.raises(SettlementFailedError):
            settle(charge, two_days_before)

        gateway.charge_off_session.side_effect = charge_ok
        breakdown = settle(charge, two_days_before)

        assert breakdown.settlement_state == SettlementState.COMPLETED
        assert breakdown.cancellation_fee.status == FeeStatus.CHARGED
        gateway.create_refund.assert_called_once()


class TestTransferExhausted:
    def test_requires_attention_then_resumes(
        self, gateway, charge_with_cleaner, two_days_before
    ):
        transfer_ok = gateway.create_transfer.side_effect
        gateway.create_transfer.side_effect = GatewayTransientError("Stripe unavailable")

        breakdown = settle(charge_with_cleaner, two_days_before)

        # 1 attempt + GATEWAY_MAX_RETRIES retries
        assert gateway.create_transfer.call_count == 3
        assert breakdown.settlement_state == SettlementState.REQUIRES_ATTENTION
        assert breakdown.warnings
        transfer_op = GatewayOperation.objects.get(
            appointment_id=charge_with_cleaner.appointment_id,
            entry_type=EntryType.CLEANER_PAYOUT_CANCELLATION,
        )
        assert transfer_op.state == GatewayOperationState.EXHAUSTED
        assert transfer_op.attempt_count == 3
        assert AuditEvent.objects.filter(
            appointment_id=charge_with_cleaner.appointment_id,
            event_type=AuditEventType.GATEWAY_OPERATION_EXHAUSTED,
        ).exists()
        # Money already moved, so the charge is cancelled regardless
        assert (
            AppointmentCharge.objects.get(pk=charge_with_cleaner.pk).status
            == AppointmentChargeStatus.CANCELLED
        )

        gateway.create_transfer.side_effect = transfer_ok
        resumed = settle(charge_with_cleaner, two_days_before)

        assert resumed.settlement_state == SettlementState.COMPLETED
        assert resumed.confirmation_id == breakdown.confirmation_id
        gateway.create_refund.assert_called_once()
        gateway.charge_off_session.assert_called_once()
        assert LedgerService.get_balance(charge_with_cleaner.appointment_id).is_balanced

    def test_transient_error_then_success(self, gateway, charge, ten_days_before):
        refund_ok = gateway.create_refund.side_effect
        gateway.create_refund.side_effect = [
            GatewayTransientError("rate limited"),
            refund_ok(amount_cents=15000),
        ]

        breakdown = settle(charge, ten_days_before)

        assert breakdown.settlement_state == SettlementState.COMPLETED
        assert gateway.create_refund.call_count == 2
        keys = {c.kwargs["idempotency_key"] for c in gateway.create_refund.call_args_list}
        assert len(keys) == 1


class TestLedgerFailureAfterGatewaySuccess:
    def test_operation_left_unposted_then_retried(
        self, gateway, charge, two_days_before
    ):
        with patch.object(
            LedgerService, "record_pair", side_effect=DatabaseError("connection lost")
        ):
            breakdown = settle(charge, two_days_before)

        assert breakdown.settlement_state == SettlementState.REQUIRES_ATTENTION
        unposted = GatewayOperation.objects.filter(
            appointment_id=charge.appointment_id,
            ledger_state=LedgerPostingState.UNPOSTED,
        )
        assert unposted.count() == 3
        assert all(op.state == GatewayOperationState.SUCCEEDED for op in unposted)

        calls_before = len(gateway.method_calls)
        result = SettlementService.retry_unposted_operations()

        assert result.posted == 3
        assert result.failed == 0
        assert len(gateway.method_calls) == calls_before
        settlement = Settlement.objects.get(appointment_id=charge.appointment_id)
        assert result.completed_settlements == [settlement.id]
        assert settlement.state == SettlementState.COMPLETED
        assert LedgerService.get_balance(charge.appointment_id).is_balanced

    def test_retry_with_nothing_unposted(self, db):
        result = SettlementService.retry_unposted_operations()

        assert (result.posted, result.failed) == (0, 0)


class TestRejectedRequests:
    def test_unknown_appointment(self, gateway, db, two_days_before):
        with pytest.raises(SettlementNotFound):
            SettlementService.settle_cancellation(
                appointment_id=uuid.uuid4(),
                cancelled_by="homeowner",
                now=two_days_before,
            )

    def test_missing_payment_details(self, gateway, homeowner, two_days_before):
        charge = AppointmentChargeFactory(homeowner=homeowner, gateway_payment_method_id="")

        with pytest.raises(ValidationError) as exc_info:
            settle(charge, two_days_before)

        assert exc_info.value.error_code == "MISSING_PAYMENT_DETAILS"
        assert "saved_payment_method" in exc_info.value.details["missing"]
        assert not Settlement.objects.filter(appointment_id=charge.appointment_id).exists()
        assert gateway.method_calls == []

    def test_missing_connected_account(self, gateway, homeowner, two_days_before):
        charge = AppointmentChargeFactory(homeowner=homeowner)
        CleanerAssignmentFactory(charge=charge, connected_account_id="")

        with pytest.raises(ValidationError) as exc_info:
            settle(charge, two_days_before)

        assert exc_info.value.error_code == "MISSING_PAYMENT_DETAILS"

    def test_already_cancelled_without_settlement(self, gateway, homeowner, two_days_before):
        charge = AppointmentChargeFactory(
            homeowner=homeowner, status=AppointmentChargeStatus.CANCELLED
        )

        with pytest.raises(ConflictError) as exc_info:
            settle(charge, two_days_before)

        assert exc_info.value.error_code == "APPOINTMENT_ALREADY_CANCELLED"


# =============================================================================
# Booking revenue
# =============================================================================


class TestRecordBookingCharge:
    def test_posts_base_and_addons(self, charge):
        ChargeLineItemFactory(charge=charge, amount_cents=1500)

        pairs = SettlementService.record_booking_charge(charge.appointment_id)

        assert [p.debit.entry_type for p in pairs] == [
            EntryType.BOOKING_REVENUE,
            EntryType.ADDON_LINENS,
        ]
        assert LedgerService.get_summary(charge.appointment_id) == {
            "booking_revenue": 15000,
            "addon_linens": 1500,
        }
        assert all(p.debit.gateway_object_id == charge.payment_intent_id for p in pairs)

    def test_idempotent(self, charge):
        SettlementService.record_booking_charge(charge.appointment_id)
        pairs = SettlementService.record_booking_charge(charge.appointment_id)

        assert all(not p.created for p in pairs)
        assert LedgerEntry.objects.filter(appointment_id=charge.appointment_id).count() == 2

    def test_logs_pair_counts(self, charge, caplog):
        logger = SettlementService.get_logger()
        logger.addHandler(caplog.handler)
        try:
            SettlementService.record_booking_charge(charge.appointment_id)
        finally:
            logger.removeHandler(caplog.handler)

        record = next(r for r in caplog.records if r.getMessage() == "Booking charge recorded")
        assert record.pairs == 1
        assert record.pairs_created == 1

    def test_requires_payment_intent(self, homeowner):
        charge = AppointmentChargeFactory(homeowner=homeowner, payment_intent_id="")

        with pytest.raises(ValidationError):
            SettlementService.record_booking_charge(charge.appointment_id)

    def test_booking_then_cancellation_stays_balanced(
        self, gateway, charge_with_cleaner, two_days_before
    ):
        SettlementService.record_booking_charge(charge_with_cleaner.appointment_id)
        settle(charge_with_cleaner, two_days_before)

        assert LedgerService.get_balance(charge_with_cleaner.appointment_id).is_balanced


class TestPayCleanerBonus:
    def test_transfers_and_posts_bonus(self, gateway, charge_with_cleaner, cleaner):
        assignment = charge_with_cleaner.cleaner_assignments.get()

        op = SettlementService.pay_cleaner_bonus(
            charge_with_cleaner.appointment_id, cleaner.id, 2500, "review-42"
        )

        assert op.entry_type == EntryType.CLEANER_BONUS
        assert op.state == GatewayOperationState.SUCCEEDED
        assert op.ledger_state == LedgerPostingState.POSTED
        call = gateway.create_transfer.call_args
        assert call.kwargs["destination_account"] == assignment.connected_account_id
        assert call.kwargs["amount_cents"] == 2500
        debit = LedgerEntry.objects.filter(entry_type=EntryType.CLEANER_BONUS).debits().get()
        assert debit.party_user_id == cleaner.id
        assert debit.gateway_object_id == op.gateway_object_id
        assert LedgerService.get_balance(charge_with_cleaner.appointment_id).is_balanced

    def test_same_reference_replays(self, gateway, charge_with_cleaner, cleaner):
        first = SettlementService.pay_cleaner_bonus(
            charge_with_cleaner.appointment_id, cleaner.id, 2500, "review-42"
        )
        again = SettlementService.pay_cleaner_bonus(
            charge_with_cleaner.appointment_id, cleaner.id, 2500, "review-42"
        )

        assert again.pk == first.pk
        gateway.create_transfer.assert_called_once()
        assert LedgerEntry.objects.filter(entry_type=EntryType.CLEANER_BONUS).count() == 2

    def test_new_reference_pays_again(self, gateway, charge_with_cleaner, cleaner):
        SettlementService.pay_cleaner_bonus(
            charge_with_cleaner.appointment_id, cleaner.id, 2500, "review-42"
        )
        SettlementService.pay_cleaner_bonus(
            charge_with_cleaner.appointment_id, cleaner.id, 1000, "conflict-7"
        )

        assert LedgerService.get_summary(charge_with_cleaner.appointment_id) == {
            "cleaner_bonus": 3500
        }

    def test_reused_reference_with_other_amount_rejected(
        self, gateway, charge_with_cleaner, cleaner
    ):
        SettlementService.pay_cleaner_bonus(
            charge_with_cleaner.appointment_id, cleaner.id, 2500, "review-42"
        )

        with pytest.raises(ConflictError) as exc_info:
            SettlementService.pay_cleaner_bonus(
                charge_with_cleaner.appointment_id, cleaner.id, 4000, "review-42"
            )

        assert exc_info.value.error_code == "BONUS_REFERENCE_REUSED"
        gateway.create_transfer.assert_called_once()

    def test_unassigned_cleaner_rejected(self, gateway, charge):
        outsider = CleanerFactory()

        with pytest.raises(ValidationError) as exc_info:
            SettlementService.pay_cleaner_bonus(
                charge.appointment_id, outsider.id, 2500, "review-42"
            )

        assert exc_info.value.error_code == "CLEANER_NOT_ASSIGNED"
        gateway.create_transfer.assert_not_called()

    @pytest.mark.parametrize("amount", [0, -100, 12.5, True])
    def test_invalid_amount_rejected(self, gateway, charge_with_cleaner, cleaner, amount):
        with pytest.raises(ValidationError) as exc_info:
            SettlementService.pay_cleaner_bonus(
                charge_with_cleaner.appointment_id, cleaner.id, amount, "review-42"
            )

        assert exc_info.value.error_code == "INVALID_AMOUNT"

    def test_declined_transfer_raises(self, gateway, charge_with_cleaner, cleaner):
        gateway.create_transfer.side_effect = GatewayPermanentError("Account restricted")

        with pytest.raises(GatewayPermanentError):
            SettlementService.pay_cleaner_bonus(
                charge_with_cleaner.appointment_id, cleaner.id, 2500, "review-42"
            )

        op = GatewayOperation.objects.get(entry_type=EntryType.CLEANER_BONUS)
        assert op.state == GatewayOperationState.FAILED
        assert not LedgerEntry.objects.filter(entry_type=EntryType.CLEANER_BONUS).exists()
