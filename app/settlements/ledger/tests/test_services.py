"""
Tests for LedgerService.

This module tests posting balanced pairs, idempotent replays, the
balance invariant, reversals and the read-side queries.
"""

import uuid
from datetime import datetime
from datetime import timezone as dt_timezone

import pytest

from audit.models import AuditEvent, AuditEventType, AuditSeverity
from core.exceptions import ValidationError
from settlements.ledger.exceptions import (
    DuplicateEntryConflict,
    LedgerInvariantViolation,
    MissingPostingRule,
)
from settlements.ledger.models import (
    AccountType,
    AppointmentLedger,
    EntryDirection,
    EntryType,
    GatewayObjectType,
    LedgerEntry,
    PartyType,
    TaxCategory,
)
from settlements.ledger.services import LedgerService
from settlements.ledger.types import LegAccount


class TestRecordPair:
    """Tests for LedgerService.record_pair()."""

    def test_posts_two_balanced_legs(self, db, make_params, appointment_id):
        pair = LedgerService.record_pair(make_params())

        assert pair.created is True
        assert pair.debit.direction == EntryDirection.DEBIT
        assert pair.credit.direction == EntryDirection.CREDIT
        assert pair.debit.amount_cents == pair.credit.amount_cents == 15000
        assert pair.credit.related_entry_id == pair.debit.id
        assert LedgerService.get_balance(appointment_id).is_balanced

    def test_booking_posting_rule(self, db, make_params, homeowner_id):
        pair = LedgerService.record_pair(make_params())

        assert pair.debit.account_type == AccountType.ACCOUNTS_RECEIVABLE
        assert pair.debit.party_type == PartyType.HOMEOWNER
        assert pair.debit.party_user_id == homeowner_id
        assert pair.credit.account_type == AccountType.REVENUE
        assert pair.credit.party_type == PartyType.PLATFORM
        assert pair.credit.party_user_id is None
        assert pair.debit.tax_category == TaxCategory.INCOME

    def test_refund_posting_rule(self, db, make_params):
        pair = LedgerService.record_pair(
            make_params(entry_type=EntryType.CANCELLATION_PARTIAL_REFUND, amount_cents=7500)
        )

        assert pair.debit.account_type == AccountType.REFUNDS_PAYABLE
        assert pair.credit.account_type == AccountType.ACCOUNTS_RECEIVABLE
        assert pair.credit.party_type == PartyType.GATEWAY

    def test_payout_is_1099_eligible_on_cleaner_leg_only(self, db, make_params, cleaner_id):
        pair = LedgerService.record_pair(
            make_params(
                entry_type=EntryType.CLEANER_PAYOUT_CANCELLATION,
                amount_cents=6750,
                party_user_id=cleaner_id,
            )
        )

        assert pair.debit.account_type == AccountType.PAYOUTS_PAYABLE
        assert pair.debit.party_user_id == cleaner_id
        assert pair.debit.form_1099_eligible is True
        assert pair.credit.form_1099_eligible is False

    def test_leg_idempotency_keys(self, db, make_params):
        pair = LedgerService.record_pair(make_params(idempotency_key="booking:abc"))

        assert pair.debit.idempotency_key == "booking:abc:debit"
        assert pair.credit.idempotency_key == "booking:abc:credit"

    def test_tax_period_from_effective_date(self, db, make_params):
        pair = LedgerService.record_pair(
            make_params(effective_date=datetime(2026, 8, 14, tzinfo=dt_timezone.utc))
        )

        assert (pair.debit.tax_year, pair.debit.tax_quarter) == (2026, 3)

    def test_updates_head_totals(self, db, make_params, appointment_id):
        LedgerService.record_pair(make_params())
        LedgerService.record_pair(make_params(amount_cents=1500, entry_type=EntryType.ADDON_LINENS))

        head = AppointmentLedger.objects.get(appointment_id=appointment_id)
        assert head.entry_count == 4
        assert head.debit_total_cents == head.credit_total_cents == 16500
        assert head.last_posted_at is not None

    def test_writes_audit_event(self, db, make_params, appointment_id):
        pair = LedgerService.record_pair(make_params())

        event = AuditEvent.objects.get(
            event_type=AuditEventType.LEDGER_ENTRIES_POSTED,
            appointment_id=appointment_id,
        )
        assert event.ledger_entry_ids == [str(pair.debit.id), str(pair.credit.id)]
        assert event.new_state["debit_total_cents"] == 15000


class TestIdempotency:
    def test_replay_returns_existing_pair(self, db, make_params, appointment_id):
        params = make_params()

        first = LedgerService.record_pair(params)
        second = LedgerService.record_pair(params)

        assert second.created is False
        assert second.entry_ids == first.entry_ids
        assert LedgerEntry.objects.filter(appointment_id=appointment_id).count() == 2

    def test_same_key_different_amount_conflicts(self, db, make_params):
        params = make_params(idempotency_key="booking:dup")
        LedgerService.record_pair(params)

        with pytest.raises(DuplicateEntryConflict) as exc_info:
            LedgerService.record_pair(make_params(idempotency_key="booking:dup", amount_cents=100))

        assert exc_info.value.details["mismatched_fields"] == ["amount_cents"]

    def test_same_gateway_object_is_replay(self, db, make_params, booking_pair):
        replay = LedgerService.record_pair(
            make_params(
                idempotency_key="different-key",
                gateway_object_type=GatewayObjectType.PAYMENT_INTENT,
                gateway_object_id="pi_booking_123",
            )
        )

        assert replay.created is False
        assert replay.debit.id == booking_pair.debit.id


class TestValidation:
    @pytest.mark.parametrize("amount", [0, -100])
    def test_rejects_non_positive_amount(self, db, make_params, amount):
        with pytest.raises(ValidationError) as exc_info:
            LedgerService.record_pair(make_params(amount_cents=amount))

        assert exc_info.value.error_code == "INVALID_AMOUNT"

    def test_rejects_unknown_entry_type(self, db, make_params):
        with pytest.raises(ValidationError):
            LedgerService.record_pair(make_params(entry_type="tip"))

    def test_manual_adjustment_needs_accounts(self, db, make_params):
        with pytest.raises(MissingPostingRule):
            LedgerService.record_pair(make_params(entry_type=EntryType.MANUAL_ADJUSTMENT))

    def test_manual_adjustment_with_accounts(self, db, make_params):
        pair = LedgerService.record_pair(
            make_params(
                entry_type=EntryType.MANUAL_ADJUSTMENT,
                amount_cents=300,
                debit_account=LegAccount(AccountType.REVENUE, PartyType.PLATFORM),
                credit_account=LegAccount(AccountType.ACCOUNTS_RECEIVABLE, PartyType.HOMEOWNER),
            )
        )

        assert pair.debit.account_type == AccountType.REVENUE
        assert pair.credit.account_type == AccountType.ACCOUNTS_RECEIVABLE
        assert pair.debit.tax_reportable is False


class TestRecordPairs:
    def test_batch_is_atomic(self, db, make_params, appointment_id):
        with pytest.raises(ValidationError):
            LedgerService.record_pairs([make_params(), make_params(amount_cents=0)])

        assert not LedgerEntry.objects.filter(appointment_id=appointment_id).exists()

    def test_conflict_rolls_back_whole_batch(self, db, make_params, appointment_id):
        LedgerService.record_pair(make_params(idempotency_key="k1"))

        with pytest.raises(DuplicateEntryConflict):
            LedgerService.record_pairs(
                [
                    make_params(idempotency_key="k2", entry_type=EntryType.ADDON_LINENS, amount_cents=1500),
                    make_params(idempotency_key="k1", amount_cents=1),
                ]
            )

        assert LedgerEntry.objects.filter(appointment_id=appointment_id).count() == 2

    def test_empty_batch(self, db):
        assert LedgerService.record_pairs([]) == []


class TestInvariantViolation:
    def test_unbalanced_head_rolls_back_and_audits(self, db, make_params, appointment_id):
        AppointmentLedger.objects.create(appointment_id=appointment_id)
        AppointmentLedger.objects.filter(appointment_id=appointment_id).update(
            debit_total_cents=999
        )

        with pytest.raises(LedgerInvariantViolation):
            LedgerService.record_pair(make_params())

        assert not LedgerEntry.objects.filter(appointment_id=appointment_id).exists()
        event = AuditEvent.objects.get(
            event_type=AuditEventType.LEDGER_INVARIANT_VIOLATION,
            appointment_id=appointment_id,
        )
        assert event.severity == AuditSeverity.CRITICAL
        assert not AuditEvent.objects.filter(
            event_type=AuditEventType.LEDGER_ENTRIES_POSTED,
            appointment_id=appointment_id,
        ).exists()


class TestReversePair:
    def test_swaps_accounts_and_references_original(self, db, booking_pair, appointment_id):
        reversal = LedgerService.reverse_pair(
            booking_pair.credit,
            idempotency_key="reverse:booking",
            reason="Booking charged twice",
        )

        assert reversal.debit.entry_type == EntryType.MANUAL_ADJUSTMENT
        assert reversal.debit.account_type == booking_pair.credit.account_type
        assert reversal.credit.account_type == booking_pair.debit.account_type
        assert reversal.debit.typed_metadata.reverses_entry_id == booking_pair.debit.id
        assert reversal.debit.typed_metadata.reason == "Booking charged twice"

        balance = LedgerService.get_balance(appointment_id)
        assert balance.is_balanced
        assert balance.entry_count == 4

    def test_original_untouched(self, db, booking_pair):
        LedgerService.reverse_pair(booking_pair.debit, "reverse:booking", "mistake")

        original = LedgerEntry.objects.get(id=booking_pair.debit.id)
        assert original.amount_cents == 15000
        assert original.entry_type == EntryType.BOOKING_REVENUE


class TestQueries:
    def test_summary_by_entry_type(self, db, make_params, appointment_id):
        LedgerService.record_pair(make_params())
        LedgerService.record_pair(make_params(entry_type=EntryType.ADDON_LINENS, amount_cents=1500))
        LedgerService.record_pair(
            make_params(entry_type=EntryType.CANCELLATION_PARTIAL_REFUND, amount_cents=8250)
        )

        summary = LedgerService.get_summary(appointment_id)

        assert summary == {
            "booking_revenue": 15000,
            "addon_linens": 1500,
            "cancellation_partial_refund": 8250,
        }

    def test_entries_in_posting_order(self, db, make_params, appointment_id):
        LedgerService.record_pair(make_params())

        entries = LedgerService.get_entries(appointment_id)

        assert len(entries) == 2
        assert {e.direction for e in entries} == {"debit", "credit"}

    def test_find_by_gateway_object(self, db, booking_pair):
        found = LedgerService.find_by_gateway_object("pi_booking_123", EntryType.BOOKING_REVENUE)

        assert found.debit.id == booking_pair.debit.id
        assert LedgerService.find_by_gateway_object("pi_other", EntryType.BOOKING_REVENUE) is None

    def test_empty_balance(self, db):
        balance = LedgerService.get_balance(uuid.uuid4())

        assert balance.debit_total_cents == 0
        assert balance.entry_count == 0
        assert balance.is_balanced
