"""
Tests for the cancellation policy engine.

Pure function tests: no database, no settings.
"""

import uuid
from datetime import date, datetime
from datetime import timezone as dt_timezone

import pytest

from settlements.exceptions import PolicyComputationError
from settlements.policy import (
    AppointmentTerms,
    CancelledBy,
    CleanerShare,
    LineItem,
    LineItemKind,
    PolicyConfig,
    compute_cancellation_outcome,
    days_until_appointment,
    split_payout,
)

APPOINTMENT_DATE = date(2026, 3, 10)


def make_terms(base_price_cents=15000, line_items=(), cleaners=(), tz="UTC"):
    return AppointmentTerms(
        appointment_id=uuid.uuid4(),
        appointment_date=APPOINTMENT_DATE,
        timezone=tz,
        base_price_cents=base_price_cents,
        line_items=tuple(line_items),
        cleaners=tuple(cleaners),
    )


def at(day, hour=12):
    return datetime(2026, 3, day, hour, 0, tzinfo=dt_timezone.utc)


class TestDaysUntil:
    def test_counts_calendar_days(self):
        assert days_until_appointment(make_terms(), at(8, hour=23)) == 2
        assert days_until_appointment(make_terms(), at(8, hour=0)) == 2

    def test_uses_appointment_timezone(self):
        # 2026-03-08 02:00 UTC is still 2026-03-07 in New York
        terms = make_terms(tz="America/New_York")
        now = datetime(2026, 3, 8, 2, 0, tzinfo=dt_timezone.utc)

        assert days_until_appointment(terms, now) == 3

    def test_naive_datetime_rejected(self):
        with pytest.raises(PolicyComputationError) as exc_info:
            days_until_appointment(make_terms(), datetime(2026, 3, 8, 12, 0))

        assert exc_info.value.error_code == "NAIVE_DATETIME"

    def test_unknown_timezone_rejected(self):
        with pytest.raises(PolicyComputationError) as exc_info:
            days_until_appointment(make_terms(tz="Mars/Olympus_Mons"), at(8))

        assert exc_info.value.error_code == "UNKNOWN_TIMEZONE"


class TestHomeownerCancellation:
    def test_inside_penalty_and_fee_windows(self):
        """$150 cancelled 2 days out: $75 refund, $25 fee, $100 net cost."""
        outcome = compute_cancellation_outcome(
            make_terms(), CancelledBy.HOMEOWNER, at(8)
        )

        assert outcome.days_until == 2
        assert outcome.within_penalty_window is True
        assert outcome.within_fee_window is True
        assert outcome.refund_amount_cents == 7500
        assert outcome.refund_percentage == 50
        assert outcome.cancellation_fee_cents == 2500
        assert outcome.total_cents - outcome.refund_amount_cents + outcome.cancellation_fee_cents == 10000

    def test_exactly_at_penalty_boundary_gets_full_refund(self):
        outcome = compute_cancellation_outcome(
            make_terms(), CancelledBy.HOMEOWNER, at(7)
        )

        assert outcome.days_until == 3
        assert outcome.within_penalty_window is False
        assert outcome.refund_amount_cents == 15000
        assert outcome.refund_percentage == 100
        # Still inside the 7-day fee window
        assert outcome.cancellation_fee_cents == 2500

    def test_one_day_inside_penalty_boundary(self):
        outcome = compute_cancellation_outcome(
            make_terms(), CancelledBy.HOMEOWNER, at(8)
        )

        assert outcome.refund_percentage == 50

    def test_exactly_at_fee_boundary_has_no_fee(self):
        outcome = compute_cancellation_outcome(
            make_terms(), CancelledBy.HOMEOWNER, at(3)
        )

        assert outcome.days_until == 7
        assert outcome.within_fee_window is False
        assert outcome.cancellation_fee_cents == 0
        assert outcome.refund_amount_cents == 15000

    def test_addons_are_part_of_the_total(self):
        terms = make_terms(
            line_items=[
                LineItem(LineItemKind.LINENS, 1500),
                LineItem(LineItemKind.LAST_MINUTE, 1001),
            ]
        )

        outcome = compute_cancellation_outcome(terms, CancelledBy.HOMEOWNER, at(8))

        assert outcome.total_cents == 17501
        # Integer cents, rounded down
        assert outcome.refund_amount_cents == 8750

    def test_retained_amount_split_with_cleaners(self):
        cleaner_id = uuid.uuid4()
        terms = make_terms(cleaners=[CleanerShare(cleaner_id)])

        outcome = compute_cancellation_outcome(terms, CancelledBy.HOMEOWNER, at(8))

        assert outcome.platform_fee_cents == 750
        assert outcome.cleaner_payout_cents == 6750
        assert [s.amount_cents for s in outcome.cleaner_splits] == [6750]
        assert (
            outcome.refund_amount_cents
            + outcome.platform_fee_cents
            + outcome.cleaner_payout_cents
            == outcome.total_cents
        )

    def test_platform_keeps_retained_amount_without_cleaners(self):
        outcome = compute_cancellation_outcome(
            make_terms(), CancelledBy.HOMEOWNER, at(8)
        )

        assert outcome.cleaner_payout_cents == 0
        assert outcome.platform_fee_cents == 7500
        assert outcome.cleaner_splits == ()

    def test_percentage_fee(self):
        config = PolicyConfig(cancellation_fee_percent=10)

        outcome = compute_cancellation_outcome(
            make_terms(), CancelledBy.HOMEOWNER, at(8), config
        )

        assert outcome.cancellation_fee_cents == 1500

    def test_same_inputs_same_outcome(self):
        terms = make_terms(cleaners=[CleanerShare(uuid.uuid4())])

        first = compute_cancellation_outcome(terms, "homeowner", at(8))
        second = compute_cancellation_outcome(terms, "homeowner", at(8))

        assert first == second


class TestCleanerCancellation:
    def test_full_refund_no_fee(self):
        terms = make_terms(cleaners=[CleanerShare(uuid.uuid4())])

        outcome = compute_cancellation_outcome(terms, CancelledBy.CLEANER, at(9))

        assert outcome.refund_amount_cents == 15000
        assert outcome.refund_percentage == 100
        assert outcome.cancellation_fee_cents == 0
        assert outcome.cleaner_payout_cents == 0
        assert outcome.platform_fee_cents == 0

    def test_penalty_flag_inside_cleaner_window(self):
        inside = compute_cancellation_outcome(make_terms(), CancelledBy.CLEANER, at(7))
        boundary = compute_cancellation_outcome(make_terms(), CancelledBy.CLEANER, at(6))

        assert inside.cleaner_penalty_applies is True
        assert boundary.days_until == 4
        assert boundary.cleaner_penalty_applies is False


class TestSplitPayout:
    def test_remainder_goes_to_first_cleaner_by_id(self):
        ids = sorted(uuid.uuid4() for _ in range(3))
        cleaners = [CleanerShare(ids[2]), CleanerShare(ids[0]), CleanerShare(ids[1])]

        splits = split_payout(10000, cleaners)

        assert [s.cleaner_id for s in splits] == ids
        assert [s.amount_cents for s in splits] == [3334, 3333, 3333]
        assert sum(s.amount_cents for s in splits) == 10000

    def test_recorded_shares_are_used(self):
        a, b = sorted(uuid.uuid4() for _ in range(2))

        splits = split_payout(6750, [CleanerShare(a, 5000), CleanerShare(b, 1750)])

        assert [s.amount_cents for s in splits] == [5000, 1750]

    def test_partial_recorded_shares_fall_back_to_even_split(self):
        a, b = sorted(uuid.uuid4() for _ in range(2))

        splits = split_payout(101, [CleanerShare(a, 100), CleanerShare(b)])

        assert [s.amount_cents for s in splits] == [51, 50]

    def test_recorded_shares_must_sum_to_payout(self):
        a, b = sorted(uuid.uuid4() for _ in range(2))

        with pytest.raises(PolicyComputationError) as exc_info:
            split_payout(6750, [CleanerShare(a, 5000), CleanerShare(b, 1000)])

        assert exc_info.value.error_code == "CLEANER_SHARE_MISMATCH"

    def test_no_cleaners(self):
        assert split_payout(5000, []) == ()


class TestInvalidInput:
    def test_negative_price(self):
        with pytest.raises(PolicyComputationError) as exc_info:
            compute_cancellation_outcome(
                make_terms(base_price_cents=-1), CancelledBy.HOMEOWNER, at(8)
            )

        assert exc_info.value.error_code == "NEGATIVE_PRICE"

    def test_unknown_canceller(self):
        with pytest.raises(PolicyComputationError) as exc_info:
            compute_cancellation_outcome(make_terms(), "platform", at(8))

        assert exc_info.value.error_code == "UNKNOWN_CANCELLER"

    @pytest.mark.parametrize(
        "config",
        [
            PolicyConfig(penalty_refund_percent=101),
            PolicyConfig(cancellation_fee_cents=-1),
            PolicyConfig(homeowner_penalty_days=-3),
        ],
    )
    def test_invalid_config(self, config):
        with pytest.raises(PolicyComputationError) as exc_info:
            compute_cancellation_outcome(make_terms(), CancelledBy.HOMEOWNER, at(8), config)

        assert exc_info.value.error_code == "INVALID_POLICY_CONFIG"
