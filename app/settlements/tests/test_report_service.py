"""
Tests for ReportService.
"""

import uuid
from datetime import date, datetime
from datetime import timezone as dt_timezone

import pytest

from core.exceptions import ValidationError
from settlements.ledger.models import (
    AccountType,
    EntryType,
    GatewayObjectType,
    LedgerEntry,
    PartyType,
)
from settlements.ledger.services import LedgerService
from settlements.ledger.types import LegAccount, RecordPairParams
from settlements.services import ReportService

Q1 = datetime(2026, 2, 14, 12, 0, tzinfo=dt_timezone.utc)
Q3 = datetime(2026, 8, 14, 12, 0, tzinfo=dt_timezone.utc)


def post(entry_type, amount_cents, effective_date=Q1, party_user_id=None, **kwargs):
    return LedgerService.record_pair(
        RecordPairParams(
            appointment_id=kwargs.pop("appointment_id", uuid.uuid4()),
            entry_type=entry_type,
            amount_cents=amount_cents,
            idempotency_key=f"test:{uuid.uuid4()}",
            party_user_id=party_user_id,
            effective_date=effective_date,
            **kwargs,
        )
    )


@pytest.fixture
def cleaner_id():
    return uuid.uuid4()


class TestReconciliationReport:
    def test_totals_grouped_by_entry_type(self, db):
        post(EntryType.BOOKING_REVENUE, 15000, party_user_id=uuid.uuid4())
        post(EntryType.CANCELLATION_PARTIAL_REFUND, 7500, party_user_id=uuid.uuid4())

        report = ReportService.reconciliation_report(tax_year=2026, tax_quarter=1)

        assert report.total_entries == 4
        assert report.debits_cents == report.credits_cents == 22500
        booking = report.by_entry_type["booking_revenue"]
        assert (booking.count, booking.debits_cents, booking.credits_cents) == (2, 15000, 15000)

    def test_unreconciled_excludes_matched(self, db):
        matched = post(
            EntryType.CANCELLATION_REFUND,
            5000,
            gateway_object_type=GatewayObjectType.REFUND,
            gateway_object_id="re_matched",
        )
        flagged = post(
            EntryType.CANCELLATION_REFUND,
            6000,
            gateway_object_type=GatewayObjectType.REFUND,
            gateway_object_id="re_flagged",
        )
        for entry in LedgerEntry.objects.filter(id__in=matched.entry_ids):
            entry.mark_matched("RECON-test")
        for entry in LedgerEntry.objects.filter(id__in=flagged.entry_ids):
            entry.flag_discrepancy("RECON-test", "Gateway amount 5900", amount_cents=100)

        report = ReportService.reconciliation_report(tax_year=2026)

        assert {e.entry_id for e in report.unreconciled} == set(flagged.entry_ids)
        assert report.total_discrepancy_cents == 200
        assert report.to_dict()["total_discrepancy_cents"] == 200

    def test_date_range_filter(self, db):
        post(EntryType.BOOKING_REVENUE, 15000, effective_date=Q1)
        post(EntryType.BOOKING_REVENUE, 9000, effective_date=Q3)

        report = ReportService.reconciliation_report(
            start_date=date(2026, 8, 1), end_date=date(2026, 8, 31)
        )

        assert report.total_entries == 2
        assert report.debits_cents == 9000

    def test_tax_period_filter(self, db):
        post(EntryType.BOOKING_REVENUE, 15000, effective_date=Q1)
        post(EntryType.BOOKING_REVENUE, 9000, effective_date=Q3)

        report = ReportService.reconciliation_report(tax_year=2026, tax_quarter=3)

        assert report.debits_cents == 9000

    def test_half_open_range_rejected(self, db):
        with pytest.raises(ValidationError) as exc_info:
            ReportService.reconciliation_report(start_date=date(2026, 1, 1))

        assert exc_info.value.error_code == "INVALID_DATE_RANGE"

    def test_inverted_range_rejected(self, db):
        with pytest.raises(ValidationError) as exc_info:
            ReportService.reconciliation_report(
                start_date=date(2026, 2, 1), end_date=date(2026, 1, 1)
            )

        assert exc_info.value.error_code == "INVALID_DATE_RANGE"

    def test_quarter_without_year_rejected(self, db):
        with pytest.raises(ValidationError) as exc_info:
            ReportService.reconciliation_report(tax_quarter=2)

        assert exc_info.value.error_code == "TAX_YEAR_REQUIRED"


class TestTaxReport:
    def test_party_totals_and_threshold(self, db, settings, cleaner_id):
        settings.FORM_1099_THRESHOLD_CENTS = 60000
        other_cleaner = uuid.uuid4()
        post(EntryType.CLEANER_PAYOUT_JOB, 40000, party_user_id=cleaner_id)
        post(EntryType.CLEANER_PAYOUT_CANCELLATION, 25000, party_user_id=cleaner_id, effective_date=Q3)
        post(EntryType.CLEANER_PAYOUT_JOB, 10000, party_user_id=other_cleaner)

        report = ReportService.tax_report(tax_year=2026)

        assert [(p.party_user_id, p.total_cents, p.form_1099_required) for p in report.parties] == [
            (cleaner_id, 65000, True),
            (other_cleaner, 10000, False),
        ]
        assert report.threshold_cents == 60000

    def test_quarter_limits_party_totals(self, db, cleaner_id):
        post(EntryType.CLEANER_PAYOUT_JOB, 40000, party_user_id=cleaner_id)
        post(EntryType.CLEANER_PAYOUT_JOB, 25000, party_user_id=cleaner_id, effective_date=Q3)

        report = ReportService.tax_report(tax_year=2026, tax_quarter=3)

        assert report.parties[0].total_cents == 25000
        assert report.parties[0].entry_count == 1

    def test_grouped_by_tax_category(self, db, cleaner_id):
        post(EntryType.BOOKING_REVENUE, 15000)
        post(EntryType.CLEANER_PAYOUT_JOB, 6750, party_user_id=cleaner_id)

        report = ReportService.tax_report(tax_year=2026)

        assert report.by_tax_category["income"].debits_cents == 15000
        assert report.by_tax_category["payout"].debits_cents == 6750
        assert set(report.by_entry_type) == {"booking_revenue", "cleaner_payout_job"}

    def test_non_reportable_entries_excluded(self, db):
        post(
            EntryType.MANUAL_ADJUSTMENT,
            300,
            debit_account=LegAccount(AccountType.REVENUE, PartyType.PLATFORM),
            credit_account=LegAccount(AccountType.ACCOUNTS_RECEIVABLE, PartyType.HOMEOWNER),
        )

        report = ReportService.tax_report(tax_year=2026)

        assert report.by_entry_type == {}

    def test_requires_year(self, db):
        with pytest.raises(ValidationError) as exc_info:
            ReportService.tax_report(tax_year=None)

        assert exc_info.value.error_code == "TAX_YEAR_REQUIRED"

    def test_invalid_quarter(self, db):
        with pytest.raises(ValidationError) as exc_info:
            ReportService.tax_report(tax_year=2026, tax_quarter=5)

        assert exc_info.value.error_code == "INVALID_TAX_QUARTER"


class TestForm1099Report:
    def test_lines_and_total(self, db, settings, cleaner_id):
        settings.FORM_1099_THRESHOLD_CENTS = 60000
        post(EntryType.CLEANER_PAYOUT_JOB, 50000, party_user_id=cleaner_id)
        post(EntryType.CLEANER_BONUS, 12345, party_user_id=cleaner_id, effective_date=Q3)

        report = ReportService.form_1099_report(cleaner_id, tax_year=2026)

        assert [line.amount_cents for line in report.lines] == [50000, 12345]
        assert report.total_cents == 62345
        assert report.form_1099_required is True
        assert report.total_formatted == "$623.45"

    def test_other_years_and_cleaners_excluded(self, db, settings, cleaner_id):
        settings.FORM_1099_THRESHOLD_CENTS = 60000
        post(
            EntryType.CLEANER_PAYOUT_JOB,
            70000,
            party_user_id=cleaner_id,
            effective_date=datetime(2025, 12, 31, 12, 0, tzinfo=dt_timezone.utc),
        )
        post(EntryType.CLEANER_PAYOUT_JOB, 70000, party_user_id=uuid.uuid4())

        report = ReportService.form_1099_report(cleaner_id, tax_year=2026)

        assert report.lines == []
        assert report.total_cents == 0
        assert report.form_1099_required is False
        assert report.to_dict()["form_1099_required"] is False


