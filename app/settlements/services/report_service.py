"""
Accounting and tax reports built from ledger entries.

Reports are read-only aggregations; nothing here writes to the ledger.

Usage:
    from settlements.services import ReportService

    report = ReportService.reconciliation_report(tax_year=2026, tax_quarter=1)
    report.to_dict()
"""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from django.conf import settings
from django.db.models import BigIntegerField, Count, Q, QuerySet, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone

from core.exceptions import ValidationError
from core.services import BaseService
from settlements.ledger.models import (
    EntryDirection,
    LedgerEntry,
    PartyType,
    ReconciliationStatus,
)


@dataclass(frozen=True)
class GroupTotals:
    count: int
    debits_cents: int
    credits_cents: int


@dataclass(frozen=True)
class UnreconciledEntry:
    entry_id: uuid.UUID
    appointment_id: uuid.UUID
    entry_type: str
    direction: str
    amount_cents: int
    gateway_object_id: str | None
    reconciliation_status: str
    discrepancy_amount_cents: int | None
    discrepancy_notes: str


@dataclass(frozen=True)
class ReconciliationReport:
    """Grouped ledger totals for a period plus everything not yet matched."""

    start_date: date | None
    end_date: date | None
    tax_year: int | None
    tax_quarter: int | None
    total_entries: int
    debits_cents: int
    credits_cents: int
    by_entry_type: dict[str, GroupTotals]
    unreconciled: list[UnreconciledEntry]
    generated_at: datetime

    @property
    def total_discrepancy_cents(self) -> int:
        return sum(e.discrepancy_amount_cents or 0 for e in self.unreconciled)

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["total_discrepancy_cents"] = self.total_discrepancy_cents
        return data


@dataclass(frozen=True)
class PartyTaxTotal:
    party_user_id: uuid.UUID
    total_cents: int
    entry_count: int
    form_1099_required: bool


@dataclass(frozen=True)
class TaxReport:
    tax_year: int
    tax_quarter: int | None
    threshold_cents: int
    parties: list[PartyTaxTotal]
    by_tax_category: dict[str, GroupTotals]
    by_entry_type: dict[str, GroupTotals]
    generated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass(frozen=True)
class Form1099Line:
    effective_date: datetime
    entry_type: str
    amount_cents: int
    appointment_id: uuid.UUID


@dataclass(frozen=True)
class Form1099Report:
    cleaner_id: uuid.UUID
    tax_year: int
    total_cents: int
    threshold_cents: int
    lines: list[Form1099Line] = field(default_factory=list)

    @property
    def form_1099_required(self) -> bool:
        return self.total_cents >= self.threshold_cents

    @property
    def total_formatted(self) -> str:
        return f"${self.total_cents / 100:,.2f}"

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["form_1099_required"] = self.form_1099_required
        data["total_formatted"] = self.total_formatted
        return data


class ReportService(BaseService):
    """Read-only ledger reports."""

    @classmethod
    def reconciliation_report(
        cls,
        start_date: date | None = None,
        end_date: date | None = None,
        tax_year: int | None = None,
        tax_quarter: int | None = None,
    ) -> ReconciliationReport:
        """
        Totals grouped by entry type, plus unreconciled entries.

        Filter by effective date range, by tax period, or both.

        Raises:
            ValidationError: Only one end of the date range given, or a
                quarter without a year
        """
        if (start_date is None) != (end_date is None):
            raise ValidationError(
                "start_date and end_date must be given together",
                error_code="INVALID_DATE_RANGE",
            )
        if start_date and end_date and start_date > end_date:
            raise ValidationError(
                "start_date must not be after end_date",
                error_code="INVALID_DATE_RANGE",
                details={"start_date": str(start_date), "end_date": str(end_date)},
            )
        cls._check_period(tax_year, tax_quarter, year_required=False)

        entries = LedgerEntry.objects.all()
        if start_date and end_date:
            entries = entries.filter(
                effective_date__date__gte=start_date,
                effective_date__date__lte=end_date,
            )
        if tax_year:
            entries = entries.filter(tax_year=tax_year)
        if tax_quarter:
            entries = entries.filter(tax_quarter=tax_quarter)

        totals = entries.totals()
        unreconciled = [
            UnreconciledEntry(
                entry_id=entry.id,
                appointment_id=entry.appointment_id,
                entry_type=entry.entry_type,
                direction=entry.direction,
                amount_cents=entry.amount_cents,
                gateway_object_id=entry.gateway_object_id,
                reconciliation_status=entry.reconciliation_status,
                discrepancy_amount_cents=entry.discrepancy_amount_cents,
                discrepancy_notes=entry.discrepancy_notes,
            )
            for entry in entries.exclude(
                reconciliation_status=ReconciliationStatus.MATCHED
            ).order_by("effective_date", "id")
        ]

        report = ReconciliationReport(
            start_date=start_date,
            end_date=end_date,
            tax_year=tax_year,
            tax_quarter=tax_quarter,
            total_entries=entries.count(),
            debits_cents=totals["debits"],
            credits_cents=totals["credits"],
            by_entry_type=cls._grouped(entries, "entry_type"),
            unreconciled=unreconciled,
            generated_at=timezone.now(),
        )
        cls.get_logger().info(
            "Reconciliation report generated",
            extra={
                "tax_year": tax_year,
                "tax_quarter": tax_quarter,
                "total_entries": report.total_entries,
                "unreconciled": len(unreconciled),
            },
        )
        return report

    @classmethod
    def tax_report(cls, tax_year: int, tax_quarter: int | None = None) -> TaxReport:
        """
        Per-party 1099-eligible totals and a grouped summary of
        tax-reportable entries for a tax year (optionally one quarter).
        """
        cls._check_period(tax_year, tax_quarter, year_required=True)
        threshold = settings.FORM_1099_THRESHOLD_CENTS

        entries = LedgerEntry.objects.filter(tax_year=tax_year, tax_reportable=True)
        if tax_quarter:
            entries = entries.filter(tax_quarter=tax_quarter)

        parties = [
            PartyTaxTotal(
                party_user_id=row["party_user_id"],
                total_cents=row["total"],
                entry_count=row["count"],
                form_1099_required=row["total"] >= threshold,
            )
            for row in entries.filter(
                form_1099_eligible=True,
                party_type=PartyType.CLEANER,
                party_user_id__isnull=False,
            )
            .values("party_user_id")
            .annotate(total=Sum("amount_cents"), count=Count("id"))
            .order_by("-total", "party_user_id")
        ]

        return TaxReport(
            tax_year=tax_year,
            tax_quarter=tax_quarter,
            threshold_cents=threshold,
            parties=parties,
            by_tax_category=cls._grouped(entries, "tax_category"),
            by_entry_type=cls._grouped(entries, "entry_type"),
            generated_at=timezone.now(),
        )

    @classmethod
    def form_1099_report(cls, cleaner_id: uuid.UUID, tax_year: int) -> Form1099Report:
        """1099-eligible payments to one cleaner in a tax year."""
        cls._check_period(tax_year, None, year_required=True)
        entries = LedgerEntry.objects.filter(
            party_user_id=cleaner_id,
            party_type=PartyType.CLEANER,
            form_1099_eligible=True,
            tax_year=tax_year,
        ).order_by("effective_date", "id")

        lines = [
            Form1099Line(
                effective_date=entry.effective_date,
                entry_type=entry.entry_type,
                amount_cents=entry.amount_cents,
                appointment_id=entry.appointment_id,
            )
            for entry in entries
        ]
        return Form1099Report(
            cleaner_id=cleaner_id,
            tax_year=tax_year,
            total_cents=sum(line.amount_cents for line in lines),
            threshold_cents=settings.FORM_1099_THRESHOLD_CENTS,
            lines=lines,
        )

    @staticmethod
    def _grouped(entries: QuerySet, key: str) -> dict[str, GroupTotals]:
        zero = Value(0, output_field=BigIntegerField())
        rows = (
            entries.order_by()
            .values(key)
            .annotate(
                count=Count("id"),
                debits=Coalesce(
                    Sum("amount_cents", filter=Q(direction=EntryDirection.DEBIT)), zero
                ),
                credits=Coalesce(
                    Sum("amount_cents", filter=Q(direction=EntryDirection.CREDIT)), zero
                ),
            )
            .order_by(key)
        )
        return {
            row[key]: GroupTotals(
                count=row["count"],
                debits_cents=row["debits"],
                credits_cents=row["credits"],
            )
            for row in rows
        }

    @staticmethod
    def _check_period(tax_year: int | None, tax_quarter: int | None, year_required: bool) -> None:
        if year_required and not tax_year:
            raise ValidationError("tax_year is required", error_code="TAX_YEAR_REQUIRED")
        if tax_quarter is not None and not tax_year:
            raise ValidationError(
                "tax_quarter requires tax_year",
                error_code="TAX_YEAR_REQUIRED",
            )
        if tax_quarter is not None and tax_quarter not in (1, 2, 3, 4):
            raise ValidationError(
                "tax_quarter must be between 1 and 4",
                error_code="INVALID_TAX_QUARTER",
                details={"tax_quarter": tax_quarter},
            )
