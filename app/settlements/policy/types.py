"""
Input and output types for the cancellation policy engine.

Types:
    CancelledBy: Who cancelled (homeowner or cleaner)
    LineItemKind: Itemized add-ons on a booking
    LineItem: One add-on charge
    CleanerShare: An assigned cleaner and their optional recorded share
    AppointmentTerms: Everything the engine needs about an appointment
    CleanerSplit: One cleaner's computed payout
    CancellationOutcome: Engine result
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date

from django.db import models


class CancelledBy(models.TextChoices):
    """Party that cancelled the appointment."""

    HOMEOWNER = "homeowner", "Homeowner"
    CLEANER = "cleaner", "Cleaner"


class LineItemKind(models.TextChoices):
    """Add-ons itemized on a booking."""

    LINENS = "linens", "Linens"
    TIME_WINDOW = "time_window", "Time Window"
    HIGH_VOLUME = "high_volume", "High Volume"
    LAST_MINUTE = "last_minute", "Last Minute"


@dataclass(frozen=True)
class LineItem:
    kind: LineItemKind
    amount_cents: int
    label: str = ""


@dataclass(frozen=True)
class CleanerShare:
    """
    A cleaner assigned to the appointment.

    share_cents is the separately recorded share of a cancellation payout,
    or None when the payout should be split evenly.
    """

    cleaner_id: uuid.UUID
    share_cents: int | None = None


@dataclass(frozen=True)
class AppointmentTerms:
    """
    Financial terms of a booked appointment.

    Attributes:
        appointment_id: Appointment identifier
        appointment_date: Calendar date of the appointment (local)
        timezone: IANA zone the appointment date is expressed in
        base_price_cents: Price before add-ons
        line_items: Itemized add-ons
        cleaners: Assigned cleaners
    """

    appointment_id: uuid.UUID
    appointment_date: date
    timezone: str
    base_price_cents: int
    line_items: tuple[LineItem, ...] = ()
    cleaners: tuple[CleanerShare, ...] = ()

    @property
    def addons_total_cents(self) -> int:
        return sum(item.amount_cents for item in self.line_items)

    @property
    def total_cents(self) -> int:
        return self.base_price_cents + self.addons_total_cents


@dataclass(frozen=True)
class CleanerSplit:
    cleaner_id: uuid.UUID
    amount_cents: int


@dataclass(frozen=True)
class CancellationOutcome:
    """
    Result of applying the cancellation policy.

    All amounts are integer cents. refund + platform fee + cleaner payout
    always equals the appointment total; the cancellation fee is charged
    on top of that.
    """

    cancelled_by: CancelledBy
    total_cents: int
    refund_amount_cents: int
    refund_percentage: int
    cancellation_fee_cents: int
    cleaner_payout_cents: int
    platform_fee_cents: int
    days_until: int
    within_penalty_window: bool
    within_fee_window: bool
    cleaner_penalty_applies: bool = False
    cleaner_splits: tuple[CleanerSplit, ...] = ()
    rationale: str = ""

    @property
    def is_full_refund(self) -> bool:
        return self.refund_amount_cents == self.total_cents

    @property
    def retained_cents(self) -> int:
        return self.total_cents - self.refund_amount_cents
