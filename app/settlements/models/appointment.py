"""
Financial snapshot of a booked appointment.

Scheduling owns appointments; the settlement engine only reads the money
side of them. AppointmentCharge records what the homeowner paid and how,
ChargeLineItem itemizes add-ons, and CleanerAssignment lists who would be
paid.

Usage:
    from settlements.models import AppointmentCharge

    charge = AppointmentCharge.objects.prefetch_related(
        "line_items", "cleaner_assignments"
    ).get(appointment_id=appointment_id)
    terms = charge.to_terms()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from settlements.policy.types import (
    AppointmentTerms,
    CleanerShare,
    LineItem,
    LineItemKind,
)
from settlements.state_machines import AppointmentChargeStatus


class AppointmentCharge(UUIDPrimaryKeyMixin, BaseModel):
    """
    What a homeowner was charged for one appointment.

    Fields:
        appointment_id: Appointment (unique, no FK)
        homeowner: Paying homeowner
        appointment_date / timezone: Local date and IANA zone
        base_price_cents: Price before add-ons
        payment_intent_id: Captured PaymentIntent the refund is issued against
        gateway_customer_id / gateway_payment_method_id: Saved card used for
            off-session cancellation fees
        payment_method_label: Display label ("Visa ending 4242")
        status: booked / cancelled
    """

    appointment_id = models.UUIDField(
        unique=True,
        help_text="Appointment this charge belongs to",
    )
    homeowner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="appointment_charges",
        help_text="Homeowner who paid for the appointment",
    )

    appointment_date = models.DateField(
        help_text="Local calendar date of the appointment",
    )
    timezone = models.CharField(
        max_length=64,
        default="America/New_York",
        help_text="IANA timezone the appointment date is expressed in",
    )

    base_price_cents = models.PositiveBigIntegerField(
        help_text="Price before add-ons, in cents",
    )
    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    payment_intent_id = models.CharField(
        max_length=255,
        blank=True,
        db_index=True,
        help_text="Captured Stripe PaymentIntent ID (pi_xxx)",
    )
    gateway_customer_id = models.CharField(
        max_length=255,
        blank=True,
        help_text="Stripe Customer ID (cus_xxx) for off-session charges",
    )
    gateway_payment_method_id = models.CharField(
        max_length=255,
        blank=True,
        help_text="Saved Stripe PaymentMethod ID (pm_xxx)",
    )
    payment_method_label = models.CharField(
        max_length=100,
        blank=True,
        help_text="Display label for the payment method",
    )

    status = FSMField(
        default=AppointmentChargeStatus.BOOKED,
        choices=AppointmentChargeStatus.choices,
        db_index=True,
        help_text="Booking status as seen by the settlement engine",
    )
    cancelled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the appointment was cancelled",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Appointment charge"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(base_price_cents__gte=0),
                name="appointment_charge_price_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"AppointmentCharge({self.appointment_id}, {self.status})"

    @transition(
        field=status,
        source=AppointmentChargeStatus.BOOKED,
        target=AppointmentChargeStatus.CANCELLED,
    )
    def cancel(self, at=None):
        self.cancelled_at = at or timezone.now()

    @property
    def is_cancelled(self) -> bool:
        return self.status == AppointmentChargeStatus.CANCELLED

    @property
    def total_cents(self) -> int:
        return self.base_price_cents + sum(
            item.amount_cents for item in self.line_items.all()
        )

    def to_terms(self) -> AppointmentTerms:
        """Build the policy engine's view of this charge."""
        return AppointmentTerms(
            appointment_id=self.appointment_id,
            appointment_date=self.appointment_date,
            timezone=self.timezone,
            base_price_cents=self.base_price_cents,
            line_items=tuple(
                LineItem(
                    kind=LineItemKind(item.kind),
                    amount_cents=item.amount_cents,
                    label=item.label,
                )
                for item in self.line_items.all()
            ),
            cleaners=tuple(
                CleanerShare(
                    cleaner_id=assignment.cleaner_id,
                    share_cents=assignment.share_cents,
                )
                for assignment in self.cleaner_assignments.all()
            ),
        )


class ChargeLineItem(UUIDPrimaryKeyMixin, BaseModel):
    """An itemized add-on on an appointment charge."""

    charge = models.ForeignKey(
        AppointmentCharge,
        on_delete=models.PROTECT,
        related_name="line_items",
        help_text="Charge this add-on belongs to",
    )
    kind = models.CharField(
        max_length=20,
        choices=LineItemKind.choices,
        help_text="Add-on kind",
    )
    amount_cents = models.PositiveBigIntegerField(
        help_text="Add-on amount in cents",
    )
    label = models.CharField(
        max_length=100,
        blank=True,
        help_text="Display label",
    )

    class Meta:
        ordering = ["created_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["charge", "kind"],
                name="charge_line_item_unique_kind",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.get_kind_display()}: {self.amount_cents} cents"


class CleanerAssignment(UUIDPrimaryKeyMixin, BaseModel):
    """
    A cleaner assigned to an appointment.

    share_cents, when recorded, is this cleaner's share of a cancellation
    payout. Leave it empty on every assignment to split evenly.
    """

    charge = models.ForeignKey(
        AppointmentCharge,
        on_delete=models.PROTECT,
        related_name="cleaner_assignments",
        help_text="Charge this assignment belongs to",
    )
    cleaner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="cleaner_assignments",
        help_text="Assigned cleaner",
    )
    connected_account_id = models.CharField(
        max_length=255,
        blank=True,
        help_text="Cleaner's Stripe Connect account ID (acct_xxx)",
    )
    share_cents = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Recorded share of a cancellation payout",
    )

    class Meta:
        ordering = ["created_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["charge", "cleaner"],
                name="cleaner_assignment_unique_cleaner",
            ),
        ]

    def __str__(self) -> str:
        return f"CleanerAssignment({self.charge.appointment_id}, {self.cleaner_id})"
