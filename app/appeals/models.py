"""
Appeal model and its status enums.

An appeal contests the consequences of one cancellation. Its status moves
only through the django-fsm transitions below; the service layer decides
who may fire them.

State Flow:
    SUBMITTED → UNDER_REVIEW ⇄ AWAITING_DOCUMENTS
    SUBMITTED/UNDER_REVIEW/AWAITING_DOCUMENTS → ESCALATED
    UNDER_REVIEW/AWAITING_DOCUMENTS/ESCALATED → APPROVED | PARTIALLY_APPROVED
    any active status → DENIED
    ESCALATED → UNDER_REVIEW (supervisor sends it back)
    APPROVED/PARTIALLY_APPROVED/DENIED/ESCALATED → CLOSED
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from .types import AppealResolution, ContestingItems, SupportingDocument


class AppealStatus(models.TextChoices):
    """
    Workflow status of an appeal.

    Open statuses: SUBMITTED, UNDER_REVIEW, AWAITING_DOCUMENTS, ESCALATED
    Decided statuses: APPROVED, PARTIALLY_APPROVED, DENIED
    Final status: CLOSED
    """

    SUBMITTED = "submitted", "Submitted"
    UNDER_REVIEW = "under_review", "Under Review"
    AWAITING_DOCUMENTS = "awaiting_documents", "Awaiting Documents"
    ESCALATED = "escalated", "Escalated"
    APPROVED = "approved", "Approved"
    PARTIALLY_APPROVED = "partially_approved", "Partially Approved"
    DENIED = "denied", "Denied"
    CLOSED = "closed", "Closed"


OPEN_STATUSES = (
    AppealStatus.SUBMITTED,
    AppealStatus.UNDER_REVIEW,
    AppealStatus.AWAITING_DOCUMENTS,
    AppealStatus.ESCALATED,
)

# Statuses the SLA clock runs against; escalated appeals already surfaced
SLA_TRACKED_STATUSES = (
    AppealStatus.SUBMITTED,
    AppealStatus.UNDER_REVIEW,
    AppealStatus.AWAITING_DOCUMENTS,
)


class AppealCategory(models.TextChoices):
    MEDICAL_EMERGENCY = "medical_emergency", "Medical Emergency"
    FAMILY_EMERGENCY = "family_emergency", "Family Emergency"
    NATURAL_DISASTER = "natural_disaster", "Natural Disaster"
    PROPERTY_ISSUE = "property_issue", "Property Issue"
    TRANSPORTATION = "transportation", "Transportation"
    SCHEDULING_ERROR = "scheduling_error", "Scheduling Error"
    OTHER = "other", "Other"


class AppealSeverity(models.TextChoices):
    LOW = "low", "Low"
    MEDIUM = "medium", "Medium"
    HIGH = "high", "High"
    CRITICAL = "critical", "Critical"


class AppealPriority(models.TextChoices):
    URGENT = "urgent", "Urgent"
    HIGH = "high", "High"
    NORMAL = "normal", "Normal"


class AppealerType(models.TextChoices):
    HOMEOWNER = "homeowner", "Homeowner"
    CLEANER = "cleaner", "Cleaner"


class ReliefSettlementState(models.TextChoices):
    """
    Whether the money an appeal grants has moved.

    NOT_REQUIRED: Denied, or the resolution moves no money
    PENDING: Relief handed to settlement; some ledger postings outstanding
    POSTED: Every relief operation reached the gateway and the ledger
    FAILED: A relief refund failed at the gateway; retry from the API
    """

    NOT_REQUIRED = "not_required", "Not Required"
    PENDING = "pending", "Pending"
    POSTED = "posted", "Posted"
    FAILED = "failed", "Failed"


class Appeal(VersionedMixin, UUIDPrimaryKeyMixin, BaseModel):
    """
    An appeal against the consequences of a cancellation.

    Uses django-fsm for the workflow and a version column for optimistic
    locking. JSON columns hold serialized SupportingDocument,
    ContestingItems and AppealResolution dataclasses; use the typed_*
    properties to read them.
    """

    appointment_id = models.UUIDField(
        db_index=True,
        help_text="Cancelled appointment the appeal concerns",
    )
    appealer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="appeals",
        help_text="User who submitted the appeal",
    )
    appealer_type = models.CharField(
        max_length=20,
        choices=AppealerType.choices,
    )

    category = models.CharField(max_length=30, choices=AppealCategory.choices)
    severity = models.CharField(
        max_length=10,
        choices=AppealSeverity.choices,
        default=AppealSeverity.MEDIUM,
    )
    priority = models.CharField(
        max_length=10,
        choices=AppealPriority.choices,
        default=AppealPriority.NORMAL,
        db_index=True,
    )

    description = models.TextField()
    supporting_documents = models.JSONField(
        default=list,
        blank=True,
        help_text="Serialized SupportingDocument list",
    )
    contesting_items = models.JSONField(
        default=dict,
        blank=True,
        help_text="Serialized ContestingItems",
    )
    original_penalty_amount_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Collected cancellation fee not yet reversed when the appeal was submitted",
    )
    original_refund_withheld_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Withheld booking amount not yet returned when the appeal was submitted",
    )
    requested_relief = models.TextField(blank=True)

    status = FSMField(
        default=AppealStatus.SUBMITTED,
        choices=AppealStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current workflow status (managed by FSM)",
    )

    sla_deadline = models.DateTimeField(db_index=True)
    sla_breached_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the SLA breach was first reported",
    )
    assigned_to = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="assigned_appeals",
    )
    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="reviewed_appeals",
    )

    submitted_at = models.DateTimeField(default=timezone.now)
    assigned_at = models.DateTimeField(null=True, blank=True)
    reviewed_at = models.DateTimeField(null=True, blank=True)
    escalated_at = models.DateTimeField(null=True, blank=True)
    closed_at = models.DateTimeField(null=True, blank=True)
    last_activity_at = models.DateTimeField(default=timezone.now)
    escalation_reason = models.TextField(blank=True)

    resolution = models.JSONField(
        null=True,
        blank=True,
        help_text="Serialized AppealResolution",
    )
    resolution_notes = models.TextField(blank=True)
    relief_settlement_state = models.CharField(
        max_length=20,
        choices=ReliefSettlementState.choices,
        default=ReliefSettlementState.NOT_REQUIRED,
        db_index=True,
    )

    class Meta:
        ordering = ["-submitted_at"]
        verbose_name = "Appeal"
        indexes = [
            models.Index(fields=["status", "sla_deadline"], name="appeal_status_sla_idx"),
            models.Index(fields=["appealer", "submitted_at"], name="appeal_appealer_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["appointment_id"],
                condition=models.Q(status__in=[s.value for s in OPEN_STATUSES]),
                name="appeal_one_open_per_appointment",
            ),
        ]

    def __str__(self) -> str:
        return f"Appeal({self.id}, {self.status})"

    # =========================================================================
    # Typed JSON accessors
    # =========================================================================

    @property
    def typed_supporting_documents(self) -> list[SupportingDocument]:
        return [SupportingDocument.from_dict(doc) for doc in self.supporting_documents or []]

    @property
    def typed_contesting_items(self) -> ContestingItems:
        return ContestingItems.from_dict(self.contesting_items)

    @property
    def typed_resolution(self) -> AppealResolution | None:
        return AppealResolution.from_dict(self.resolution)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    # =========================================================================
    # Transitions
    # =========================================================================

    def _touch(self) -> None:
        self.last_activity_at = timezone.now()

    @transition(
        field=status,
        source=[AppealStatus.SUBMITTED, AppealStatus.ESCALATED],
        target=AppealStatus.UNDER_REVIEW,
    )
    def start_review(self):
        self._touch()

    @transition(
        field=status,
        source=[AppealStatus.SUBMITTED, AppealStatus.UNDER_REVIEW],
        target=AppealStatus.AWAITING_DOCUMENTS,
    )
    def request_documents(self):
        self._touch()

    @transition(
        field=status,
        source=AppealStatus.AWAITING_DOCUMENTS,
        target=AppealStatus.UNDER_REVIEW,
    )
    def documents_received(self, documents: list[SupportingDocument] | None = None):
        if documents:
            self.supporting_documents = [
                *(self.supporting_documents or []),
                *(doc.to_dict() for doc in documents),
            ]
        self._touch()

    @transition(
        field=status,
        source=list(SLA_TRACKED_STATUSES),
        target=AppealStatus.ESCALATED,
    )
    def escalate(self, reason: str = ""):
        self.escalated_at = timezone.now()
        self.escalation_reason = reason
        self._touch()

    @transition(
        field=status,
        source=[
            AppealStatus.UNDER_REVIEW,
            AppealStatus.AWAITING_DOCUMENTS,
            AppealStatus.ESCALATED,
        ],
        target=AppealStatus.APPROVED,
    )
    def approve(self, resolution: AppealResolution, notes: str = "", reviewer=None):
        self._record_decision(resolution, notes, reviewer)

    @transition(
        field=status,
        source=[
            AppealStatus.UNDER_REVIEW,
            AppealStatus.AWAITING_DOCUMENTS,
            AppealStatus.ESCALATED,
        ],
        target=AppealStatus.PARTIALLY_APPROVED,
    )
    def partially_approve(self, resolution: AppealResolution, notes: str = "", reviewer=None):
        self._record_decision(resolution, notes, reviewer)

    @transition(
        field=status,
        source=list(OPEN_STATUSES),
        target=AppealStatus.DENIED,
    )
    def deny(self, notes: str = "", reviewer=None):
        self._record_decision(None, notes, reviewer)

    @transition(
        field=status,
        source=[
            AppealStatus.APPROVED,
            AppealStatus.PARTIALLY_APPROVED,
            AppealStatus.DENIED,
            AppealStatus.ESCALATED,
        ],
        target=AppealStatus.CLOSED,
    )
    def close(self):
        self.closed_at = timezone.now()
        self._touch()

    def _record_decision(self, resolution: AppealResolution | None, notes: str, reviewer) -> None:
        now = timezone.now()
        self.resolution = resolution.to_dict() if resolution else None
        self.resolution_notes = notes
        self.reviewed_by = reviewer
        self.reviewed_at = now
        self.relief_settlement_state = (
            ReliefSettlementState.PENDING
            if resolution is not None and resolution.moves_money
            else ReliefSettlementState.NOT_REQUIRED
        )
        self.last_activity_at = now
