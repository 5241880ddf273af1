"""
Appeal workflow service.

Every status change runs under a per-appeal Redis lock, inside a
transaction holding the row lock, with an optional version check, and
writes an audit event. Relief money is handed to SettlementService only
after the decision has committed, never inside a transaction.

Usage:
    from appeals.services import AppealService

    result = AppealService.submit_appeal(
        appointment_id=appointment_id,
        appealer=homeowner,
        category=AppealCategory.MEDICAL_EMERGENCY,
        description="Hospitalized the night before",
        contesting_items=ContestingItems(fee=True),
    )

    AppealService.assign_appeal(result.appeal_id, assignee=reviewer, actor=reviewer)
    AppealService.resolve_appeal(
        result.appeal_id,
        decision=AppealDecision.APPROVE,
        resolution=AppealResolution(fee_refunded=True),
        notes="Hospital discharge note verified",
        actor=reviewer,
    )
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable

from django.conf import settings
from django.db import IntegrityError, models, transaction
from django.db.models import Case, Count, IntegerField, Value, When
from django.utils import timezone

from django_fsm import can_proceed

from audit.models import AuditEventType, AuditSeverity
from audit.services import AuditLog
from audit.types import Actor, StateSnapshot
from core.exceptions import NotFoundError, ValidationError
from core.services import BaseService
from settlements.exceptions import GatewayCallError, LockAcquisitionError
from settlements.locks import DistributedLock, check_version
from settlements.models import Settlement
from settlements.services import SettlementService, appeal_window_open

from .exceptions import (
    AppealAlreadyOpen,
    AppealNotFound,
    AppealPermissionDenied,
    AppealWindowExpired,
    InvalidAppealTransition,
)
from .models import (
    OPEN_STATUSES,
    SLA_TRACKED_STATUSES,
    Appeal,
    AppealCategory,
    AppealerType,
    AppealPriority,
    AppealSeverity,
    AppealStatus,
    ReliefSettlementState,
)
from .types import AppealResolution, ContestingItems, SupportingDocument

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from accounts.models import User


APPEAL_LOCK_TTL = 30
APPEAL_LOCK_TIMEOUT = 10


class AppealDecision(models.TextChoices):
    APPROVE = "approve", "Approve"
    PARTIALLY_APPROVE = "partially_approve", "Partially Approve"
    DENY = "deny", "Deny"
    ESCALATE = "escalate", "Escalate"


def priority_for(severity: str) -> AppealPriority:
    """Critical appeals are urgent, high-severity ones high, the rest normal."""
    if severity == AppealSeverity.CRITICAL:
        return AppealPriority.URGENT
    if severity == AppealSeverity.HIGH:
        return AppealPriority.HIGH
    return AppealPriority.NORMAL


def sla_hours(priority: str) -> int:
    return {
        AppealPriority.URGENT: settings.APPEAL_SLA_HOURS_URGENT,
        AppealPriority.HIGH: settings.APPEAL_SLA_HOURS_HIGH,
        AppealPriority.NORMAL: settings.APPEAL_SLA_HOURS_NORMAL,
    }[AppealPriority(priority)]


# =============================================================================
# Results and payloads
# =============================================================================


@dataclass
class AppealSubmissionResult:
    appeal_id: uuid.UUID
    status: str
    priority: str
    sla_deadline: datetime


@dataclass
class AppealResolutionResult:
    """
    Outcome of resolve_appeal / retry_relief.

    Attributes:
        appeal: The appeal after the decision committed
        relief_settlement_state: Where the relief money stands
        relief_entry_ids: Ledger entries posted for the relief
        relief_error_code: Gateway error code when relief failed
    """

    appeal: Appeal
    relief_settlement_state: str
    relief_entry_ids: list[uuid.UUID] = field(default_factory=list)
    relief_error_code: str | None = None


@dataclass
class AppealQueue:
    count: int
    appeals: list[Appeal]


@dataclass
class AppealStats:
    total: int
    pending: int
    past_sla: int
    by_status: dict[str, int]
    by_priority: dict[str, int]


@dataclass(frozen=True)
class AppealSubmittedPayload:
    appealer_type: str
    category: str
    severity: str
    priority: str
    sla_deadline: datetime
    contesting_items: dict[str, bool]


@dataclass(frozen=True)
class AppealAssignedPayload:
    assignee_id: uuid.UUID
    previous_assignee_id: uuid.UUID | None


@dataclass(frozen=True)
class AppealTransitionPayload:
    action: str
    notes: str = ""


@dataclass(frozen=True)
class AppealResolvedPayload:
    decision: str
    resolution: dict[str, Any] | None
    notes: str


@dataclass(frozen=True)
class SlaBreachPayload:
    sla_deadline: datetime
    priority: str
    status: str
    overdue_minutes: int


# =============================================================================
# Service
# =============================================================================


class AppealService(BaseService):
    """
    Appeal submission, review workflow and queue queries.

    Actors are User instances; None means the system (only escalation may
    run as the system).
    """

    # =========================================================================
    # Submission
    # =========================================================================

    @classmethod
    def submit_appeal(
        cls,
        appointment_id: uuid.UUID,
        appealer: User,
        category: str,
        description: str,
        severity: str = AppealSeverity.MEDIUM,
        contesting_items: ContestingItems | None = None,
        requested_relief: str = "",
        supporting_documents: Iterable[SupportingDocument] = (),
        now: datetime | None = None,
        request_id: str | None = None,
    ) -> AppealSubmissionResult:
        """
        Submit an appeal against a cancelled appointment.

        Raises:
            NotFoundError: No settlement exists for the appointment
            ValidationError: Appointment not cancelled, or unknown category/severity
            AppealPermissionDenied: Appealer is not a party to the appointment
            AppealWindowExpired: The settlement's appeal window has passed
            AppealAlreadyOpen: Another appeal for the appointment is still open
        """
        now = now or timezone.now()
        if category not in AppealCategory.values:
            raise ValidationError(
                f"Unknown appeal category: {category}",
                error_code="INVALID_CATEGORY",
                details={"category": str(category), "allowed": AppealCategory.values},
            )
        if severity not in AppealSeverity.values:
            raise ValidationError(
                f"Unknown appeal severity: {severity}",
                error_code="INVALID_SEVERITY",
                details={"severity": str(severity)},
            )

        settlement = (
            Settlement.objects.select_related("charge")
            .filter(appointment_id=appointment_id)
            .first()
        )
        if settlement is None:
            raise NotFoundError(
                f"No cancellation recorded for appointment {appointment_id}",
                error_code="APPOINTMENT_NOT_FOUND",
                details={"appointment_id": str(appointment_id)},
            )
        charge = settlement.charge
        if not charge.is_cancelled:
            raise ValidationError(
                "Appointment was not cancelled",
                error_code="APPOINTMENT_NOT_CANCELLED",
                details={"appointment_id": str(appointment_id)},
            )

        if charge.homeowner_id == appealer.id:
            appealer_type = AppealerType.HOMEOWNER
        elif charge.cleaner_assignments.filter(cleaner_id=appealer.id).exists():
            appealer_type = AppealerType.CLEANER
        else:
            raise AppealPermissionDenied(
                "Only a party to the appointment may appeal its cancellation",
                details={"appointment_id": str(appointment_id)},
            )

        if not appeal_window_open(settlement, now):
            raise AppealWindowExpired(
                "Appeal window has expired",
                details={
                    "appointment_id": str(appointment_id),
                    "window_expires_at": (
                        settlement.appeal_window_expires_at.isoformat()
                        if settlement.appeal_window_expires_at
                        else None
                    ),
                },
            )

        contesting_items = contesting_items or ContestingItems()
        allowance = SettlementService.remaining_appeal_relief(appointment_id)
        priority = priority_for(severity)
        sla_deadline = now + timedelta(hours=sla_hours(priority))

        try:
            with transaction.atomic():
                if Appeal.objects.filter(
                    appointment_id=appointment_id, status__in=OPEN_STATUSES
                ).exists():
                    raise AppealAlreadyOpen(
                        "An appeal is already pending for this appointment",
                        details={"appointment_id": str(appointment_id)},
                    )
                appeal = Appeal.objects.create(
                    appointment_id=appointment_id,
                    appealer=appealer,
                    appealer_type=appealer_type,
                    category=category,
                    severity=severity,
                    priority=priority,
                    description=description,
                    supporting_documents=[doc.to_dict() for doc in supporting_documents],
                    contesting_items=contesting_items.to_dict(),
                    original_penalty_amount_cents=allowance.fee_cents,
                    original_refund_withheld_cents=allowance.withheld_cents,
                    requested_relief=requested_relief,
                    sla_deadline=sla_deadline,
                    submitted_at=now,
                    last_activity_at=now,
                )
        except IntegrityError as exc:
            # Lost a race with a concurrent submission
            raise AppealAlreadyOpen(
                "An appeal is already pending for this appointment",
                details={"appointment_id": str(appointment_id)},
            ) from exc

        AuditLog.record(
            AuditEventType.APPEAL_SUBMITTED,
            actor=Actor.from_user(appealer),
            appointment_id=appointment_id,
            appeal_id=appeal.id,
            request_id=request_id,
            event_data=AppealSubmittedPayload(
                appealer_type=appealer_type,
                category=category,
                severity=severity,
                priority=priority,
                sla_deadline=sla_deadline,
                contesting_items=contesting_items.to_dict(),
            ),
            new_state=cls._snapshot(appeal),
            occurred_at=now,
        )
        cls.get_logger().info(
            "Appeal submitted",
            extra={
                "appeal_id": str(appeal.id),
                "appointment_id": str(appointment_id),
                "category": category,
                "priority": priority,
            },
        )
        return AppealSubmissionResult(
            appeal_id=appeal.id,
            status=appeal.status,
            priority=priority,
            sla_deadline=sla_deadline,
        )

    # =========================================================================
    # Workflow
    # =========================================================================

    @classmethod
    def assign_appeal(
        cls,
        appeal_id: uuid.UUID,
        assignee: User,
        actor: User,
        request_id: str | None = None,
    ) -> Appeal:
        """
        Assign a reviewer. A submitted appeal moves to under_review.

        Raises:
            ValidationError: Assignee is not a staff reviewer
            InvalidAppealTransition: Appeal is closed or already decided
        """
        if not assignee.is_reviewer:
            raise ValidationError(
                "Appeals can only be assigned to staff reviewers",
                error_code="INVALID_ASSIGNEE",
                details={"assignee_id": str(assignee.id)},
            )

        with cls._locked(appeal_id) as appeal:
            cls._check_actor(appeal, actor, "assign")
            if not appeal.is_open:
                raise InvalidAppealTransition(
                    f"Cannot assign an appeal that is {appeal.status}",
                    details={"appeal_id": str(appeal.id), "status": appeal.status},
                )
            if appeal.appealer_id == assignee.id:
                raise ValidationError(
                    "An appealer cannot review their own appeal",
                    error_code="INVALID_ASSIGNEE",
                    details={"assignee_id": str(assignee.id)},
                )

            previous = cls._snapshot(appeal)
            previous_assignee_id = appeal.assigned_to_id
            appeal.assigned_to = assignee
            appeal.assigned_at = timezone.now()
            if appeal.status == AppealStatus.SUBMITTED:
                appeal.start_review()
            else:
                appeal.last_activity_at = appeal.assigned_at
            appeal.save()

            AuditLog.record(
                AuditEventType.APPEAL_ASSIGNED,
                actor=cls._audit_actor(actor),
                appointment_id=appeal.appointment_id,
                appeal_id=appeal.id,
                request_id=request_id,
                event_data=AppealAssignedPayload(
                    assignee_id=assignee.id,
                    previous_assignee_id=previous_assignee_id,
                ),
                previous_state=previous,
                new_state=cls._snapshot(appeal),
            )

        cls.get_logger().info(
            "Appeal assigned",
            extra={"appeal_id": str(appeal_id), "assignee_id": str(assignee.id)},
        )
        return appeal

    @classmethod
    def start_review(
        cls,
        appeal_id: uuid.UUID,
        actor: User,
        expected_version: int | None = None,
        request_id: str | None = None,
    ) -> Appeal:
        return cls._transition(
            appeal_id,
            actor,
            "start_review",
            expected_version=expected_version,
            request_id=request_id,
        )

    @classmethod
    def request_documents(
        cls,
        appeal_id: uuid.UUID,
        actor: User,
        notes: str = "",
        expected_version: int | None = None,
        request_id: str | None = None,
    ) -> Appeal:
        return cls._transition(
            appeal_id,
            actor,
            "request_documents",
            notes=notes,
            expected_version=expected_version,
            request_id=request_id,
        )

    @classmethod
    def documents_received(
        cls,
        appeal_id: uuid.UUID,
        actor: User,
        documents: list[SupportingDocument] | None = None,
        expected_version: int | None = None,
        request_id: str | None = None,
    ) -> Appeal:
        return cls._transition(
            appeal_id,
            actor,
            "documents_received",
            kwargs={"documents": documents},
            expected_version=expected_version,
            request_id=request_id,
        )

    @classmethod
    def escalate(
        cls,
        appeal_id: uuid.UUID,
        actor: User | None,
        reason: str,
        expected_version: int | None = None,
        request_id: str | None = None,
    ) -> Appeal:
        """Escalate for supervisor input. The system may escalate SLA breaches."""
        return cls._transition(
            appeal_id,
            actor,
            "escalate",
            kwargs={"reason": reason},
            notes=reason,
            expected_version=expected_version,
            request_id=request_id,
            allow_system=True,
        )

    @classmethod
    def resolve_appeal(
        cls,
        appeal_id: uuid.UUID,
        decision: AppealDecision | str,
        actor: User,
        resolution: AppealResolution | None = None,
        notes: str = "",
        expected_version: int | None = None,
        request_id: str | None = None,
    ) -> AppealResolutionResult:
        """
        Decide an appeal.

        Approvals record the resolution and then hand the relief to
        SettlementService once the decision has committed. A gateway
        failure while moving relief leaves the decision in place with
        relief_settlement_state=failed; retry_relief() picks it up.

        Raises:
            ValidationError: Unknown decision, or a refund larger than what
                was withheld at cancellation
            InvalidAppealTransition: Not allowed from the current status, or
                an approval without a resolution
            AppealPermissionDenied: Actor is not a reviewer (or supervisor
                for escalated appeals)
        """
        try:
            decision = AppealDecision(decision)
        except ValueError as exc:
            raise ValidationError(
                f"Unknown decision: {decision}",
                error_code="INVALID_DECISION",
                details={"decision": str(decision)},
            ) from exc

        if decision == AppealDecision.ESCALATE:
            appeal = cls.escalate(
                appeal_id,
                actor,
                reason=notes,
                expected_version=expected_version,
                request_id=request_id,
            )
            return AppealResolutionResult(
                appeal=appeal,
                relief_settlement_state=appeal.relief_settlement_state,
            )

        if decision == AppealDecision.DENY:
            action, kwargs = "deny", {"notes": notes, "reviewer": actor}
        else:
            if resolution is None or resolution.is_empty:
                raise InvalidAppealTransition(
                    "Approving an appeal requires a resolution",
                    error_code="RESOLUTION_REQUIRED",
                    details={"appeal_id": str(appeal_id), "decision": decision.value},
                )
            action = (
                "approve" if decision == AppealDecision.APPROVE else "partially_approve"
            )
            kwargs = {"resolution": resolution, "notes": notes, "reviewer": actor}

        appeal = cls._transition(
            appeal_id,
            actor,
            action,
            kwargs=kwargs,
            expected_version=expected_version,
            request_id=request_id,
            event_type=AuditEventType.APPEAL_RESOLVED,
            event_data=AppealResolvedPayload(
                decision=decision.value,
                resolution=resolution.to_dict() if resolution else None,
                notes=notes,
            ),
            check=lambda locked: cls._check_refund_limit(locked, resolution),
        )

        if appeal.relief_settlement_state != ReliefSettlementState.PENDING:
            return AppealResolutionResult(
                appeal=appeal,
                relief_settlement_state=appeal.relief_settlement_state,
            )
        return cls._post_relief(appeal, actor, request_id)

    @classmethod
    def retry_relief(
        cls,
        appeal_id: uuid.UUID,
        actor: User,
        request_id: str | None = None,
    ) -> AppealResolutionResult:
        """
        Re-run relief for an approved appeal whose money has not fully moved.

        Idempotency keys are per appeal and entry type, so operations that
        already succeeded are not sent to the gateway again.
        """
        appeal = cls.get_appeal(appeal_id)
        if not actor.is_reviewer:
            raise AppealPermissionDenied("Only staff reviewers may retry appeal relief")
        if appeal.relief_settlement_state not in (
            ReliefSettlementState.PENDING,
            ReliefSettlementState.FAILED,
        ):
            raise InvalidAppealTransition(
                f"Relief is {appeal.relief_settlement_state}; nothing to retry",
                details={
                    "appeal_id": str(appeal.id),
                    "relief_settlement_state": appeal.relief_settlement_state,
                },
            )
        return cls._post_relief(appeal, actor, request_id)

    @classmethod
    def mark_relief_posted(cls, appeal_id: uuid.UUID) -> bool:
        """
        Record that pending relief reached the ledger.

        Called by the unposted-operation sweep once every relief operation
        of the appeal is posted. Returns False when the appeal was not
        waiting on the ledger.
        """
        with transaction.atomic():
            appeal = check_version(Appeal, appeal_id)
            if appeal.relief_settlement_state != ReliefSettlementState.PENDING:
                return False
            appeal.relief_settlement_state = ReliefSettlementState.POSTED
            appeal.save(update_fields=["relief_settlement_state", "updated_at"])

        cls.get_logger().info(
            "Pending appeal relief posted",
            extra={"appeal_id": str(appeal_id), "appointment_id": str(appeal.appointment_id)},
        )
        return True

    @classmethod
    def close_appeal(
        cls,
        appeal_id: uuid.UUID,
        actor: User,
        expected_version: int | None = None,
        request_id: str | None = None,
    ) -> Appeal:
        return cls._transition(
            appeal_id,
            actor,
            "close",
            expected_version=expected_version,
            request_id=request_id,
            event_type=AuditEventType.APPEAL_CLOSED,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    @classmethod
    def get_appeal(cls, appeal_id: uuid.UUID) -> Appeal:
        appeal = Appeal.objects.filter(pk=appeal_id).first()
        if appeal is None:
            raise AppealNotFound(
                f"Appeal {appeal_id} not found",
                details={"appeal_id": str(appeal_id)},
            )
        return appeal

    @classmethod
    def get_queue(
        cls,
        status: str | None = None,
        priority: str | None = None,
        assigned_to: uuid.UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> AppealQueue:
        """
        Reviewer queue: open appeals by default, most urgent first, then
        by SLA deadline and submission time.
        """
        appeals = Appeal.objects.select_related("appealer", "assigned_to")
        if status:
            appeals = appeals.filter(status=status)
        else:
            appeals = appeals.filter(status__in=OPEN_STATUSES)
        if priority:
            appeals = appeals.filter(priority=priority)
        if assigned_to:
            appeals = appeals.filter(assigned_to_id=assigned_to)

        appeals = appeals.annotate(
            priority_rank=Case(
                When(priority=AppealPriority.URGENT, then=Value(0)),
                When(priority=AppealPriority.HIGH, then=Value(1)),
                default=Value(2),
                output_field=IntegerField(),
            )
        ).order_by("priority_rank", "sla_deadline", "submitted_at")

        return AppealQueue(
            count=appeals.count(),
            appeals=list(appeals[offset : offset + limit]),
        )

    @classmethod
    def get_user_appeals(cls, user: User) -> list[Appeal]:
        return list(Appeal.objects.filter(appealer=user).order_by("-submitted_at"))

    @classmethod
    def get_sla_breaches(cls, now: datetime | None = None) -> list[Appeal]:
        """Appeals still awaiting a decision after their SLA deadline."""
        now = now or timezone.now()
        return list(
            Appeal.objects.filter(
                status__in=SLA_TRACKED_STATUSES,
                sla_deadline__lt=now,
            ).order_by("sla_deadline")
        )

    @classmethod
    def get_stats(cls, now: datetime | None = None) -> AppealStats:
        now = now or timezone.now()
        open_appeals = Appeal.objects.filter(status__in=OPEN_STATUSES)
        by_status = Appeal.objects.order_by().values("status").annotate(count=Count("id"))
        by_priority = open_appeals.order_by().values("priority").annotate(count=Count("id"))
        return AppealStats(
            total=Appeal.objects.count(),
            pending=open_appeals.count(),
            past_sla=Appeal.objects.filter(
                status__in=SLA_TRACKED_STATUSES, sla_deadline__lt=now
            ).count(),
            by_status={row["status"]: row["count"] for row in by_status},
            by_priority={row["priority"]: row["count"] for row in by_priority},
        )

    @classmethod
    def report_sla_breaches(cls, now: datetime | None = None) -> list[uuid.UUID]:
        """
        Write a warning audit event for each newly breached appeal and,
        when APPEAL_AUTO_ESCALATE_ON_SLA_BREACH is set, escalate it.

        Each breach is reported once. Returns the ids reported this run.
        """
        now = now or timezone.now()
        reported: list[uuid.UUID] = []
        for appeal in cls.get_sla_breaches(now):
            if appeal.sla_breached_at is not None:
                continue
            Appeal.objects.filter(pk=appeal.pk, sla_breached_at__isnull=True).update(
                sla_breached_at=now
            )
            AuditLog.record(
                AuditEventType.APPEAL_SLA_BREACHED,
                actor=Actor.system(),
                appointment_id=appeal.appointment_id,
                appeal_id=appeal.id,
                event_data=SlaBreachPayload(
                    sla_deadline=appeal.sla_deadline,
                    priority=appeal.priority,
                    status=appeal.status,
                    overdue_minutes=int((now - appeal.sla_deadline).total_seconds() // 60),
                ),
                severity=AuditSeverity.WARNING,
                occurred_at=now,
            )
            cls.get_logger().warning(
                "Appeal SLA breached",
                extra={
                    "appeal_id": str(appeal.id),
                    "priority": appeal.priority,
                    "sla_deadline": appeal.sla_deadline.isoformat(),
                },
            )
            reported.append(appeal.id)
            if not settings.APPEAL_AUTO_ESCALATE_ON_SLA_BREACH:
                continue
            try:
                cls.escalate(appeal.id, actor=None, reason="SLA deadline passed")
            except (InvalidAppealTransition, LockAcquisitionError) as exc:
                # Decided or picked up since the breach query ran
                cls.get_logger().warning(
                    "Could not auto-escalate breached appeal",
                    extra={"appeal_id": str(appeal.id), "error_code": exc.error_code},
                )
        return reported

    # =========================================================================
    # Internals
    # =========================================================================

    @classmethod
    def _transition(
        cls,
        appeal_id: uuid.UUID,
        actor: User | None,
        action: str,
        kwargs: dict[str, Any] | None = None,
        notes: str = "",
        expected_version: int | None = None,
        request_id: str | None = None,
        event_type: AuditEventType = AuditEventType.APPEAL_STATUS_CHANGED,
        event_data: Any = None,
        check: Callable[[Appeal], None] | None = None,
        allow_system: bool = False,
    ) -> Appeal:
        with cls._locked(appeal_id, expected_version) as appeal:
            cls._check_actor(appeal, actor, action, allow_system=allow_system)
            method = getattr(appeal, action)
            if not can_proceed(method):
                raise InvalidAppealTransition(
                    f"Cannot {action.replace('_', ' ')} an appeal that is {appeal.status}",
                    details={
                        "appeal_id": str(appeal.id),
                        "status": appeal.status,
                        "action": action,
                    },
                )
            if check is not None:
                check(appeal)

            previous = cls._snapshot(appeal)
            method(**(kwargs or {}))
            appeal.save()

            AuditLog.record(
                event_type,
                actor=cls._audit_actor(actor),
                appointment_id=appeal.appointment_id,
                appeal_id=appeal.id,
                request_id=request_id,
                event_data=event_data or AppealTransitionPayload(action=action, notes=notes),
                previous_state=previous,
                new_state=cls._snapshot(appeal),
            )

        cls.get_logger().info(
            "Appeal status changed",
            extra={
                "appeal_id": str(appeal_id),
                "action": action,
                "from_status": previous.state,
                "to_status": appeal.status,
            },
        )
        return appeal

    @staticmethod
    @contextmanager
    def _locked(appeal_id: uuid.UUID, expected_version: int | None = None) -> Iterator[Appeal]:
        """Redis lock, transaction and row lock for one appeal."""
        with DistributedLock(
            f"appeal:{appeal_id}",
            ttl=APPEAL_LOCK_TTL,
            timeout=APPEAL_LOCK_TIMEOUT,
        ):
            with transaction.atomic():
                try:
                    appeal = check_version(Appeal, appeal_id, expected_version)
                except NotFoundError as exc:
                    raise AppealNotFound(
                        f"Appeal {appeal_id} not found",
                        details={"appeal_id": str(appeal_id)},
                    ) from exc
                yield appeal

    @staticmethod
    def _check_actor(
        appeal: Appeal,
        actor: User | None,
        action: str,
        allow_system: bool = False,
    ) -> None:
        if actor is None:
            if allow_system:
                return
            raise AppealPermissionDenied(
                f"The system may not {action.replace('_', ' ')} an appeal",
                details={"appeal_id": str(appeal.id), "action": action},
            )
        if not actor.is_reviewer:
            raise AppealPermissionDenied(
                "Only staff reviewers may change an appeal's status",
                details={"appeal_id": str(appeal.id), "action": action},
            )
        if actor.id == appeal.appealer_id:
            raise AppealPermissionDenied(
                "Reviewers may not act on their own appeal",
                details={"appeal_id": str(appeal.id), "action": action},
            )
        if appeal.status == AppealStatus.ESCALATED and not actor.is_supervisor:
            raise AppealPermissionDenied(
                "Escalated appeals are handled by a supervisor",
                details={"appeal_id": str(appeal.id), "action": action},
            )

    @staticmethod
    def _check_refund_limit(appeal: Appeal, resolution: AppealResolution | None) -> None:
        """Refunds are capped by what earlier appeals have not already returned."""
        if resolution is None or not resolution.refund_amount_cents:
            return
        withheld = SettlementService.remaining_appeal_relief(
            appeal.appointment_id, exclude_appeal_id=appeal.id
        ).withheld_cents
        if resolution.refund_amount_cents > withheld:
            raise ValidationError(
                "Appeal refund exceeds the amount still withheld",
                error_code="APPEAL_REFUND_TOO_LARGE",
                details={
                    "refund_amount_cents": resolution.refund_amount_cents,
                    "withheld_cents": withheld,
                },
            )

    @classmethod
    def _post_relief(
        cls,
        appeal: Appeal,
        actor: User | None,
        request_id: str | None,
    ) -> AppealResolutionResult:
        """Move relief money. Called outside any transaction."""
        try:
            relief = SettlementService.settle_appeal_relief(
                appeal,
                actor=cls._audit_actor(actor),
                request_id=request_id,
            )
        except GatewayCallError as exc:
            cls.get_logger().error(
                "Appeal relief failed at the gateway",
                extra={
                    "appeal_id": str(appeal.id),
                    "appointment_id": str(appeal.appointment_id),
                    "error_code": exc.error_code,
                },
                exc_info=True,
            )
            appeal = cls._set_relief_state(appeal.id, ReliefSettlementState.FAILED)
            return AppealResolutionResult(
                appeal=appeal,
                relief_settlement_state=appeal.relief_settlement_state,
                relief_error_code=exc.error_code,
            )

        if not relief.operations:
            state = ReliefSettlementState.NOT_REQUIRED
        elif relief.fully_posted:
            state = ReliefSettlementState.POSTED
        else:
            state = ReliefSettlementState.PENDING
        appeal = cls._set_relief_state(appeal.id, state)
        return AppealResolutionResult(
            appeal=appeal,
            relief_settlement_state=state,
            relief_entry_ids=relief.ledger_entry_ids,
        )

    @staticmethod
    def _set_relief_state(appeal_id: uuid.UUID, state: str) -> Appeal:
        with transaction.atomic():
            appeal = check_version(Appeal, appeal_id)
            appeal.relief_settlement_state = state
            appeal.save(update_fields=["relief_settlement_state", "updated_at"])
        return appeal

    @staticmethod
    def _audit_actor(user: User | None) -> Actor:
        return Actor.from_user(user) if user is not None else Actor.system()

    @staticmethod
    def _snapshot(appeal: Appeal) -> StateSnapshot:
        return StateSnapshot(
            state=appeal.status,
            version=appeal.version,
            fields={
                "priority": appeal.priority,
                "assigned_to": str(appeal.assigned_to_id) if appeal.assigned_to_id else None,
                "relief_settlement_state": appeal.relief_settlement_state,
            },
        )
