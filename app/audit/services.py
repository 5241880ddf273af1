"""
Audit log writer and replay.

AuditLog is called by every mutating operation in the settlement, ledger
and appeal services. It only appends; nothing in the system branches on
what it has written.

Usage:
    from audit.models import AuditEventType
    from audit.services import AuditLog
    from audit.types import Actor, StateSnapshot

    AuditLog.record(
        AuditEventType.APPEAL_STATUS_CHANGED,
        actor=Actor.staff(reviewer.id),
        appeal_id=appeal.id,
        previous_state=StateSnapshot(state="submitted"),
        new_state=StateSnapshot(state="under_review", version=2),
    )

    events = AuditLog.replay(appointment_id=appointment_id)
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from core.exceptions import ValidationError
from core.services import BaseService

from .models import AuditEvent, AuditEventType, AuditSeverity
from .types import Actor, to_payload

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from typing import Any

    from .types import AuditPayload


class AuditLog(BaseService):
    """
    Append-only writer for AuditEvent rows.

    All methods are classmethods; the service keeps no state.
    """

    @classmethod
    def record(
        cls,
        event_type: AuditEventType | str,
        *,
        actor: Actor,
        appointment_id: uuid.UUID | None = None,
        appeal_id: uuid.UUID | None = None,
        request_id: str | None = None,
        ledger_entry_ids: Iterable[uuid.UUID] = (),
        event_data: AuditPayload | None = None,
        previous_state: AuditPayload | None = None,
        new_state: AuditPayload | None = None,
        severity: AuditSeverity | str = AuditSeverity.INFO,
        occurred_at: datetime | None = None,
    ) -> AuditEvent:
        """
        Write one audit event.

        Args:
            event_type: Member of AuditEventType
            actor: Who performed the action
            appointment_id: Appointment the event concerns
            appeal_id: Appeal the event concerns
            request_id: Correlation id for the enclosing request
            ledger_entry_ids: Ledger entries written by this step
            event_data: Payload dataclass
            previous_state: Snapshot dataclass before the change
            new_state: Snapshot dataclass after the change
            severity: info / warning / critical
            occurred_at: Event time (defaults to now)

        Returns:
            The persisted AuditEvent

        Raises:
            ValidationError: If event_type or severity is not a known value
        """
        if event_type not in AuditEventType.values:
            raise ValidationError(
                f"Unknown audit event type: {event_type}",
                error_code="UNKNOWN_AUDIT_EVENT",
                details={"event_type": str(event_type)},
            )
        if severity not in AuditSeverity.values:
            raise ValidationError(
                f"Unknown audit severity: {severity}",
                error_code="UNKNOWN_AUDIT_SEVERITY",
                details={"severity": str(severity)},
            )

        kwargs: dict[str, Any] = {}
        if occurred_at is not None:
            kwargs["occurred_at"] = occurred_at

        event = AuditEvent.objects.create(
            event_type=event_type,
            severity=severity,
            actor_id=actor.id,
            actor_type=actor.actor_type,
            appointment_id=appointment_id,
            appeal_id=appeal_id,
            request_id=request_id or "",
            ledger_entry_ids=[str(entry_id) for entry_id in ledger_entry_ids],
            event_data=to_payload(event_data) or {},
            previous_state=to_payload(previous_state),
            new_state=to_payload(new_state),
            **kwargs,
        )

        log_extra = {
            "audit_event_id": str(event.id),
            "event_type": str(event_type),
            "appointment_id": str(appointment_id) if appointment_id else None,
            "appeal_id": str(appeal_id) if appeal_id else None,
            "actor_type": str(actor.actor_type),
        }
        logger = cls.get_logger()
        if severity == AuditSeverity.CRITICAL:
            logger.critical(f"Critical audit event: {event_type}", extra=log_extra)
        elif severity == AuditSeverity.WARNING:
            logger.warning(f"Audit event: {event_type}", extra=log_extra)
        else:
            logger.debug(f"Audit event: {event_type}", extra=log_extra)

        return event

    @classmethod
    def replay(
        cls,
        *,
        appointment_id: uuid.UUID | None = None,
        appeal_id: uuid.UUID | None = None,
        event_types: Iterable[AuditEventType | str] | None = None,
    ) -> list[AuditEvent]:
        """
        Return events for an appointment and/or appeal in occurrence order.

        Ties on occurred_at are broken by id so the order is stable.

        Raises:
            ValidationError: If neither appointment_id nor appeal_id is given
        """
        if appointment_id is None and appeal_id is None:
            raise ValidationError(
                "replay requires appointment_id or appeal_id",
                error_code="REPLAY_TARGET_REQUIRED",
            )

        queryset = AuditEvent.objects.all()
        if appointment_id is not None:
            queryset = queryset.filter(appointment_id=appointment_id)
        if appeal_id is not None:
            queryset = queryset.filter(appeal_id=appeal_id)
        if event_types is not None:
            queryset = queryset.filter(event_type__in=list(event_types))
        return list(queryset.order_by("occurred_at", "id"))

    @classmethod
    def reconstruct_state(
        cls,
        *,
        appointment_id: uuid.UUID | None = None,
        appeal_id: uuid.UUID | None = None,
        event_types: Iterable[AuditEventType | str] | None = None,
    ) -> dict[str, Any] | None:
        """
        Fold new_state snapshots in occurrence order into the latest state.

        Later snapshots override earlier keys; nested "fields" dicts are
        merged rather than replaced.

        Returns:
            The reconstructed state dict, or None if no event carried a snapshot
        """
        state: dict[str, Any] | None = None
        for event in cls.replay(
            appointment_id=appointment_id,
            appeal_id=appeal_id,
            event_types=event_types,
        ):
            if not event.new_state:
                continue
            if state is None:
                state = {}
            for key, value in event.new_state.items():
                if key == "fields" and isinstance(value, dict):
                    state.setdefault("fields", {}).update(value)
                elif value is not None or key not in state:
                    state[key] = value
        return state
