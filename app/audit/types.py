"""
Typed payloads for audit events.

Audit payloads are dataclasses rather than free-form dicts so each call
site states exactly what it records. They are converted to JSON-safe
dicts by to_payload() just before persisting.

Types:
    Actor: Who performed an action (user id + actor type)
    AuditPayload: Protocol implemented by every payload dataclass
    StateSnapshot: Generic before/after snapshot of a stateful record
"""

from __future__ import annotations

import dataclasses
import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from uuid import UUID

from django.db import models

if TYPE_CHECKING:
    from accounts.models import User


class ActorType(models.TextChoices):
    """Kind of party that performed an audited action."""

    HOMEOWNER = "homeowner", "Homeowner"
    CLEANER = "cleaner", "Cleaner"
    STAFF = "staff", "Staff"
    SYSTEM = "system", "System"


@dataclass(frozen=True)
class Actor:
    """
    Who performed an action.

    Attributes:
        actor_type: Homeowner, cleaner, staff reviewer or the system itself
        id: User id, None for system actions (tasks, reconciliation)
    """

    actor_type: ActorType
    id: UUID | None = None

    @classmethod
    def system(cls) -> Actor:
        return cls(actor_type=ActorType.SYSTEM)

    @classmethod
    def homeowner(cls, user_id: UUID) -> Actor:
        return cls(actor_type=ActorType.HOMEOWNER, id=user_id)

    @classmethod
    def cleaner(cls, user_id: UUID) -> Actor:
        return cls(actor_type=ActorType.CLEANER, id=user_id)

    @classmethod
    def staff(cls, user_id: UUID) -> Actor:
        return cls(actor_type=ActorType.STAFF, id=user_id)

    @classmethod
    def from_user(cls, user: User) -> Actor:
        """Build an actor from an authenticated user, mapping roles to actor types."""
        from accounts.models import UserRole

        if user.is_reviewer:
            return cls.staff(user.id)
        if user.role == UserRole.CLEANER:
            return cls.cleaner(user.id)
        return cls.homeowner(user.id)

    @property
    def is_staff(self) -> bool:
        return self.actor_type == ActorType.STAFF

    @property
    def is_system(self) -> bool:
        return self.actor_type == ActorType.SYSTEM


@runtime_checkable
class AuditPayload(Protocol):
    """Marker protocol: every payload is a dataclass instance."""

    __dataclass_fields__: dict[str, Any]


@dataclass(frozen=True)
class StateSnapshot:
    """
    Generic snapshot of a stateful record.

    Used for previous_state/new_state when the record has no richer
    snapshot type of its own.
    """

    state: str
    version: int | None = None
    fields: dict[str, Any] = field(default_factory=dict)


def _json_safe(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_json_safe(v) for v in value]
    return value


def to_payload(payload: AuditPayload | None) -> dict[str, Any] | None:
    """
    Convert a payload dataclass to a JSON-safe dict.

    Raises:
        TypeError: If payload is not a dataclass instance
    """
    if payload is None:
        return None
    if not dataclasses.is_dataclass(payload) or isinstance(payload, type):
        raise TypeError(
            f"Audit payloads must be dataclass instances, got {type(payload).__name__}"
        )
    return _json_safe(dataclasses.asdict(payload))
