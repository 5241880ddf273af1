"""
Model mixins providing reusable functionality for Django models.

This module contains abstract mixin classes that can be combined with
BaseModel to add specific functionality.

Available Mixins:
    UUIDPrimaryKeyMixin: Use UUID as primary key
    VersionedMixin: Optimistic locking via an auto-incremented version column
    AppendOnlyMixin: Reject updates and deletes on financial/audit facts

Usage:
    from core.models import BaseModel
    from core.model_mixins import AppendOnlyMixin, UUIDPrimaryKeyMixin

    class AuditEvent(AppendOnlyMixin, UUIDPrimaryKeyMixin, models.Model):
        ...

Note:
    - Always list mixins before BaseModel in inheritance
    - Mixins are abstract and don't create database tables
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from django.db import models
from django.db.models import F

from core.exceptions import ConflictError

if TYPE_CHECKING:
    from typing import Any


class UUIDPrimaryKeyMixin(models.Model):
    """
    Use UUID as primary key instead of auto-increment integer.

    Ledger entries, appeals and audit events are referenced from gateway
    metadata and receipts, so ids must be safe to expose and must not
    reveal record counts.

    Fields:
        id: UUIDField as primary key (auto-generated)
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
        help_text="Unique identifier for this record",
    )

    class Meta:
        abstract = True


class VersionedMixin(models.Model):
    """
    Optimistic locking via a version column.

    The version is incremented atomically in the database on every update
    (``F("version") + 1``) and refreshed afterwards, so two writers that
    loaded the same row can detect each other with check_version().

    Fields:
        version: Incremented on each save after the first

    Usage:
        with transaction.atomic():
            appeal = check_version(Appeal, appeal_id, expected_version=3)
            appeal.start_review()
            appeal.save()
    """

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    class Meta:
        abstract = True

    def save(self, *args: Any, **kwargs: Any) -> None:
        """Save with version auto-increment for optimistic locking."""
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
            update_fields = kwargs.get("update_fields")
            if update_fields is not None:
                kwargs["update_fields"] = {*update_fields, "version"}
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])


class AppendOnlyQuerySet(models.QuerySet):
    """
    QuerySet that refuses bulk deletes and restricts bulk updates.

    Only fields listed in the model's ``mutable_fields`` may be changed
    through update(); everything else raises.
    """

    def _error_class(self) -> type[Exception]:
        return getattr(self.model, "immutable_error_class", ConflictError)

    def delete(self):
        raise self._error_class()(
            f"{self.model.__name__} records are append-only and cannot be deleted",
            error_code="APPEND_ONLY",
        )

    def update(self, **kwargs: Any) -> int:
        forbidden = set(kwargs) - set(getattr(self.model, "mutable_fields", ()))
        if forbidden:
            raise self._error_class()(
                f"{self.model.__name__} fields {sorted(forbidden)} are immutable",
                error_code="APPEND_ONLY",
                details={"fields": sorted(forbidden)},
            )
        return super().update(**kwargs)


class AppendOnlyMixin(models.Model):
    """
    Make a model append-only.

    Rows may be inserted once. Subsequent saves must pass ``update_fields``
    limited to ``mutable_fields`` (empty by default), and deletes always
    raise. Corrections are expressed as new rows.

    Attributes:
        mutable_fields: Field names that may change after insert
        immutable_error_class: Exception raised on a forbidden write
    """

    mutable_fields: tuple[str, ...] = ()
    immutable_error_class: type[Exception] = ConflictError

    objects = AppendOnlyQuerySet.as_manager()

    class Meta:
        abstract = True

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self._state.adding and not kwargs.get("force_insert", False):
            update_fields = kwargs.get("update_fields")
            if update_fields is None or not set(update_fields) <= set(
                self.mutable_fields
            ):
                raise self.immutable_error_class(
                    f"{self.__class__.__name__} {self.pk} is immutable; "
                    f"only {list(self.mutable_fields)} may change after insert",
                    error_code="APPEND_ONLY",
                    details={"id": str(self.pk)},
                )
        super().save(*args, **kwargs)

    def delete(self, *args: Any, **kwargs: Any):
        raise self.immutable_error_class(
            f"{self.__class__.__name__} {self.pk} is append-only and cannot be deleted",
            error_code="APPEND_ONLY",
            details={"id": str(self.pk)},
        )
