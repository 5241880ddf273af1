"""
ReconciliationRun model.

Each run of the reconciliation job is persisted so operators can see
when the ledger was last checked against the gateway and what was found.
"""

from __future__ import annotations

import uuid

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from settlements.state_machines import ReconciliationRunStatus


def generate_batch_id(at=None) -> str:
    """Return a batch id of the form RECON-YYYYMMDD-HHMMSS-xxxxxx."""
    at = at or timezone.now()
    return f"RECON-{at:%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:6]}"


class ReconciliationRun(UUIDPrimaryKeyMixin, BaseModel):
    """
    One reconciliation batch.

    Fields:
        batch_id: Stamped on every entry the batch examined
        status: running / completed / failed
        entries_checked / matched / mismatched / errors: Counters
        error_message: Why the run failed, if it did
    """

    batch_id = models.CharField(
        max_length=32,
        unique=True,
        help_text="Batch id (RECON-YYYYMMDD-HHMMSS-xxxxxx)",
    )
    status = models.CharField(
        max_length=20,
        choices=ReconciliationRunStatus.choices,
        default=ReconciliationRunStatus.RUNNING,
        db_index=True,
    )
    started_at = models.DateTimeField(default=timezone.now)
    completed_at = models.DateTimeField(null=True, blank=True)

    entries_checked = models.PositiveIntegerField(default=0)
    matched = models.PositiveIntegerField(default=0)
    mismatched = models.PositiveIntegerField(default=0)
    errors = models.PositiveIntegerField(default=0)
    error_message = models.TextField(blank=True)

    class Meta:
        ordering = ["-started_at"]
        verbose_name = "Reconciliation run"

    def __str__(self) -> str:
        return f"ReconciliationRun({self.batch_id}, {self.status})"

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def finish(self, status: str = ReconciliationRunStatus.COMPLETED, error_message: str = "") -> None:
        self.status = status
        self.error_message = error_message
        self.completed_at = timezone.now()
        self.save(
            update_fields=[
                "status",
                "error_message",
                "completed_at",
                "entries_checked",
                "matched",
                "mismatched",
                "errors",
                "updated_at",
            ]
        )
