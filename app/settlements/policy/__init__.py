"""
Cancellation policy engine.

Pure functions mapping an appointment's timing and charge composition to
a cancellation outcome. Nothing here touches the database, the gateway or
Django settings; configuration arrives as an explicit PolicyConfig.

Usage:
    from settlements.policy import PolicyConfig, compute_cancellation_outcome

    outcome = compute_cancellation_outcome(
        terms,
        cancelled_by=CancelledBy.HOMEOWNER,
        now=timezone.now(),
        config=PolicyConfig.from_settings(),
    )
"""

from settlements.policy.config import PolicyConfig
from settlements.policy.engine import (
    compute_cancellation_outcome,
    days_until_appointment,
    split_payout,
)
from settlements.policy.types import (
    AppointmentTerms,
    CancellationOutcome,
    CancelledBy,
    CleanerShare,
    CleanerSplit,
    LineItem,
    LineItemKind,
)

__all__ = [
    "AppointmentTerms",
    "CancellationOutcome",
    "CancelledBy",
    "CleanerShare",
    "CleanerSplit",
    "LineItem",
    "LineItemKind",
    "PolicyConfig",
    "compute_cancellation_outcome",
    "days_until_appointment",
    "split_payout",
]
