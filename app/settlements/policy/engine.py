"""
Cancellation policy computation.

compute_cancellation_outcome() is a pure function: the same terms, canceller,
clock reading and PolicyConfig always produce the same outcome, and
nothing outside its arguments is read.

Window rules:
    days_until counts calendar days from the local date of ``now`` (in
    the appointment's timezone) to the appointment date. A window of N
    days applies when days_until < N, so a cancellation exactly N days
    out falls in the more lenient bucket.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from settlements.exceptions import PolicyComputationError

from .config import PolicyConfig
from .types import CancellationOutcome, CancelledBy, CleanerSplit

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .types import AppointmentTerms, CleanerShare

logger = logging.getLogger(__name__)


def days_until_appointment(terms: AppointmentTerms, now: datetime) -> int:
    """
    Calendar days from the local date of ``now`` to the appointment date.

    Raises:
        PolicyComputationError: If now is naive or the timezone is unknown
    """
    if now.tzinfo is None or now.utcoffset() is None:
        raise PolicyComputationError(
            "Cancellation time must be timezone-aware",
            error_code="NAIVE_DATETIME",
            details={"now": now.isoformat()},
        )
    try:
        zone = ZoneInfo(terms.timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise PolicyComputationError(
            f"Unknown appointment timezone: {terms.timezone}",
            error_code="UNKNOWN_TIMEZONE",
            details={"timezone": terms.timezone},
        ) from exc

    local_today = now.astimezone(zone).date()
    return (terms.appointment_date - local_today).days


def split_payout(
    total_cents: int,
    cleaners: Sequence[CleanerShare],
) -> tuple[CleanerSplit, ...]:
    """
    Split a cleaner payout across the assigned cleaners.

    When every cleaner has a recorded share, those shares are used and must
    sum to total_cents. Otherwise the payout is split evenly and remainder
    cents go to the first cleaner in id order. The result always sums to
    total_cents.

    Raises:
        PolicyComputationError: On a negative total or share, or recorded
            shares that don't sum to the payout
    """
    if total_cents < 0:
        raise PolicyComputationError(
            "Cleaner payout cannot be negative",
            error_code="NEGATIVE_PAYOUT",
            details={"total_cents": total_cents},
        )
    if not cleaners:
        return ()

    ordered = sorted(cleaners, key=lambda c: c.cleaner_id)

    if total_cents == 0:
        return tuple(CleanerSplit(c.cleaner_id, 0) for c in ordered)

    recorded = [c.share_cents for c in ordered]
    if all(share is not None for share in recorded):
        if any(share < 0 for share in recorded):
            raise PolicyComputationError(
                "Recorded cleaner share cannot be negative",
                error_code="INVALID_CLEANER_SHARE",
                details={"shares": recorded},
            )
        if sum(recorded) != total_cents:
            raise PolicyComputationError(
                "Recorded cleaner shares do not sum to the payout",
                error_code="CLEANER_SHARE_MISMATCH",
                details={"shares": recorded, "total_cents": total_cents},
            )
        return tuple(CleanerSplit(c.cleaner_id, c.share_cents) for c in ordered)

    base, remainder = divmod(total_cents, len(ordered))
    return tuple(
        CleanerSplit(c.cleaner_id, base + (remainder if index == 0 else 0))
        for index, c in enumerate(ordered)
    )


def _validate_terms(terms: AppointmentTerms) -> None:
    if terms.base_price_cents < 0:
        raise PolicyComputationError(
            "Appointment price cannot be negative",
            error_code="NEGATIVE_PRICE",
            details={"base_price_cents": terms.base_price_cents},
        )
    for item in terms.line_items:
        if item.amount_cents < 0:
            raise PolicyComputationError(
                "Add-on amount cannot be negative",
                error_code="NEGATIVE_LINE_ITEM",
                details={"kind": str(item.kind), "amount_cents": item.amount_cents},
            )


def _cancellation_fee(total_cents: int, config: PolicyConfig) -> int:
    if config.cancellation_fee_percent is not None:
        return total_cents * config.cancellation_fee_percent // 100
    return config.cancellation_fee_cents


def compute_cancellation_outcome(
    terms: AppointmentTerms,
    cancelled_by: CancelledBy | str,
    now: datetime,
    config: PolicyConfig | None = None,
) -> CancellationOutcome:
    """
    Compute refund, fee and payouts for a cancellation.

    Args:
        terms: Appointment price composition, date and cleaners
        cancelled_by: "homeowner" or "cleaner"
        now: Aware timestamp of the cancellation request
        config: Policy parameters (defaults apply when omitted)

    Returns:
        CancellationOutcome with all amounts in cents

    Raises:
        PolicyComputationError: On malformed input or configuration
    """
    config = (config or PolicyConfig()).validate()

    if cancelled_by not in CancelledBy.values:
        raise PolicyComputationError(
            f"Unknown canceller: {cancelled_by}",
            error_code="UNKNOWN_CANCELLER",
            details={"cancelled_by": str(cancelled_by)},
        )
    cancelled_by = CancelledBy(cancelled_by)

    _validate_terms(terms)
    total = terms.total_cents
    days_until = days_until_appointment(terms, now)

    if cancelled_by == CancelledBy.CLEANER:
        within_penalty = days_until < config.cleaner_penalty_days
        outcome = CancellationOutcome(
            cancelled_by=cancelled_by,
            total_cents=total,
            refund_amount_cents=total,
            refund_percentage=100,
            cancellation_fee_cents=0,
            cleaner_payout_cents=0,
            platform_fee_cents=0,
            days_until=days_until,
            within_penalty_window=within_penalty,
            within_fee_window=False,
            cleaner_penalty_applies=within_penalty,
            cleaner_splits=split_payout(0, terms.cleaners),
            rationale=(
                "Cleaner cancelled; homeowner receives a full refund"
                + (
                    f" (cancelled within {config.cleaner_penalty_days} days)"
                    if within_penalty
                    else ""
                )
            ),
        )
        logger.debug(
            "Cancellation outcome computed",
            extra={
                "appointment_id": str(terms.appointment_id),
                "cancelled_by": cancelled_by.value,
                "days_until": days_until,
            },
        )
        return outcome

    within_penalty = days_until < config.homeowner_penalty_days
    within_fee = days_until < config.fee_window_days

    if within_penalty:
        refund_percentage = config.penalty_refund_percent
        refund = total * refund_percentage // 100
    else:
        refund_percentage = 100
        refund = total

    retained = total - refund
    if terms.cleaners:
        platform_fee = retained * config.platform_fee_percent // 100
    else:
        platform_fee = retained
    cleaner_payout = retained - platform_fee
    fee = _cancellation_fee(total, config) if within_fee else 0

    if within_penalty:
        rationale = (
            f"Cancelled {days_until} day(s) before the appointment, inside the "
            f"{config.homeowner_penalty_days}-day window: "
            f"{refund_percentage}% refund"
        )
    else:
        rationale = (
            f"Cancelled {days_until} day(s) before the appointment: full refund"
        )
    if fee:
        rationale += (
            f"; cancellation fee applies inside the "
            f"{config.fee_window_days}-day window"
        )

    outcome = CancellationOutcome(
        cancelled_by=cancelled_by,
        total_cents=total,
        refund_amount_cents=refund,
        refund_percentage=refund_percentage,
        cancellation_fee_cents=fee,
        cleaner_payout_cents=cleaner_payout,
        platform_fee_cents=platform_fee,
        days_until=days_until,
        within_penalty_window=within_penalty,
        within_fee_window=within_fee,
        cleaner_splits=split_payout(cleaner_payout, terms.cleaners),
        rationale=rationale,
    )
    logger.debug(
        "Cancellation outcome computed",
        extra={
            "appointment_id": str(terms.appointment_id),
            "cancelled_by": cancelled_by.value,
            "days_until": days_until,
            "refund_cents": refund,
            "fee_cents": fee,
        },
    )
    return outcome
