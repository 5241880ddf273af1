"""
Settlement breakdown returned to the cancellation caller.

The Breakdown is data for the receipt layer: every amount is integer
cents and nothing here is formatted for display.

Usage:
    breakdown = SettlementService.settle_cancellation(...)
    payload = breakdown.to_dict()
    restored = Breakdown.from_dict(payload)
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any


class FeeStatus:
    NOT_APPLICABLE = "not_applicable"
    CHARGED = "charged"
    FAILED = "failed"
    PENDING = "pending"


@dataclass(frozen=True)
class ChargeLine:
    kind: str
    label: str
    amount_cents: int


@dataclass(frozen=True)
class OriginalCharges:
    base_price_cents: int
    line_items: tuple[ChargeLine, ...] = ()
    total_cents: int = 0


@dataclass(frozen=True)
class RefundSummary:
    eligible: bool
    amount_cents: int
    percentage: int
    reason: str = ""
    payment_method_label: str = ""
    gateway_ref: str | None = None


@dataclass(frozen=True)
class CancellationFeeSummary:
    applicable: bool
    amount_cents: int
    status: str = FeeStatus.NOT_APPLICABLE
    gateway_ref: str | None = None


@dataclass(frozen=True)
class CleanerShareSummary:
    cleaner_id: uuid.UUID
    amount_cents: int
    gateway_ref: str | None = None


@dataclass(frozen=True)
class CleanerCompensation:
    total_cents: int
    shares: tuple[CleanerShareSummary, ...] = ()


@dataclass(frozen=True)
class PlatformSummary:
    cancellation_fee_revenue_cents: int
    platform_fee_cents: int

    @property
    def net_cents(self) -> int:
        return self.cancellation_fee_revenue_cents + self.platform_fee_cents


@dataclass(frozen=True)
class AppealEligibility:
    eligible: bool
    window_expires_at: datetime | None = None


@dataclass(frozen=True)
class Breakdown:
    """
    Full financial result of a cancellation.

    net_cost_cents is what the homeowner is out of pocket:
    total - refund + cancellation fee.
    """

    appointment_id: uuid.UUID
    confirmation_id: str
    cancelled_by: str
    settlement_state: str
    days_until: int
    original_charges: OriginalCharges
    refund: RefundSummary
    cancellation_fee: CancellationFeeSummary
    cleaner_compensation: CleanerCompensation
    platform_summary: PlatformSummary
    appeal_eligibility: AppealEligibility
    rationale: str = ""
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def net_cost_cents(self) -> int:
        return (
            self.original_charges.total_cents
            - self.refund.amount_cents
            + self.cancellation_fee.amount_cents
        )

    def to_dict(self) -> dict[str, Any]:
        data = _json_ready(asdict(self))
        data["net_cost_cents"] = self.net_cost_cents
        data["platform_summary"]["net_cents"] = self.platform_summary.net_cents
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Breakdown:
        charges = data["original_charges"]
        compensation = data["cleaner_compensation"]
        platform = data["platform_summary"]
        eligibility = data["appeal_eligibility"]
        expires_at = eligibility.get("window_expires_at")
        return cls(
            appointment_id=uuid.UUID(str(data["appointment_id"])),
            confirmation_id=data["confirmation_id"],
            cancelled_by=data["cancelled_by"],
            settlement_state=data["settlement_state"],
            days_until=data["days_until"],
            original_charges=OriginalCharges(
                base_price_cents=charges["base_price_cents"],
                line_items=tuple(ChargeLine(**line) for line in charges["line_items"]),
                total_cents=charges["total_cents"],
            ),
            refund=RefundSummary(**data["refund"]),
            cancellation_fee=CancellationFeeSummary(**data["cancellation_fee"]),
            cleaner_compensation=CleanerCompensation(
                total_cents=compensation["total_cents"],
                shares=tuple(
                    CleanerShareSummary(
                        cleaner_id=uuid.UUID(str(share["cleaner_id"])),
                        amount_cents=share["amount_cents"],
                        gateway_ref=share.get("gateway_ref"),
                    )
                    for share in compensation["shares"]
                ),
            ),
            platform_summary=PlatformSummary(
                cancellation_fee_revenue_cents=platform["cancellation_fee_revenue_cents"],
                platform_fee_cents=platform["platform_fee_cents"],
            ),
            appeal_eligibility=AppealEligibility(
                eligible=eligibility["eligible"],
                window_expires_at=(
                    datetime.fromisoformat(expires_at) if expires_at else None
                ),
            ),
            rationale=data.get("rationale", ""),
            warnings=tuple(data.get("warnings", ())),
        )


def _json_ready(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _json_ready(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_ready(item) for item in value]
    return value
