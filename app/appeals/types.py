"""
Typed contents of the Appeal JSON columns.

Types:
    SupportingDocument: One uploaded piece of evidence
    ContestingItems: Which consequences of the cancellation are contested
    AppealResolution: What an approved appeal grants
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from django.utils.dateparse import parse_datetime


@dataclass(frozen=True)
class SupportingDocument:
    """
    Evidence attached to an appeal.

    Attributes:
        url: Where the document is stored
        type: Document kind (medical_note, police_report, photo, ...)
        uploaded_at: Upload time
    """

    url: str
    type: str
    uploaded_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "type": self.type, "uploaded_at": self.uploaded_at.isoformat()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SupportingDocument:
        uploaded_at = data["uploaded_at"]
        if isinstance(uploaded_at, str):
            uploaded_at = parse_datetime(uploaded_at)
        return cls(url=data["url"], type=data["type"], uploaded_at=uploaded_at)


@dataclass(frozen=True)
class ContestingItems:
    """Which consequences of the cancellation the appealer disputes."""

    penalty: bool = False
    fee: bool = False
    refund: bool = False
    freeze: bool = False

    @property
    def any(self) -> bool:
        return self.penalty or self.fee or self.refund or self.freeze

    def to_dict(self) -> dict[str, bool]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ContestingItems:
        data = data or {}
        return cls(**{f.name: bool(data.get(f.name, False)) for f in dataclasses.fields(cls)})


@dataclass(frozen=True)
class AppealResolution:
    """
    Relief granted by an approved or partially approved appeal.

    Attributes:
        penalty_waived: The cancellation penalty no longer applies. Without
            an explicit refund_amount_cents this returns everything withheld.
        fee_refunded: Refund the separately charged cancellation fee
        refund_amount_cents: Withheld amount to return to the homeowner
        account_unfrozen: Lift an account freeze caused by the cancellation
        rating_removed: Remove a penalty rating caused by the cancellation
    """

    penalty_waived: bool = False
    fee_refunded: bool = False
    refund_amount_cents: int = 0
    account_unfrozen: bool = False
    rating_removed: bool = False

    @property
    def is_empty(self) -> bool:
        return not (
            self.penalty_waived
            or self.fee_refunded
            or self.refund_amount_cents
            or self.account_unfrozen
            or self.rating_removed
        )

    @property
    def moves_money(self) -> bool:
        return self.penalty_waived or self.fee_refunded or self.refund_amount_cents > 0

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> AppealResolution | None:
        if not data:
            return None
        known = {f.name for f in dataclasses.fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})
