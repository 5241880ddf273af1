"""
Explicit configuration for the cancellation policy.

PolicyConfig is a frozen value passed into the engine. Settings are read
only by PolicyConfig.from_settings(), which services call at their
boundary; the engine itself never imports django.conf.
"""

from __future__ import annotations

from dataclasses import dataclass, fields

from settlements.exceptions import PolicyComputationError


@dataclass(frozen=True)
class PolicyConfig:
    """
    Cancellation policy parameters.

    Attributes:
        homeowner_penalty_days: Homeowner cancellations with fewer days
            left than this get a partial refund
        cleaner_penalty_days: Cleaner cancellations with fewer days left
            than this are flagged for rating penalties
        fee_window_days: Homeowner cancellations with fewer days left than
            this pay the cancellation fee
        penalty_refund_percent: Refund percentage inside the penalty window
        cancellation_fee_cents: Flat cancellation fee
        cancellation_fee_percent: Percentage fee of the total charge; used
            instead of the flat fee when set
        platform_fee_percent: Platform share of the retained amount
        appeal_window_hours: How long after cancellation an appeal may be filed
    """

    homeowner_penalty_days: int = 3
    cleaner_penalty_days: int = 4
    fee_window_days: int = 7
    penalty_refund_percent: int = 50
    cancellation_fee_cents: int = 2500
    cancellation_fee_percent: int | None = None
    platform_fee_percent: int = 10
    appeal_window_hours: int = 72

    PERCENT_FIELDS = (
        "penalty_refund_percent",
        "cancellation_fee_percent",
        "platform_fee_percent",
    )

    def validate(self) -> PolicyConfig:
        """
        Check that every value is in range.

        Returns:
            self, so calls can be chained

        Raises:
            PolicyComputationError: On negative windows or fees, or a
                percentage outside 0..100
        """
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int):
                raise PolicyComputationError(
                    f"Policy setting {f.name} must be an integer",
                    error_code="INVALID_POLICY_CONFIG",
                    details={"field": f.name, "value": repr(value)},
                )
            if value < 0:
                raise PolicyComputationError(
                    f"Policy setting {f.name} must be non-negative",
                    error_code="INVALID_POLICY_CONFIG",
                    details={"field": f.name, "value": value},
                )
            if f.name in self.PERCENT_FIELDS and value > 100:
                raise PolicyComputationError(
                    f"Policy setting {f.name} must be between 0 and 100",
                    error_code="INVALID_POLICY_CONFIG",
                    details={"field": f.name, "value": value},
                )
        return self

    @classmethod
    def from_settings(cls) -> PolicyConfig:
        """Build the configuration from Django settings."""
        from django.conf import settings

        return cls(
            homeowner_penalty_days=settings.SETTLEMENT_HOMEOWNER_PENALTY_DAYS,
            cleaner_penalty_days=settings.SETTLEMENT_CLEANER_PENALTY_DAYS,
            fee_window_days=settings.SETTLEMENT_FEE_WINDOW_DAYS,
            penalty_refund_percent=settings.SETTLEMENT_PENALTY_REFUND_PERCENT,
            cancellation_fee_cents=settings.SETTLEMENT_CANCELLATION_FEE_CENTS,
            cancellation_fee_percent=settings.SETTLEMENT_CANCELLATION_FEE_PERCENT,
            platform_fee_percent=settings.PLATFORM_FEE_PERCENT,
            appeal_window_hours=settings.APPEAL_WINDOW_HOURS,
        ).validate()
