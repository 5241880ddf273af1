"""
Payment gateway adapters.

Usage:
    from settlements.adapters import StripeGatewayAdapter, GatewayResult
"""

from settlements.adapters.gateway import (
    GatewayResult,
    IdempotencyKeyGenerator,
    RetryPolicy,
    StripeGatewayAdapter,
    backoff_delay,
)

__all__ = [
    "GatewayResult",
    "IdempotencyKeyGenerator",
    "RetryPolicy",
    "StripeGatewayAdapter",
    "backoff_delay",
]
