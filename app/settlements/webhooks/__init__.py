"""
Stripe webhook intake for the settlement ledger.

Events are verified, stored once per Stripe event id and processed
asynchronously via Celery; handlers post the resulting ledger pairs.

Usage:
    from settlements.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from settlements.webhooks.handlers import dispatch_webhook, register_handler
from settlements.webhooks.views import stripe_webhook

__all__ = [
    "dispatch_webhook",
    "register_handler",
    "stripe_webhook",
]
