"""
Settlements app configuration.
"""

from django.apps import AppConfig


class SettlementsConfig(AppConfig):
    """Configuration for the settlements application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "settlements"
    verbose_name = "Settlements"
