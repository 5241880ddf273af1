"""
Appeals app configuration.
"""

from django.apps import AppConfig


class AppealsConfig(AppConfig):
    """Configuration for the appeals application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "appeals"
    verbose_name = "Appeals"
