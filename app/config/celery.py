"""
Celery configuration for the Django application.

Celery runs the periodic settlement jobs:
- Reconciliation of ledger entries against the payment gateway
- Appeal SLA breach detection and escalation

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps, and schedules are
stored in the database by django-celery-beat (see the data migrations in
settlements and appeals).

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings should be prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
