"""
Add celery-beat schedules for settlement maintenance tasks.

This migration creates periodic task schedules for:
- Ledger reconciliation against the payment gateway (hourly)
- Posting ledger pairs for gateway operations that succeeded but were
  never recorded (every 10 minutes)
"""

from django.db import migrations

TASK_NAMES = [
    "Settlements: Reconcile Ledger",
    "Settlements: Post Unposted Operations",
]


def create_periodic_tasks(apps, schema_editor):
    """Create periodic tasks for settlement maintenance."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    # Every 10 minutes
    schedule_10min, _ = IntervalSchedule.objects.get_or_create(
        every=10,
        period="minutes",
    )

    # Every 1 hour
    schedule_1hour, _ = IntervalSchedule.objects.get_or_create(
        every=1,
        period="hours",
    )

    PeriodicTask.objects.get_or_create(
        name="Settlements: Reconcile Ledger",
        defaults={
            "task": "settlements.tasks.reconcile_ledger",
            "interval": schedule_1hour,
            "enabled": True,
            "description": (
                "Compares unreconciled ledger entries with the gateway's records "
                "and flags amount mismatches for manual review."
            ),
        },
    )

    PeriodicTask.objects.get_or_create(
        name="Settlements: Post Unposted Operations",
        defaults={
            "task": "settlements.tasks.post_unposted_operations",
            "interval": schedule_10min,
            "enabled": True,
            "description": (
                "Posts ledger pairs for gateway operations that succeeded but "
                "whose ledger write failed, using the stored gateway reference."
            ),
        },
    )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name__in=TASK_NAMES).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("settlements", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
