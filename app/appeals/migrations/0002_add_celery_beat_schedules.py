"""
Add the celery-beat schedule for appeal SLA monitoring.

Creates a periodic task that reports appeals past their SLA deadline
(every 15 minutes).
"""

from django.db import migrations

TASK_NAME = "Appeals: Escalate SLA Breaches"


def create_periodic_tasks(apps, schema_editor):
    """Create the SLA breach periodic task."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    schedule_15min, _ = IntervalSchedule.objects.get_or_create(
        every=15,
        period="minutes",
    )

    PeriodicTask.objects.get_or_create(
        name=TASK_NAME,
        defaults={
            "task": "appeals.tasks.escalate_sla_breaches",
            "interval": schedule_15min,
            "enabled": True,
            "description": (
                "Writes a warning audit event for each appeal past its SLA "
                "deadline and escalates it when auto-escalation is enabled."
            ),
        },
    )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic task on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name=TASK_NAME).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("appeals", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
