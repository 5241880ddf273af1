"""
Add the celery-beat schedule that re-queues failed webhook events
(every 5 minutes).
"""

from django.db import migrations

TASK_NAME = "Settlements: Retry Failed Webhooks"


def create_periodic_task(apps, schema_editor):
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    schedule_5min, _ = IntervalSchedule.objects.get_or_create(
        every=5,
        period="minutes",
    )

    PeriodicTask.objects.get_or_create(
        name=TASK_NAME,
        defaults={
            "task": "settlements.tasks.retry_failed_webhooks",
            "interval": schedule_5min,
            "enabled": True,
            "description": (
                "Re-queues Stripe webhook events whose processing failed and "
                "that still have retries left."
            ),
        },
    )


def remove_periodic_task(apps, schema_editor):
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name=TASK_NAME).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("settlements", "0003_webhookevent"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_task, remove_periodic_task),
    ]
