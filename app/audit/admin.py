"""
Django admin configuration for audit events.

Audit events are append-only: the admin is a read-only browser with
filters for the settlement and appeal investigations staff run most.
"""

from django.contrib import admin

from .models import AuditEvent


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    """Read-only view of the audit trail."""

    list_display = [
        "occurred_at",
        "event_type",
        "severity",
        "actor_type",
        "actor_id",
        "appointment_id",
        "appeal_id",
    ]
    list_filter = ["severity", "event_type", "actor_type", "occurred_at"]
    search_fields = ["id", "appointment_id", "appeal_id", "actor_id", "request_id"]
    readonly_fields = [
        "id",
        "event_type",
        "severity",
        "actor_id",
        "actor_type",
        "appointment_id",
        "appeal_id",
        "request_id",
        "ledger_entry_ids",
        "event_data",
        "previous_state",
        "new_state",
        "occurred_at",
        "recorded_at",
    ]
    date_hierarchy = "occurred_at"
    ordering = ["-occurred_at"]

    fieldsets = (
        (
            "Event",
            {"fields": ("id", "event_type", "severity", "occurred_at", "recorded_at")},
        ),
        ("Actor", {"fields": ("actor_type", "actor_id")}),
        (
            "Target",
            {"fields": ("appointment_id", "appeal_id", "request_id", "ledger_entry_ids")},
        ),
        ("Payload", {"fields": ("event_data", "previous_state", "new_state")}),
    )

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_add_permission(self, request) -> bool:
        return False
