"""
Appeal admin configuration.

Appeals are read-only here; every status change goes through
AppealService so it is locked, versioned and audited.
"""

from django.contrib import admin

from appeals.models import Appeal, ReliefSettlementState


@admin.register(Appeal)
class AppealAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "appointment_id",
        "appealer",
        "category",
        "priority",
        "status",
        "sla_deadline",
        "relief_failed",
        "submitted_at",
    ]
    list_filter = ["status", "priority", "category", "relief_settlement_state"]
    search_fields = ["id", "appointment_id", "appealer__email"]
    readonly_fields = [field.name for field in Appeal._meta.fields]
    raw_id_fields = ["appealer", "assigned_to", "reviewed_by"]
    date_hierarchy = "submitted_at"
    ordering = ["-submitted_at"]

    fieldsets = (
        (None, {"fields": ("id", "appointment_id", "appealer", "appealer_type", "status")}),
        (
            "Claim",
            {
                "fields": (
                    "category",
                    "severity",
                    "priority",
                    "description",
                    "contesting_items",
                    "supporting_documents",
                    "requested_relief",
                    "original_penalty_amount_cents",
                    "original_refund_withheld_cents",
                ),
            },
        ),
        (
            "Review",
            {
                "fields": (
                    "assigned_to",
                    "reviewed_by",
                    "sla_deadline",
                    "sla_breached_at",
                    "submitted_at",
                    "assigned_at",
                    "reviewed_at",
                    "escalated_at",
                    "escalation_reason",
                    "closed_at",
                ),
            },
        ),
        (
            "Decision",
            {
                "fields": (
                    "resolution",
                    "resolution_notes",
                    "relief_settlement_state",
                    "version",
                ),
            },
        ),
    )

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("appealer", "assigned_to")

    @admin.display(boolean=True, description="Relief failed")
    def relief_failed(self, obj: Appeal) -> bool:
        return obj.relief_settlement_state == ReliefSettlementState.FAILED

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
