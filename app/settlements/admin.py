"""
Settlement admin configuration.

This file imports admin configurations from the ledger submodule
and registers settlement domain models with the Django admin.
"""

from django.contrib import admin

from settlements.ledger.admin import AppointmentLedgerAdmin, LedgerEntryAdmin
from settlements.models import (
    AppointmentCharge,
    ChargeLineItem,
    CleanerAssignment,
    GatewayOperation,
    ReconciliationRun,
    Settlement,
    WebhookEvent,
)
from settlements.state_machines import GatewayOperationState, LedgerPostingState

__all__ = [
    "AppointmentLedgerAdmin",
    "LedgerEntryAdmin",
    "AppointmentChargeAdmin",
    "SettlementAdmin",
    "GatewayOperationAdmin",
    "ReconciliationRunAdmin",
    "WebhookEventAdmin",
]


class ChargeLineItemInline(admin.TabularInline):
    model = ChargeLineItem
    extra = 0
    fields = ["kind", "label", "amount_cents"]


class CleanerAssignmentInline(admin.TabularInline):
    model = CleanerAssignment
    extra = 0
    fields = ["cleaner", "connected_account_id", "share_cents"]
    raw_id_fields = ["cleaner"]


@admin.register(AppointmentCharge)
class AppointmentChargeAdmin(admin.ModelAdmin):
    """
    Admin configuration for AppointmentCharge.

    Charges are owned by scheduling; the admin is mainly for inspection.
    """

    list_display = [
        "appointment_id",
        "homeowner",
        "appointment_date",
        "amount_display",
        "status",
        "created_at",
    ]
    list_filter = ["status", "appointment_date"]
    search_fields = ["appointment_id", "payment_intent_id", "homeowner__email"]
    readonly_fields = ["id", "status", "cancelled_at", "created_at", "updated_at"]
    raw_id_fields = ["homeowner"]
    inlines = [ChargeLineItemInline, CleanerAssignmentInline]
    ordering = ["-created_at"]

    def amount_display(self, obj: AppointmentCharge) -> str:
        """Display the base price formatted as currency."""
        return f"${obj.base_price_cents / 100:.2f}"

    amount_display.short_description = "Base price"

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


class GatewayOperationInline(admin.TabularInline):
    model = GatewayOperation
    extra = 0
    fields = [
        "entry_type",
        "operation",
        "amount_cents",
        "state",
        "ledger_state",
        "gateway_object_id",
        "attempt_count",
    ]
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Settlement)
class SettlementAdmin(admin.ModelAdmin):
    """
    Admin configuration for Settlement.

    State changes go through SettlementService, never the admin. The
    requires_attention filter is the operational queue for settlements
    whose money moved but did not finish.
    """

    list_display = [
        "confirmation_id",
        "appointment_id",
        "cancelled_by",
        "state",
        "refund_display",
        "cancellation_fee_cents",
        "requested_at",
    ]
    list_filter = ["state", "cancelled_by", "requested_at"]
    search_fields = ["confirmation_id", "appointment_id", "id"]
    readonly_fields = [field.name for field in Settlement._meta.fields]
    date_hierarchy = "requested_at"
    ordering = ["-requested_at"]
    inlines = [GatewayOperationInline]

    fieldsets = (
        (
            None,
            {
                "fields": (
                    "id",
                    "confirmation_id",
                    "appointment_id",
                    "charge",
                    "state",
                ),
            },
        ),
        ("Request", {"fields": ("cancelled_by", "actor_id", "requested_at")}),
        (
            "Amounts",
            {
                "fields": (
                    "total_cents",
                    "refund_amount_cents",
                    "refund_percentage",
                    "cancellation_fee_cents",
                    "cleaner_payout_cents",
                    "platform_fee_cents",
                    "days_until",
                ),
            },
        ),
        (
            "Outcome",
            {
                "fields": (
                    "appeal_window_expires_at",
                    "completed_at",
                    "failed_at",
                    "failure_reason",
                ),
            },
        ),
        (
            "Snapshots",
            {
                "fields": ("policy_outcome", "breakdown", "version"),
                "classes": ("collapse",),
            },
        ),
    )

    def refund_display(self, obj: Settlement) -> str:
        return f"${obj.refund_amount_cents / 100:.2f} ({obj.refund_percentage}%)"

    refund_display.short_description = "Refund"

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(GatewayOperation)
class GatewayOperationAdmin(admin.ModelAdmin):
    """
    Admin configuration for GatewayOperation.

    Exhausted and succeeded-but-unposted operations are surfaced here;
    the post_unposted action finishes the ledger side without calling
    the gateway again.
    """

    list_display = [
        "created_at",
        "appointment_id",
        "entry_type",
        "operation",
        "amount_cents",
        "state",
        "ledger_state",
        "attempt_count",
        "gateway_object_id",
    ]
    list_filter = ["state", "ledger_state", "operation", "entry_type"]
    search_fields = ["idempotency_key", "gateway_object_id", "appointment_id", "id"]
    readonly_fields = [field.name for field in GatewayOperation._meta.fields]
    ordering = ["-created_at"]
    actions = ["post_unposted"]

    @admin.action(description="Post ledger pairs for succeeded, unposted operations")
    def post_unposted(self, request, queryset):
        from settlements.services import SettlementService

        pending = queryset.filter(
            state=GatewayOperationState.SUCCEEDED,
            ledger_state=LedgerPostingState.UNPOSTED,
        ).count()
        result = SettlementService.retry_unposted_operations(limit=max(pending, 1))
        self.message_user(
            request,
            f"Posted {result.posted} operations; {result.failed} still unposted.",
        )

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(ReconciliationRun)
class ReconciliationRunAdmin(admin.ModelAdmin):
    """
    Admin configuration for ReconciliationRun.

    Runs are created by the reconciliation service and should not be
    manually modified.
    """

    list_display = [
        "batch_id",
        "started_at",
        "status",
        "duration_display",
        "entries_checked",
        "matched",
        "mismatched",
        "errors",
    ]
    list_filter = ["status", "started_at"]
    search_fields = ["batch_id"]
    readonly_fields = [
        "id",
        "batch_id",
        "status",
        "started_at",
        "completed_at",
        "duration_display",
        "entries_checked",
        "matched",
        "mismatched",
        "errors",
        "error_message",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "started_at"
    ordering = ["-started_at"]

    def duration_display(self, obj: ReconciliationRun) -> str:
        """Display the run duration in human-readable format."""
        if obj.duration_seconds is not None:
            return f"{obj.duration_seconds:.1f}s"
        return "Running..."

    duration_display.short_description = "Duration"

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for reconciliation runs (audit trail)."""
        return False

    def has_add_permission(self, request) -> bool:
        """Disable adding reconciliation runs through admin."""
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Received events are never edited; status changes come from the
    processing task.
    """

    list_display = [
        "stripe_event_id",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["stripe_event_id", "event_type"]
    readonly_fields = [field.name for field in WebhookEvent._meta.fields]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (None, {"fields": ("id", "stripe_event_id", "event_type", "status")}),
        ("Processing", {"fields": ("processed_at", "retry_count", "error_message")}),
        ("Payload", {"fields": ("payload",), "classes": ("collapse",)}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def has_add_permission(self, request) -> bool:
        return False
