"""
Django admin configuration for ledger models.

LedgerEntry is read-only in the admin: no add, change or delete. The
unreconciled and discrepancy filters are the operational queue for
reconciliation follow-up.
"""

from django.contrib import admin

from .models import AppointmentLedger, LedgerEntry


@admin.register(LedgerEntry)
class LedgerEntryAdmin(admin.ModelAdmin):
    """
    Admin configuration for LedgerEntry.

    Entries are immutable - corrections are posted as new pairs through
    LedgerService, never edited here.
    """

    list_display = [
        "posted_at",
        "appointment_id",
        "entry_type",
        "direction",
        "account_type",
        "amount_display",
        "party_type",
        "gateway_object_id",
        "reconciliation_status",
    ]
    list_filter = [
        "entry_type",
        "direction",
        "account_type",
        "reconciliation_status",
        "tax_year",
        "tax_quarter",
        "form_1099_eligible",
    ]
    search_fields = [
        "id",
        "appointment_id",
        "idempotency_key",
        "gateway_object_id",
        "party_user_id",
    ]
    readonly_fields = [field.name for field in LedgerEntry._meta.fields]
    date_hierarchy = "posted_at"
    ordering = ["-posted_at"]

    fieldsets = (
        (
            "Entry",
            {
                "fields": (
                    "id",
                    "appointment_id",
                    "related_entry",
                    "entry_type",
                    "direction",
                    "account_type",
                    "amount_cents",
                    "currency",
                ),
            },
        ),
        ("Party", {"fields": ("party_type", "party_user_id")}),
        (
            "Gateway",
            {"fields": ("gateway_object_type", "gateway_object_id", "idempotency_key")},
        ),
        (
            "Tax",
            {
                "fields": (
                    "tax_year",
                    "tax_quarter",
                    "tax_reportable",
                    "tax_category",
                    "form_1099_eligible",
                ),
            },
        ),
        (
            "Reconciliation",
            {
                "fields": (
                    "reconciliation_status",
                    "reconciled",
                    "reconciled_at",
                    "discrepancy_amount_cents",
                    "discrepancy_notes",
                    "reconciliation_batch",
                ),
            },
        ),
        (
            "Additional Info",
            {
                "fields": (
                    "effective_date",
                    "posted_at",
                    "appeal_id",
                    "description",
                    "metadata",
                    "created_by",
                ),
            },
        ),
    )

    def amount_display(self, obj: LedgerEntry) -> str:
        """Display the amount formatted as currency."""
        return f"${obj.amount_cents / 100:.2f}"

    amount_display.short_description = "Amount"

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(AppointmentLedger)
class AppointmentLedgerAdmin(admin.ModelAdmin):
    list_display = [
        "appointment_id",
        "entry_count",
        "debit_total_cents",
        "credit_total_cents",
        "last_posted_at",
    ]
    search_fields = ["appointment_id"]
    readonly_fields = [
        "id",
        "appointment_id",
        "entry_count",
        "debit_total_cents",
        "credit_total_cents",
        "last_posted_at",
        "version",
        "created_at",
        "updated_at",
    ]

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def has_add_permission(self, request) -> bool:
        return False
