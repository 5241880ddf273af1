"""
DRF serializers for the settlements app.

This module provides serializers for:
- Cancellation requests and the resulting Breakdown
- Appointment ledger views
- Report query parameters

Related files:
    - services/breakdown.py: Breakdown dataclasses these serializers mirror
    - views.py: Settlement API views

Usage:
    serializer = CancellationRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
"""

from __future__ import annotations

from rest_framework import serializers

from settlements.ledger.models import LedgerEntry
from settlements.policy import CancelledBy


# =============================================================================
# Cancellation
# =============================================================================


class CancellationRequestSerializer(serializers.Serializer):
    """
    Request body for POST /settlements/cancellations/.

    requested_at defaults to now; staff may backdate it when replaying a
    cancellation that was recorded elsewhere.
    """

    appointment_id = serializers.UUIDField()
    cancelled_by = serializers.ChoiceField(choices=CancelledBy.choices)
    requested_at = serializers.DateTimeField(required=False)


class ChargeLineSerializer(serializers.Serializer):
    kind = serializers.CharField()
    label = serializers.CharField()
    amount_cents = serializers.IntegerField()


class OriginalChargesSerializer(serializers.Serializer):
    base_price_cents = serializers.IntegerField()
    line_items = ChargeLineSerializer(many=True)
    total_cents = serializers.IntegerField()


class RefundSummarySerializer(serializers.Serializer):
    eligible = serializers.BooleanField()
    amount_cents = serializers.IntegerField()
    percentage = serializers.IntegerField()
    reason = serializers.CharField()
    payment_method_label = serializers.CharField()
    gateway_ref = serializers.CharField(allow_null=True)


class CancellationFeeSummarySerializer(serializers.Serializer):
    applicable = serializers.BooleanField()
    amount_cents = serializers.IntegerField()
    status = serializers.CharField()
    gateway_ref = serializers.CharField(allow_null=True)


class CleanerShareSerializer(serializers.Serializer):
    cleaner_id = serializers.UUIDField()
    amount_cents = serializers.IntegerField()
    gateway_ref = serializers.CharField(allow_null=True)


class CleanerCompensationSerializer(serializers.Serializer):
    total_cents = serializers.IntegerField()
    shares = CleanerShareSerializer(many=True)


class PlatformSummarySerializer(serializers.Serializer):
    cancellation_fee_revenue_cents = serializers.IntegerField()
    platform_fee_cents = serializers.IntegerField()
    net_cents = serializers.IntegerField()


class AppealEligibilitySerializer(serializers.Serializer):
    eligible = serializers.BooleanField()
    window_expires_at = serializers.DateTimeField(allow_null=True)


class BreakdownSerializer(serializers.Serializer):
    """
    Breakdown response.

    Serializes Breakdown.to_dict(); used for OpenAPI documentation and
    for shaping the response.
    """

    appointment_id = serializers.UUIDField()
    confirmation_id = serializers.CharField()
    cancelled_by = serializers.CharField()
    settlement_state = serializers.CharField()
    days_until = serializers.IntegerField()
    original_charges = OriginalChargesSerializer()
    refund = RefundSummarySerializer()
    cancellation_fee = CancellationFeeSummarySerializer()
    cleaner_compensation = CleanerCompensationSerializer()
    platform_summary = PlatformSummarySerializer()
    appeal_eligibility = AppealEligibilitySerializer()
    net_cost_cents = serializers.IntegerField()
    rationale = serializers.CharField()
    warnings = serializers.ListField(child=serializers.CharField())


# =============================================================================
# Ledger
# =============================================================================


class LedgerEntrySerializer(serializers.ModelSerializer):
    """Read-only ledger entry for API responses."""

    class Meta:
        model = LedgerEntry
        fields = [
            "id",
            "appointment_id",
            "entry_type",
            "direction",
            "account_type",
            "party_type",
            "party_user_id",
            "amount_cents",
            "currency",
            "gateway_object_type",
            "gateway_object_id",
            "description",
            "effective_date",
            "posted_at",
            "reconciliation_status",
            "reconciled",
            "discrepancy_amount_cents",
        ]
        read_only_fields = fields


class LedgerBalanceSerializer(serializers.Serializer):
    debit_total_cents = serializers.IntegerField()
    credit_total_cents = serializers.IntegerField()
    entry_count = serializers.IntegerField()
    is_balanced = serializers.BooleanField()


class AppointmentLedgerSerializer(serializers.Serializer):
    appointment_id = serializers.UUIDField()
    entries = LedgerEntrySerializer(many=True)
    summary = serializers.DictField(child=serializers.IntegerField())
    balance = LedgerBalanceSerializer()


# =============================================================================
# Reports
# =============================================================================


class ReconciliationReportQuerySerializer(serializers.Serializer):
    """Query params: a date range, a tax period, or both."""

    start_date = serializers.DateField(required=False)
    end_date = serializers.DateField(required=False)
    tax_year = serializers.IntegerField(required=False, min_value=2000, max_value=2100)
    tax_quarter = serializers.IntegerField(required=False, min_value=1, max_value=4)

    def validate(self, attrs):
        if ("start_date" in attrs) != ("end_date" in attrs):
            raise serializers.ValidationError(
                "start_date and end_date must be provided together."
            )
        if "tax_quarter" in attrs and "tax_year" not in attrs:
            raise serializers.ValidationError("tax_quarter requires tax_year.")
        return attrs


class TaxReportQuerySerializer(serializers.Serializer):
    tax_year = serializers.IntegerField(min_value=2000, max_value=2100)
    tax_quarter = serializers.IntegerField(required=False, min_value=1, max_value=4)


class Form1099QuerySerializer(serializers.Serializer):
    tax_year = serializers.IntegerField(min_value=2000, max_value=2100)
