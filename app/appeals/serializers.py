"""
DRF serializers for the appeals app.

Request serializers validate input and convert it to the dataclasses in
appeals.types; AppealSerializer renders an appeal for both appealers and
reviewers.

Usage:
    serializer = AppealSubmitSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    items = serializer.build_contesting_items()
"""

from __future__ import annotations

from rest_framework import serializers

from appeals.models import (
    Appeal,
    AppealCategory,
    AppealPriority,
    AppealSeverity,
    AppealStatus,
)
from appeals.services import AppealDecision
from appeals.types import AppealResolution, ContestingItems, SupportingDocument


# =============================================================================
# Nested payloads
# =============================================================================


class SupportingDocumentSerializer(serializers.Serializer):
    url = serializers.URLField(max_length=500)
    type = serializers.CharField(max_length=50)
    uploaded_at = serializers.DateTimeField()


class ContestingItemsSerializer(serializers.Serializer):
    penalty = serializers.BooleanField(default=False)
    fee = serializers.BooleanField(default=False)
    refund = serializers.BooleanField(default=False)
    freeze = serializers.BooleanField(default=False)


class ResolutionSerializer(serializers.Serializer):
    penalty_waived = serializers.BooleanField(default=False)
    fee_refunded = serializers.BooleanField(default=False)
    refund_amount_cents = serializers.IntegerField(default=0, min_value=0)
    account_unfrozen = serializers.BooleanField(default=False)
    rating_removed = serializers.BooleanField(default=False)


# =============================================================================
# Requests
# =============================================================================


class AppealSubmitSerializer(serializers.Serializer):
    """Request body for POST /appeals/."""

    appointment_id = serializers.UUIDField()
    category = serializers.ChoiceField(choices=AppealCategory.choices)
    severity = serializers.ChoiceField(
        choices=AppealSeverity.choices,
        default=AppealSeverity.MEDIUM,
    )
    description = serializers.CharField(max_length=5000)
    contesting_items = ContestingItemsSerializer(required=False)
    requested_relief = serializers.CharField(
        max_length=2000,
        required=False,
        allow_blank=True,
        default="",
    )
    supporting_documents = SupportingDocumentSerializer(many=True, required=False)

    def validate_description(self, value: str) -> str:
        if not value.strip():
            raise serializers.ValidationError("Description cannot be blank.")
        return value.strip()

    def build_contesting_items(self) -> ContestingItems:
        return ContestingItems(**self.validated_data.get("contesting_items", {}))

    def build_supporting_documents(self) -> list[SupportingDocument]:
        return [
            SupportingDocument(**doc)
            for doc in self.validated_data.get("supporting_documents", [])
        ]


class AppealAssignSerializer(serializers.Serializer):
    assignee_id = serializers.UUIDField()


class AppealStatusActionSerializer(serializers.Serializer):
    """
    Request body for POST /appeals/{id}/status/.

    reason is required for escalate; documents only apply to
    documents_received.
    """

    ACTIONS = ["start_review", "request_documents", "documents_received", "escalate"]

    action = serializers.ChoiceField(choices=ACTIONS)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    reason = serializers.CharField(required=False, allow_blank=True, default="")
    documents = SupportingDocumentSerializer(many=True, required=False)
    expected_version = serializers.IntegerField(required=False, min_value=1)

    def validate(self, attrs):
        if attrs["action"] == "escalate" and not attrs.get("reason", "").strip():
            raise serializers.ValidationError({"reason": "A reason is required to escalate."})
        return attrs


class AppealResolveSerializer(serializers.Serializer):
    """Request body for POST /appeals/{id}/resolve/."""

    decision = serializers.ChoiceField(choices=AppealDecision.choices)
    resolution = ResolutionSerializer(required=False)
    notes = serializers.CharField(max_length=5000)
    expected_version = serializers.IntegerField(required=False, min_value=1)

    def validate(self, attrs):
        approving = attrs["decision"] in (
            AppealDecision.APPROVE,
            AppealDecision.PARTIALLY_APPROVE,
        )
        if approving and "resolution" not in attrs:
            raise serializers.ValidationError(
                {"resolution": "A resolution is required to approve an appeal."}
            )
        return attrs

    def build_resolution(self) -> AppealResolution | None:
        data = self.validated_data.get("resolution")
        return AppealResolution(**data) if data is not None else None


class AppealQueueQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=AppealStatus.choices, required=False)
    priority = serializers.ChoiceField(choices=AppealPriority.choices, required=False)
    assigned_to = serializers.UUIDField(required=False)
    limit = serializers.IntegerField(default=50, min_value=1, max_value=200)
    offset = serializers.IntegerField(default=0, min_value=0)


# =============================================================================
# Responses
# =============================================================================


class AppealSerializer(serializers.ModelSerializer):
    appealer_id = serializers.UUIDField(read_only=True)
    assigned_to_id = serializers.UUIDField(read_only=True, allow_null=True)
    reviewed_by_id = serializers.UUIDField(read_only=True, allow_null=True)
    sla_breached = serializers.SerializerMethodField()

    class Meta:
        model = Appeal
        fields = [
            "id",
            "appointment_id",
            "appealer_id",
            "appealer_type",
            "category",
            "severity",
            "priority",
            "status",
            "description",
            "supporting_documents",
            "contesting_items",
            "original_penalty_amount_cents",
            "original_refund_withheld_cents",
            "requested_relief",
            "sla_deadline",
            "sla_breached",
            "assigned_to_id",
            "reviewed_by_id",
            "submitted_at",
            "assigned_at",
            "reviewed_at",
            "escalated_at",
            "closed_at",
            "escalation_reason",
            "resolution",
            "resolution_notes",
            "relief_settlement_state",
            "version",
        ]
        read_only_fields = fields

    def get_sla_breached(self, obj: Appeal) -> bool:
        return obj.sla_breached_at is not None


class AppealSubmissionResponseSerializer(serializers.Serializer):
    id = serializers.UUIDField()
    status = serializers.CharField()
    priority = serializers.CharField()
    sla_deadline = serializers.DateTimeField()


class AppealResolutionResponseSerializer(serializers.Serializer):
    appeal = AppealSerializer()
    relief_settlement_state = serializers.CharField()
    relief_entry_ids = serializers.ListField(child=serializers.UUIDField())
    relief_error_code = serializers.CharField(allow_null=True)


class AppealStatsSerializer(serializers.Serializer):
    total = serializers.IntegerField()
    pending = serializers.IntegerField()
    past_sla = serializers.IntegerField()
    by_status = serializers.DictField(child=serializers.IntegerField())
    by_priority = serializers.DictField(child=serializers.IntegerField())
