"""
Tests for the appeal request serializers.

The nested contesting_items, supporting_documents and resolution payloads
must reach the typed dataclasses the service layer consumes.
"""

import uuid
from datetime import datetime
from datetime import timezone as dt_timezone

from appeals.serializers import AppealResolveSerializer, AppealSubmitSerializer
from appeals.types import AppealResolution, ContestingItems, SupportingDocument


class TestAppealSubmitSerializer:
    def test_declares_nested_fields(self):
        fields = AppealSubmitSerializer().fields

        assert "contesting_items" in fields
        assert "supporting_documents" in fields

    def test_builds_typed_payloads(self):
        serializer = AppealSubmitSerializer(
            data={
                "appointment_id": str(uuid.uuid4()),
                "category": "medical_emergency",
                "description": "  Hospitalized the night before ",
                "contesting_items": {"fee": True, "refund": True},
                "supporting_documents": [
                    {
                        "url": "https://files.example.com/er-discharge.pdf",
                        "type": "medical_note",
                        "uploaded_at": "2026-03-08T18:00:00Z",
                    }
                ],
            }
        )

        assert serializer.is_valid(), serializer.errors
        assert serializer.validated_data["description"] == "Hospitalized the night before"
        assert serializer.build_contesting_items() == ContestingItems(fee=True, refund=True)
        assert serializer.build_supporting_documents() == [
            SupportingDocument(
                url="https://files.example.com/er-discharge.pdf",
                type="medical_note",
                uploaded_at=datetime(2026, 3, 8, 18, 0, tzinfo=dt_timezone.utc),
            )
        ]

    def test_nested_payloads_optional(self):
        serializer = AppealSubmitSerializer(
            data={
                "appointment_id": str(uuid.uuid4()),
                "category": "family_emergency",
                "description": "Family emergency",
            }
        )

        assert serializer.is_valid(), serializer.errors
        assert serializer.build_contesting_items() == ContestingItems()
        assert serializer.build_supporting_documents() == []


class TestAppealResolveSerializer:
    def test_declares_resolution_field(self):
        assert "resolution" in AppealResolveSerializer().fields

    def test_approve_builds_resolution(self):
        serializer = AppealResolveSerializer(
            data={
                "decision": "approve",
                "resolution": {"fee_refunded": True, "refund_amount_cents": 1500},
                "notes": "Discharge note verified",
            }
        )

        assert serializer.is_valid(), serializer.errors
        assert serializer.build_resolution() == AppealResolution(
            fee_refunded=True, refund_amount_cents=1500
        )

    def test_approve_requires_resolution(self):
        serializer = AppealResolveSerializer(data={"decision": "approve", "notes": "ok"})

        assert not serializer.is_valid()
        assert "resolution" in serializer.errors

    def test_deny_without_resolution(self):
        serializer = AppealResolveSerializer(data={"decision": "deny", "notes": "No evidence"})

        assert serializer.is_valid(), serializer.errors
        assert serializer.build_resolution() is None
