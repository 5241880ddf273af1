"""
API tests for appeal endpoints.

Test Classes:
    TestSubmitView: POST /api/v1/appeals/
    TestAppealReadViews: mine/, detail, queue/, stats/
    TestReviewViews: assign/, status/, resolve/, close/, retry-relief/
"""

import uuid

import pytest
from django.urls import reverse
from freezegun import freeze_time
from rest_framework import status

from appeals.models import Appeal, AppealStatus
from appeals.tests.factories import AppealFactory
from settlements.exceptions import GatewayPermanentError
from settlements.tests.factories import CleanerFactory

pytestmark = pytest.mark.usefixtures("mock_redis_lock")

SUBMIT_AT = "2026-03-08T16:00:00Z"


def submit_body(charge, **overrides):
    body = {
        "appointment_id": str(charge.appointment_id),
        "category": "medical_emergency",
        "description": "Hospitalized the night before",
        "contesting_items": {"fee": True},
    }
    body.update(overrides)
    return body


@pytest.fixture
def appeal_id(settled, homeowner, client_for):
    with freeze_time(SUBMIT_AT):
        response = client_for(homeowner).post(
            reverse("appeals:submit"), submit_body(settled), format="json"
        )
    return response.data["id"]


class TestSubmitView:
    @property
    def url(self):
        return reverse("appeals:submit")

    @freeze_time(SUBMIT_AT)
    def test_homeowner_submits(self, client_for, homeowner, settled):
        response = client_for(homeowner).post(
            self.url, submit_body(settled, severity="critical"), format="json"
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["status"] == "submitted"
        assert response.data["priority"] == "urgent"
        assert response.data["sla_deadline"].startswith("2026-03-09T04:00:00")

    @freeze_time(SUBMIT_AT)
    def test_duplicate_returns_409(self, client_for, homeowner, settled):
        client = client_for(homeowner)
        client.post(self.url, submit_body(settled), format="json")

        response = client.post(self.url, submit_body(settled), format="json")

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "APPEAL_ALREADY_OPEN"

    @freeze_time(SUBMIT_AT)
    def test_stranger_forbidden(self, client_for, settled):
        response = client_for(CleanerFactory()).post(
            self.url, submit_body(settled), format="json"
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    @freeze_time("2026-03-20T00:00:00Z")
    def test_window_expired(self, client_for, homeowner, settled):
        response = client_for(homeowner).post(self.url, submit_body(settled), format="json")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "APPEAL_WINDOW_EXPIRED"

    def test_invalid_body(self, client_for, homeowner):
        response = client_for(homeowner).post(
            self.url, {"category": "bad_weather", "description": "  "}, format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert {"appointment_id", "category", "description"} <= set(response.data)

    def test_requires_authentication(self, api_client):
        response = api_client.post(self.url, {}, format="json")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestAppealReadViews:
    def test_mine(self, client_for, homeowner, appeal_id):
        response = client_for(homeowner).get(reverse("appeals:mine"))

        assert response.status_code == status.HTTP_200_OK
        assert [a["id"] for a in response.data] == [appeal_id]

    def test_detail_for_appealer(self, client_for, homeowner, appeal_id):
        response = client_for(homeowner).get(
            reverse("appeals:detail", kwargs={"appeal_id": appeal_id})
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data["original_penalty_amount_cents"] == 2500
        assert response.data["contesting_items"]["fee"] is True

    def test_detail_hidden_from_others(self, client_for, cleaner, appeal_id):
        response = client_for(cleaner).get(
            reverse("appeals:detail", kwargs={"appeal_id": appeal_id})
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data["error_code"] == "APPEAL_NOT_FOUND"

    def test_queue(self, client_for, reviewer):
        AppealFactory(priority="urgent")
        AppealFactory()

        response = client_for(reviewer).get(reverse("appeals:queue"), {"limit": 1})

        assert response.status_code == status.HTTP_200_OK
        assert response.data["count"] == 2
        assert [a["priority"] for a in response.data["appeals"]] == ["urgent"]

    def test_stats(self, client_for, reviewer):
        AppealFactory()

        response = client_for(reviewer).get(reverse("appeals:stats"))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["total"] == 1
        assert response.data["pending"] == 1

    @pytest.mark.parametrize("name", ["appeals:queue", "appeals:stats"])
    def test_staff_only(self, client_for, homeowner, name):
        response = client_for(homeowner).get(reverse(name))

        assert response.status_code == status.HTTP_403_FORBIDDEN


class TestReviewViews:
    def url(self, name, appeal_id):
        return reverse(f"appeals:{name}", kwargs={"appeal_id": appeal_id})

    def test_full_review(self, client_for, reviewer, gateway, appeal_id):
        client = client_for(reviewer)

        assigned = client.post(
            self.url("assign", appeal_id), {"assignee_id": str(reviewer.id)}, format="json"
        )
        assert assigned.status_code == status.HTTP_200_OK
        assert assigned.data["status"] == "under_review"

        resolved = client.post(
            self.url("resolve", appeal_id),
            {
                "decision": "approve",
                "resolution": {"fee_refunded": True},
                "notes": "Discharge note verified",
                "expected_version": assigned.data["version"],
            },
            format="json",
        )
        assert resolved.status_code == status.HTTP_200_OK
        assert resolved.data["appeal"]["status"] == "approved"
        assert resolved.data["relief_settlement_state"] == "posted"
        assert len(resolved.data["relief_entry_ids"]) == 2

        closed = client.post(self.url("close", appeal_id), format="json")
        assert closed.status_code == status.HTTP_200_OK
        assert closed.data["status"] == "closed"

    def test_status_actions(self, client_for, reviewer, appeal_id):
        client = client_for(reviewer)

        response = client.post(
            self.url("status", appeal_id), {"action": "request_documents"}, format="json"
        )
        assert response.data["status"] == "awaiting_documents"

        response = client.post(
            self.url("status", appeal_id),
            {
                "action": "documents_received",
                "documents": [
                    {
                        "url": "https://files.example.com/note.pdf",
                        "type": "medical_note",
                        "uploaded_at": "2026-03-08T18:00:00Z",
                    }
                ],
            },
            format="json",
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.data["status"] == "under_review"
        assert len(response.data["supporting_documents"]) == 1

    def test_escalate_requires_reason(self, client_for, reviewer, appeal_id):
        response = client_for(reviewer).post(
            self.url("status", appeal_id), {"action": "escalate"}, format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "reason" in response.data

    def test_invalid_transition_returns_409(self, client_for, reviewer, appeal_id):
        response = client_for(reviewer).post(self.url("close", appeal_id), format="json")

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "INVALID_APPEAL_TRANSITION"

    def test_stale_version_returns_409(self, client_for, reviewer, appeal_id):
        response = client_for(reviewer).post(
            self.url("status", appeal_id),
            {"action": "start_review", "expected_version": 7},
            format="json",
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert Appeal.objects.get(pk=appeal_id).status == AppealStatus.SUBMITTED

    def test_approve_without_resolution(self, client_for, reviewer, appeal_id):
        response = client_for(reviewer).post(
            self.url("resolve", appeal_id),
            {"decision": "approve", "notes": "ok"},
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "resolution" in response.data

    def test_retry_relief(self, client_for, reviewer, gateway, appeal_id):
        client = client_for(reviewer)
        client.post(self.url("status", appeal_id), {"action": "start_review"}, format="json")
        original_refund = gateway.create_refund.side_effect
        gateway.create_refund.side_effect = GatewayPermanentError(
            "Gateway unavailable", error_code="GATEWAY_ERROR"
        )
        failed = client.post(
            self.url("resolve", appeal_id),
            {"decision": "approve", "resolution": {"fee_refunded": True}, "notes": "ok"},
            format="json",
        )
        assert failed.data["relief_settlement_state"] == "failed"
        gateway.create_refund.side_effect = original_refund

        response = client.post(self.url("retry_relief", appeal_id), format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["relief_settlement_state"] == "posted"

    def test_unknown_assignee(self, client_for, reviewer, appeal_id):
        response = client_for(reviewer).post(
            self.url("assign", appeal_id), {"assignee_id": str(uuid.uuid4())}, format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data["error_code"] == "INVALID_ASSIGNEE"

    def test_homeowner_cannot_review(self, client_for, homeowner, appeal_id):
        response = client_for(homeowner).post(
            self.url("status", appeal_id), {"action": "start_review"}, format="json"
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
