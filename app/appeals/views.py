"""
API views for cancellation appeals.

Provides:
- AppealListCreateView: Submit an appeal
- MyAppealsView: The caller's own appeals
- AppealQueueView / AppealStatsView: Reviewer queue and counters (staff)
- AppealDetailView: One appeal (appealer or staff)
- AppealAssignView, AppealStatusView, AppealResolveView, AppealCloseView,
  AppealRetryReliefView: Review workflow (staff)

Service errors are returned as ``e.to_dict()`` with ``e.http_status``.
"""

from __future__ import annotations

import logging

from django.contrib.auth import get_user_model
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.permissions import IsReviewer
from appeals.exceptions import AppealNotFound
from appeals.serializers import (
    AppealAssignSerializer,
    AppealQueueQuerySerializer,
    AppealResolutionResponseSerializer,
    AppealResolveSerializer,
    AppealSerializer,
    AppealStatsSerializer,
    AppealStatusActionSerializer,
    AppealSubmissionResponseSerializer,
    AppealSubmitSerializer,
)
from appeals.services import AppealResolutionResult, AppealService
from appeals.types import SupportingDocument
from core.exceptions import BaseApplicationError

logger = logging.getLogger(__name__)

User = get_user_model()


def _request_id(request) -> str | None:
    return request.headers.get("X-Request-ID")


def _resolution_response(result: AppealResolutionResult) -> Response:
    return Response(
        AppealResolutionResponseSerializer(
            {
                "appeal": result.appeal,
                "relief_settlement_state": result.relief_settlement_state,
                "relief_entry_ids": result.relief_entry_ids,
                "relief_error_code": result.relief_error_code,
            }
        ).data
    )


# =============================================================================
# Appealer endpoints
# =============================================================================


class AppealListCreateView(APIView):
    """
    Submit an appeal against a cancellation.

    POST /api/v1/appeals/

    Authentication:
        Requires valid JWT token. Only the homeowner or an assigned cleaner
        of the cancelled appointment may appeal.

    Response:
        201 Created: id, status, priority and SLA deadline
        400 Bad Request: Validation error or appeal window expired
        403 Forbidden: Not a party to the appointment
        404 Not Found: No cancellation recorded for the appointment
        409 Conflict: An appeal is already open for the appointment
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="submit_appeal",
        summary="Submit an appeal",
        request=AppealSubmitSerializer,
        responses={
            201: OpenApiResponse(response=AppealSubmissionResponseSerializer),
            400: OpenApiResponse(description="Validation error or window expired"),
            403: OpenApiResponse(description="Not a party to the appointment"),
            404: OpenApiResponse(description="Appointment not found"),
            409: OpenApiResponse(description="Appeal already open"),
        },
        tags=["Appeals"],
    )
    def post(self, request):
        serializer = AppealSubmitSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data
        try:
            result = AppealService.submit_appeal(
                appointment_id=data["appointment_id"],
                appealer=request.user,
                category=data["category"],
                description=data["description"],
                severity=data["severity"],
                contesting_items=serializer.build_contesting_items(),
                requested_relief=data["requested_relief"],
                supporting_documents=serializer.build_supporting_documents(),
                request_id=_request_id(request),
            )
        except BaseApplicationError as e:
            return Response(e.to_dict(), status=e.http_status)

        return Response(
            AppealSubmissionResponseSerializer(
                {
                    "id": result.appeal_id,
                    "status": result.status,
                    "priority": result.priority,
                    "sla_deadline": result.sla_deadline,
                }
            ).data,
            status=status.HTTP_201_CREATED,
        )


class MyAppealsView(APIView):
    """
    Appeals submitted by the caller, newest first.

    GET /api/v1/appeals/mine/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_my_appeals",
        summary="List my appeals",
        responses={200: AppealSerializer(many=True)},
        tags=["Appeals"],
    )
    def get(self, request):
        appeals = AppealService.get_user_appeals(request.user)
        return Response(AppealSerializer(appeals, many=True).data)


class AppealDetailView(APIView):
    """
    One appeal.

    GET /api/v1/appeals/{appeal_id}/

    Visible to the appealer and staff reviewers; everyone else gets 404.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_appeal",
        summary="Get appeal",
        responses={
            200: AppealSerializer,
            404: OpenApiResponse(description="Appeal not found"),
        },
        tags=["Appeals"],
    )
    def get(self, request, appeal_id):
        try:
            appeal = AppealService.get_appeal(appeal_id)
        except AppealNotFound as e:
            return Response(e.to_dict(), status=e.http_status)

        if appeal.appealer_id != request.user.id and not request.user.is_reviewer:
            e = AppealNotFound(
                f"Appeal {appeal_id} not found",
                details={"appeal_id": str(appeal_id)},
            )
            return Response(e.to_dict(), status=e.http_status)
        return Response(AppealSerializer(appeal).data)


# =============================================================================
# Reviewer endpoints
# =============================================================================


class AppealQueueView(APIView):
    """
    Reviewer queue.

    GET /api/v1/appeals/queue/?status=&priority=&assigned_to=&limit=&offset=

    Open appeals by default, ordered by priority, SLA deadline and
    submission time.
    """

    permission_classes = [IsAuthenticated, IsReviewer]

    @extend_schema(
        operation_id="get_appeal_queue",
        summary="Appeal queue",
        parameters=[AppealQueueQuerySerializer],
        responses={200: OpenApiResponse(description="count and appeals")},
        tags=["Appeals - Review"],
    )
    def get(self, request):
        query = AppealQueueQuerySerializer(data=request.query_params)
        if not query.is_valid():
            return Response(query.errors, status=status.HTTP_400_BAD_REQUEST)

        queue = AppealService.get_queue(**query.validated_data)
        return Response(
            {
                "count": queue.count,
                "appeals": AppealSerializer(queue.appeals, many=True).data,
            }
        )


class AppealStatsView(APIView):
    """GET /api/v1/appeals/stats/"""

    permission_classes = [IsAuthenticated, IsReviewer]

    @extend_schema(
        operation_id="get_appeal_stats",
        summary="Appeal statistics",
        responses={200: AppealStatsSerializer},
        tags=["Appeals - Review"],
    )
    def get(self, request):
        stats = AppealService.get_stats()
        return Response(AppealStatsSerializer(stats).data)


class AppealAssignView(APIView):
    """
    Assign a reviewer.

    POST /api/v1/appeals/{appeal_id}/assign/
    """

    permission_classes = [IsAuthenticated, IsReviewer]

    @extend_schema(
        operation_id="assign_appeal",
        summary="Assign appeal",
        request=AppealAssignSerializer,
        responses={
            200: AppealSerializer,
            400: OpenApiResponse(description="Invalid assignee"),
            404: OpenApiResponse(description="Appeal not found"),
            409: OpenApiResponse(description="Appeal is closed"),
        },
        tags=["Appeals - Review"],
    )
    def post(self, request, appeal_id):
        serializer = AppealAssignSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        assignee = User.objects.filter(pk=serializer.validated_data["assignee_id"]).first()
        if assignee is None:
            return Response(
                {
                    "error": "Assignee not found",
                    "error_code": "INVALID_ASSIGNEE",
                    "details": {"assignee_id": str(serializer.validated_data["assignee_id"])},
                },
                status=status.HTTP_400_BAD_REQUEST,
            )

        try:
            appeal = AppealService.assign_appeal(
                appeal_id,
                assignee=assignee,
                actor=request.user,
                request_id=_request_id(request),
            )
        except BaseApplicationError as e:
            return Response(e.to_dict(), status=e.http_status)
        return Response(AppealSerializer(appeal).data)


class AppealStatusView(APIView):
    """
    Move an appeal through review without deciding it.

    POST /api/v1/appeals/{appeal_id}/status/

    Actions: start_review, request_documents, documents_received, escalate.
    """

    permission_classes = [IsAuthenticated, IsReviewer]

    @extend_schema(
        operation_id="change_appeal_status",
        summary="Change appeal status",
        request=AppealStatusActionSerializer,
        responses={
            200: AppealSerializer,
            400: OpenApiResponse(description="Validation error"),
            403: OpenApiResponse(description="Not allowed for this actor"),
            409: OpenApiResponse(description="Transition not allowed or stale version"),
        },
        tags=["Appeals - Review"],
    )
    def post(self, request, appeal_id):
        serializer = AppealStatusActionSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data
        common = {
            "actor": request.user,
            "expected_version": data.get("expected_version"),
            "request_id": _request_id(request),
        }
        action = data["action"]
        try:
            if action == "start_review":
                appeal = AppealService.start_review(appeal_id, **common)
            elif action == "request_documents":
                appeal = AppealService.request_documents(appeal_id, notes=data["notes"], **common)
            elif action == "documents_received":
                documents = [SupportingDocument(**doc) for doc in data.get("documents", [])]
                appeal = AppealService.documents_received(appeal_id, documents=documents, **common)
            else:
                appeal = AppealService.escalate(appeal_id, reason=data["reason"], **common)
        except BaseApplicationError as e:
            return Response(e.to_dict(), status=e.http_status)
        return Response(AppealSerializer(appeal).data)


class AppealResolveView(APIView):
    """
    Decide an appeal.

    POST /api/v1/appeals/{appeal_id}/resolve/

    Approvals move relief money after the decision is saved. A gateway
    failure is reported in relief_settlement_state / relief_error_code;
    the decision itself stands.
    """

    permission_classes = [IsAuthenticated, IsReviewer]

    @extend_schema(
        operation_id="resolve_appeal",
        summary="Resolve appeal",
        request=AppealResolveSerializer,
        responses={
            200: AppealResolutionResponseSerializer,
            400: OpenApiResponse(description="Validation error"),
            403: OpenApiResponse(description="Not allowed for this actor"),
            409: OpenApiResponse(description="Transition not allowed or stale version"),
        },
        tags=["Appeals - Review"],
    )
    def post(self, request, appeal_id):
        serializer = AppealResolveSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data
        try:
            result = AppealService.resolve_appeal(
                appeal_id,
                decision=data["decision"],
                actor=request.user,
                resolution=serializer.build_resolution(),
                notes=data["notes"],
                expected_version=data.get("expected_version"),
                request_id=_request_id(request),
            )
        except BaseApplicationError as e:
            return Response(e.to_dict(), status=e.http_status)
        return _resolution_response(result)


class AppealCloseView(APIView):
    """POST /api/v1/appeals/{appeal_id}/close/"""

    permission_classes = [IsAuthenticated, IsReviewer]

    @extend_schema(
        operation_id="close_appeal",
        summary="Close appeal",
        request=None,
        responses={
            200: AppealSerializer,
            409: OpenApiResponse(description="Appeal not decided yet"),
        },
        tags=["Appeals - Review"],
    )
    def post(self, request, appeal_id):
        try:
            appeal = AppealService.close_appeal(
                appeal_id,
                actor=request.user,
                request_id=_request_id(request),
            )
        except BaseApplicationError as e:
            return Response(e.to_dict(), status=e.http_status)
        return Response(AppealSerializer(appeal).data)


class AppealRetryReliefView(APIView):
    """
    Retry relief money that failed or was left unposted.

    POST /api/v1/appeals/{appeal_id}/retry-relief/
    """

    permission_classes = [IsAuthenticated, IsReviewer]

    @extend_schema(
        operation_id="retry_appeal_relief",
        summary="Retry appeal relief",
        request=None,
        responses={
            200: AppealResolutionResponseSerializer,
            409: OpenApiResponse(description="Nothing to retry"),
        },
        tags=["Appeals - Review"],
    )
    def post(self, request, appeal_id):
        try:
            result = AppealService.retry_relief(
                appeal_id,
                actor=request.user,
                request_id=_request_id(request),
            )
        except BaseApplicationError as e:
            return Response(e.to_dict(), status=e.http_status)
        return _resolution_response(result)
