"""
API views for cancellation settlement, ledgers and reports.

Provides:
- CancellationView: Settle an appointment cancellation
- AppointmentLedgerView: Ledger entries, summary and balance for one appointment
- ReconciliationReportView: Grouped totals and unreconciled entries (staff)
- TaxReportView: Per-party 1099 totals and grouped summary (staff)
- Form1099ReportView: One cleaner's 1099 report (staff)
"""

from __future__ import annotations

import logging

from django.utils import timezone
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.permissions import IsReviewer
from core.exceptions import BaseApplicationError
from settlements.exceptions import SettlementFailedError
from settlements.ledger.services import LedgerService
from settlements.models import AppointmentCharge
from settlements.policy import CancelledBy
from settlements.serializers import (
    AppointmentLedgerSerializer,
    BreakdownSerializer,
    CancellationRequestSerializer,
    Form1099QuerySerializer,
    ReconciliationReportQuerySerializer,
    TaxReportQuerySerializer,
)
from settlements.services import ReportService, SettlementService

logger = logging.getLogger(__name__)


def _can_access_charge(user, charge: AppointmentCharge) -> bool:
    if user.is_reviewer or charge.homeowner_id == user.id:
        return True
    return charge.cleaner_assignments.filter(cleaner_id=user.id).exists()


def _not_found(appointment_id) -> Response:
    return Response(
        {
            "error": "Appointment not found",
            "error_code": "APPOINTMENT_NOT_FOUND",
            "details": {"appointment_id": str(appointment_id)},
        },
        status=status.HTTP_404_NOT_FOUND,
    )


# =============================================================================
# Cancellation
# =============================================================================


class CancellationView(APIView):
    """
    Settle the cancellation of an appointment.

    POST /api/v1/settlements/cancellations/

    Authentication:
        Requires valid JWT token. Homeowners may cancel their own
        appointments, cleaners the appointments they are assigned to.
        Staff reviewers may cancel on behalf of either party.

    Response:
        201 Created: Breakdown of the settlement
        400 Bad Request: Validation error
        403 Forbidden: Not a party to the appointment
        404 Not Found: No charge recorded for the appointment
        409 Conflict: Appointment already cancelled or settlement in progress
        502 Bad Gateway: Gateway refused; no charges were made
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="settle_cancellation",
        summary="Cancel an appointment",
        description=(
            "Computes the cancellation policy outcome, moves the refund, fee and "
            "cleaner payouts through the payment gateway, and records balanced "
            "ledger pairs. Repeating the request returns the stored breakdown."
        ),
        request=CancellationRequestSerializer,
        responses={
            201: OpenApiResponse(
                response=BreakdownSerializer,
                description="Settlement breakdown",
            ),
            400: OpenApiResponse(description="Validation error"),
            403: OpenApiResponse(description="Not a party to the appointment"),
            404: OpenApiResponse(description="Appointment not found"),
            409: OpenApiResponse(description="Already cancelled or settlement in progress"),
            502: OpenApiResponse(
                description="Unable to complete settlement. No charges were made."
            ),
        },
        tags=["Settlements"],
    )
    def post(self, request):
        serializer = CancellationRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data
        appointment_id = data["appointment_id"]
        cancelled_by = data["cancelled_by"]
        user = request.user

        charge = AppointmentCharge.objects.filter(appointment_id=appointment_id).first()
        if charge is None:
            return _not_found(appointment_id)

        if not user.is_reviewer:
            allowed = (
                charge.homeowner_id == user.id
                if cancelled_by == CancelledBy.HOMEOWNER
                else charge.cleaner_assignments.filter(cleaner_id=user.id).exists()
            )
            if not allowed or "requested_at" in data:
                return Response(
                    {
                        "error": "You may not cancel this appointment",
                        "error_code": "PERMISSION_DENIED",
                    },
                    status=status.HTTP_403_FORBIDDEN,
                )

        try:
            breakdown = SettlementService.settle_cancellation(
                appointment_id=appointment_id,
                cancelled_by=cancelled_by,
                actor_id=user.id,
                now=data.get("requested_at") or timezone.now(),
                request_id=request.headers.get("X-Request-ID"),
            )
        except SettlementFailedError as e:
            return Response(
                {
                    "error": SettlementFailedError.USER_MESSAGE,
                    "error_code": e.error_code,
                    "details": e.details,
                },
                status=e.http_status,
            )
        except BaseApplicationError as e:
            return Response(e.to_dict(), status=e.http_status)

        return Response(
            BreakdownSerializer(breakdown.to_dict()).data,
            status=status.HTTP_201_CREATED,
        )


# =============================================================================
# Ledger
# =============================================================================


class AppointmentLedgerView(APIView):
    """
    Ledger entries for one appointment.

    GET /api/v1/settlements/appointments/{appointment_id}/ledger/

    Authentication:
        Requires valid JWT token. Visible to the homeowner, assigned
        cleaners and staff reviewers.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_appointment_ledger",
        summary="Get appointment ledger",
        description="Entries in posting order, amount per entry type, and the balance check.",
        responses={
            200: OpenApiResponse(response=AppointmentLedgerSerializer),
            404: OpenApiResponse(description="Appointment not found"),
        },
        tags=["Settlements"],
    )
    def get(self, request, appointment_id):
        charge = AppointmentCharge.objects.filter(appointment_id=appointment_id).first()
        if charge is None or not _can_access_charge(request.user, charge):
            return _not_found(appointment_id)

        balance = LedgerService.get_balance(appointment_id)
        payload = {
            "appointment_id": appointment_id,
            "entries": LedgerService.get_entries(appointment_id),
            "summary": LedgerService.get_summary(appointment_id),
            "balance": {
                "debit_total_cents": balance.debit_total_cents,
                "credit_total_cents": balance.credit_total_cents,
                "entry_count": balance.entry_count,
                "is_balanced": balance.is_balanced,
            },
        }
        return Response(AppointmentLedgerSerializer(payload).data)


# =============================================================================
# Reports
# =============================================================================


class ReconciliationReportView(APIView):
    """
    Reconciliation report.

    GET /api/v1/settlements/reports/reconciliation/

    Authentication:
        Staff reviewers only.
    """

    permission_classes = [IsAuthenticated, IsReviewer]

    @extend_schema(
        operation_id="get_reconciliation_report",
        summary="Reconciliation report",
        description=(
            "Ledger totals grouped by entry type for a date range or tax period, "
            "plus every entry not yet matched against the gateway."
        ),
        parameters=[
            OpenApiParameter("start_date", OpenApiTypes.DATE, OpenApiParameter.QUERY),
            OpenApiParameter("end_date", OpenApiTypes.DATE, OpenApiParameter.QUERY),
            OpenApiParameter("tax_year", OpenApiTypes.INT, OpenApiParameter.QUERY),
            OpenApiParameter("tax_quarter", OpenApiTypes.INT, OpenApiParameter.QUERY),
        ],
        responses={
            200: OpenApiResponse(response=OpenApiTypes.OBJECT),
            400: OpenApiResponse(description="Invalid query parameters"),
            403: OpenApiResponse(description="Staff only"),
        },
        tags=["Settlements - Reports"],
    )
    def get(self, request):
        query = ReconciliationReportQuerySerializer(data=request.query_params)
        if not query.is_valid():
            return Response(query.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            report = ReportService.reconciliation_report(**query.validated_data)
        except BaseApplicationError as e:
            return Response(e.to_dict(), status=e.http_status)
        return Response(report.to_dict())


class TaxReportView(APIView):
    """
    Tax report.

    GET /api/v1/settlements/reports/tax/?tax_year=2026[&tax_quarter=1]

    Authentication:
        Staff reviewers only.
    """

    permission_classes = [IsAuthenticated, IsReviewer]

    @extend_schema(
        operation_id="get_tax_report",
        summary="Tax report",
        description="Per-cleaner 1099-eligible totals and grouped tax-reportable entries.",
        parameters=[
            OpenApiParameter(
                "tax_year", OpenApiTypes.INT, OpenApiParameter.QUERY, required=True
            ),
            OpenApiParameter("tax_quarter", OpenApiTypes.INT, OpenApiParameter.QUERY),
        ],
        responses={
            200: OpenApiResponse(response=OpenApiTypes.OBJECT),
            400: OpenApiResponse(description="Invalid query parameters"),
            403: OpenApiResponse(description="Staff only"),
        },
        tags=["Settlements - Reports"],
    )
    def get(self, request):
        query = TaxReportQuerySerializer(data=request.query_params)
        if not query.is_valid():
            return Response(query.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            report = ReportService.tax_report(**query.validated_data)
        except BaseApplicationError as e:
            return Response(e.to_dict(), status=e.http_status)
        return Response(report.to_dict())


class Form1099ReportView(APIView):
    """
    One cleaner's 1099 report.

    GET /api/v1/settlements/reports/1099/{cleaner_id}/?tax_year=2026

    Authentication:
        Staff reviewers only.
    """

    permission_classes = [IsAuthenticated, IsReviewer]

    @extend_schema(
        operation_id="get_1099_report",
        summary="Cleaner 1099 report",
        parameters=[
            OpenApiParameter(
                "tax_year", OpenApiTypes.INT, OpenApiParameter.QUERY, required=True
            ),
        ],
        responses={
            200: OpenApiResponse(response=OpenApiTypes.OBJECT),
            400: OpenApiResponse(description="Invalid query parameters"),
            403: OpenApiResponse(description="Staff only"),
        },
        tags=["Settlements - Reports"],
    )
    def get(self, request, cleaner_id):
        query = Form1099QuerySerializer(data=request.query_params)
        if not query.is_valid():
            return Response(query.errors, status=status.HTTP_400_BAD_REQUEST)

        report = ReportService.form_1099_report(
            cleaner_id=cleaner_id,
            tax_year=query.validated_data["tax_year"],
        )
        return Response(report.to_dict())
