"""
URL configuration for the settlements app.

Routes:
    - POST cancellations/ - Settle an appointment cancellation
    - GET appointments/<uuid>/ledger/ - Appointment ledger
    - GET reports/reconciliation/ - Reconciliation report (staff)
    - GET reports/tax/ - Tax report (staff)
    - GET reports/1099/<uuid>/ - Cleaner 1099 report (staff)
    - POST webhooks/stripe/ - Stripe webhook intake (signature verified)

All routes are prefixed with /api/v1/settlements/ when included in the main URLconf.
"""

from django.urls import path

from settlements import views
from settlements.webhooks.views import stripe_webhook

app_name = "settlements"

urlpatterns = [
    path("cancellations/", views.CancellationView.as_view(), name="cancellation"),
    path(
        "appointments/<uuid:appointment_id>/ledger/",
        views.AppointmentLedgerView.as_view(),
        name="appointment_ledger",
    ),
    path(
        "reports/reconciliation/",
        views.ReconciliationReportView.as_view(),
        name="reconciliation_report",
    ),
    path("reports/tax/", views.TaxReportView.as_view(), name="tax_report"),
    path(
        "reports/1099/<uuid:cleaner_id>/",
        views.Form1099ReportView.as_view(),
        name="form_1099_report",
    ),
    path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
]
