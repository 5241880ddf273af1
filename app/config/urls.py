"""
URL configuration for the Django application.

The `urlpatterns` list routes URLs to views. This is the root URL configuration
that includes all app-specific routes.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/settlements/           - Settlement endpoints
        cancellations/             - Settle a cancellation (POST)
        appointments/{id}/ledger/  - Ledger entries for an appointment
        reports/reconciliation/    - Reconciliation report (staff)
        reports/tax/               - Tax report (staff)
        reports/1099/{cleaner}/    - Cleaner 1099 report (staff)
    /api/v1/appeals/               - Appeal endpoints
        mine/                      - Appeals filed by the current user
        queue/                     - Review queue (staff)
        stats/                     - Queue statistics (staff)
        {id}/                      - Appeal detail
        {id}/assign/               - Assign a reviewer (staff)
        {id}/status/               - Workflow actions (staff)
        {id}/resolve/              - Record a decision (staff)
        {id}/close/                - Close a decided appeal (staff)
        {id}/retry-relief/         - Retry failed relief posting (staff)

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    path("settlements/", include("settlements.urls")),
    path("appeals/", include("appeals.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Settlement Admin"
admin.site.site_title = "Settlement Admin Portal"
admin.site.index_title = "Ledger, appeals and audit"
