"""
URL configuration for the appeals app.

Routes:
    - POST "" - Submit an appeal
    - GET mine/ - Caller's appeals
    - GET queue/ - Reviewer queue (staff)
    - GET stats/ - Appeal counters (staff)
    - GET <uuid>/ - Appeal detail
    - POST <uuid>/assign/ | status/ | resolve/ | close/ | retry-relief/ (staff)

All routes are prefixed with /api/v1/appeals/ when included in the main URLconf.
"""

from django.urls import path

from appeals import views

app_name = "appeals"

urlpatterns = [
    path("", views.AppealListCreateView.as_view(), name="submit"),
    path("mine/", views.MyAppealsView.as_view(), name="mine"),
    path("queue/", views.AppealQueueView.as_view(), name="queue"),
    path("stats/", views.AppealStatsView.as_view(), name="stats"),
    path("<uuid:appeal_id>/", views.AppealDetailView.as_view(), name="detail"),
    path("<uuid:appeal_id>/assign/", views.AppealAssignView.as_view(), name="assign"),
    path("<uuid:appeal_id>/status/", views.AppealStatusView.as_view(), name="status"),
    path("<uuid:appeal_id>/resolve/", views.AppealResolveView.as_view(), name="resolve"),
    path("<uuid:appeal_id>/close/", views.AppealCloseView.as_view(), name="close"),
    path(
        "<uuid:appeal_id>/retry-relief/",
        views.AppealRetryReliefView.as_view(),
        name="retry_relief",
    ),
]
