"""URL configuration for the deployments app."""

from django.urls import path

from apps.deployments.views import (
    DeploymentDecisionView,
    DeploymentDetailView,
    DeploymentView,
    EnvironmentsView,
    HealthSessionView,
    PendingApprovalsView,
    PendingRollbacksView,
    RollbackDetailView,
    RollbackView,
)

app_name = "deployments"

urlpatterns = [
    path("", DeploymentView.as_view(), name="deployment-list"),
    path("pending/", PendingApprovalsView.as_view(), name="pending"),
    path(
        "environments/<slug:project_id>/",
        EnvironmentsView.as_view(),
        name="environments",
    ),
    # Rollbacks
    path("rollback/<str:environment>/", RollbackView.as_view(), name="rollback"),
    path(
        "rollback/<str:environment>/request/",
        RollbackView.as_view(mode="request"),
        name="rollback-request",
    ),
    path("rollbacks/", PendingRollbacksView.as_view(), name="rollback-pending"),
    path("rollbacks/<str:rollback_id>/", RollbackDetailView.as_view(), name="rollback-detail"),
    path(
        "rollbacks/<str:rollback_id>/approve/",
        RollbackDetailView.as_view(decision="approve"),
        name="rollback-approve",
    ),
    path(
        "rollbacks/<str:rollback_id>/reject/",
        RollbackDetailView.as_view(decision="reject"),
        name="rollback-reject",
    ),
    # Health sessions
    path("sessions/<str:session_id>/", HealthSessionView.as_view(), name="session"),
    path(
        "sessions/<str:session_id>/observe/",
        HealthSessionView.as_view(action="observe"),
        name="session-observe",
    ),
    path(
        "sessions/<str:session_id>/stop/",
        HealthSessionView.as_view(action="stop"),
        name="session-stop",
    ),
    # Single deployment
    path("<str:deployment_id>/", DeploymentDetailView.as_view(), name="deployment-detail"),
    path(
        "<str:deployment_id>/approve/",
        DeploymentDecisionView.as_view(decision="approve"),
        name="deployment-approve",
    ),
    path(
        "<str:deployment_id>/reject/",
        DeploymentDecisionView.as_view(decision="reject"),
        name="deployment-reject",
    ),
]
