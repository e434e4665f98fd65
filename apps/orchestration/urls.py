"""URL configuration for the orchestration app."""

from django.urls import path

from apps.orchestration.views import (
    ConfigurationView,
    DashboardView,
    PipelineCancelView,
    PipelineRetryView,
    PipelineStatusView,
    PipelineView,
    WebhookView,
)

app_name = "orchestration"

urlpatterns = [
    # Source control webhooks
    path("webhooks/<slug:project_id>/", WebhookView.as_view(), name="webhook"),
    # Pipeline executions
    path("pipelines/", PipelineView.as_view(), name="pipeline-list"),
    path("pipelines/<str:execution_id>/", PipelineStatusView.as_view(), name="pipeline-status"),
    path(
        "pipelines/<str:execution_id>/cancel/",
        PipelineCancelView.as_view(),
        name="pipeline-cancel",
    ),
    path(
        "pipelines/<str:execution_id>/retry/",
        PipelineRetryView.as_view(),
        name="pipeline-retry",
    ),
    path("dashboard/", DashboardView.as_view(), name="dashboard"),
    # Pipeline configurations
    path(
        "projects/<slug:project_id>/configurations/",
        ConfigurationView.as_view(),
        name="configuration",
    ),
]
