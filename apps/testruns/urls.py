"""URL configuration for the testruns app."""

from django.urls import path

from apps.testruns.views import MergeReadinessView, TestRunStatusView, TestRunsView

app_name = "testruns"

urlpatterns = [
    path("projects/<slug:project_id>/", TestRunsView.as_view(), name="project-tests"),
    path(
        "projects/<slug:project_id>/pull-requests/<str:pr_id>/merge-ready/",
        MergeReadinessView.as_view(),
        name="merge-ready",
    ),
    path("<str:test_execution_id>/", TestRunStatusView.as_view(), name="test-status"),
]
