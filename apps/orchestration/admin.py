"""Admin configuration for orchestration models."""

from django.contrib import admin
from django.utils.html import format_html, format_html_join
from django_object_actions import DjangoObjectActions
from django_object_actions import action as object_action

from apps.orchestration.exceptions import OrchestrationError
from apps.orchestration.models import (
    ExecutionStatus,
    PipelineConfiguration,
    PipelineExecution,
    Stage,
    StageStatus,
)

STATUS_COLORS = {
    StageStatus.SUCCESS: ("#28a745", "✓"),
    StageStatus.RUNNING: ("#ffc107", "●"),
    StageStatus.FAILED: ("#dc3545", "✗"),
    StageStatus.SKIPPED: ("#999", "-"),
}


class StageInline(admin.TabularInline):
    model = Stage
    extra = 0
    fields = [
        "position",
        "name",
        "status",
        "attempts",
        "continue_on_error",
        "error_type",
        "started_at",
        "duration_ms",
    ]
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(PipelineConfiguration)
class PipelineConfigurationAdmin(admin.ModelAdmin):
    """Configurations are immutable; the admin is read-only."""

    list_display = ["project", "version", "language", "stage_count", "created_at"]
    list_filter = ["language"]
    search_fields = ["project__slug", "config_id"]
    readonly_fields = [
        "config_id",
        "project",
        "version",
        "language",
        "target_platforms",
        "settings",
        "stages",
        "environments",
        "test_policy",
        "deployment_policy",
        "created_at",
    ]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    @admin.display(description="Stages")
    def stage_count(self, obj):
        return len(obj.stages)


@admin.register(PipelineExecution)
class PipelineExecutionAdmin(DjangoObjectActions, admin.ModelAdmin):
    list_display = [
        "execution_id",
        "project",
        "branch",
        "commit_short",
        "status",
        "environment",
        "triggered_by",
        "created_at",
    ]
    list_filter = ["status", "environment", "project"]
    search_fields = ["execution_id", "commit_id", "branch", "triggered_by"]
    readonly_fields = [
        "execution_id",
        "project",
        "configuration",
        "commit_id",
        "branch",
        "triggered_by",
        "environment",
        "parameters",
        "status",
        "cancel_requested",
        "retry_of",
        "error_message",
        "created_at",
        "started_at",
        "completed_at",
        "stage_flow",
    ]
    inlines = [StageInline]
    change_actions = ["request_cancel", "retry"]

    def get_queryset(self, request):
        return (
            super()
            .get_queryset(request)
            .select_related("project", "configuration")
            .prefetch_related("stages")
        )

    @admin.display(description="Commit")
    def commit_short(self, obj):
        return obj.commit_id[:8]

    @object_action(label="Cancel", description="Stop this pipeline at the next stage boundary")
    def request_cancel(self, request, obj):
        from apps.orchestration.container import get_services

        try:
            get_services().orchestrator.cancel(obj.execution_id, request.user.username)
        except OrchestrationError as e:
            self.message_user(request, str(e), level="warning")
            return
        self.message_user(request, f"Cancellation requested for '{obj.execution_id}'.")

    @object_action(label="Retry", description="Start a new execution of this pipeline")
    def retry(self, request, obj):
        from apps.orchestration.container import get_services
        from apps.orchestration.tasks import run_pipeline_task

        if obj.status not in (ExecutionStatus.FAILED, ExecutionStatus.CANCELLED):
            self.message_user(
                request,
                f"Can only retry failed or cancelled pipelines (current: {obj.status}).",
                level="warning",
            )
            return
        execution = get_services().orchestrator.retry_execution(
            obj.execution_id, request.user.username
        )
        run_pipeline_task.delay(execution.execution_id)
        self.message_user(request, f"Retry queued as '{execution.execution_id}'.")

    @admin.display(description="Stage flow")
    def stage_flow(self, obj):
        """Horizontal stage strip. Detail view only; it reads every stage."""
        parts = []
        for stage in obj.stages.all():
            color, icon = STATUS_COLORS.get(stage.status, ("#ccc", "○"))
            parts.append((color, icon, stage.name))
        return format_html(
            '<div style="display:flex;align-items:center;padding:8px 0;">{}</div>',
            format_html_join(
                "",
                '<span style="display:inline-block;text-align:center;margin:0 6px;">'
                '<span style="color:{};font-size:18px;">{}</span><br>'
                '<span style="font-size:11px;">{}</span></span>',
                parts,
            ),
        )
