"""Admin configuration for deployments."""

from django.contrib import admin
from django_object_actions import DjangoObjectActions
from django_object_actions import action as object_action

from apps.deployments.models import (
    DeploymentLogEntry,
    DeploymentRequest,
    HealthCheckState,
    HealthSession,
    RollbackRecord,
    Snapshot,
)
from apps.orchestration.exceptions import OrchestrationError


class DeploymentLogInline(admin.TabularInline):
    model = DeploymentLogEntry
    extra = 0
    fields = ["created_at", "level", "message"]
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(DeploymentRequest)
class DeploymentRequestAdmin(DjangoObjectActions, admin.ModelAdmin):
    list_display = [
        "deployment_id",
        "project",
        "environment",
        "version",
        "status",
        "requested_by",
        "decided_by",
        "created_at",
    ]
    list_filter = ["status", "environment", "project"]
    search_fields = ["deployment_id", "version", "commit_id", "requested_by"]
    readonly_fields = [
        "deployment_id",
        "project",
        "configuration",
        "execution",
        "snapshot",
        "environment",
        "version",
        "commit_id",
        "branch",
        "stage",
        "requested_by",
        "requested_role",
        "reason",
        "status",
        "decided_by",
        "decided_at",
        "decision_reason",
        "output",
        "error_message",
        "created_at",
        "started_at",
        "completed_at",
    ]
    inlines = [DeploymentLogInline]
    change_actions = ["stop_monitoring"]

    @object_action(label="Stop monitoring", description="Stop active health sessions")
    def stop_monitoring(self, request, obj):
        from apps.orchestration.container import get_services

        monitor = get_services().monitor
        sessions = obj.health_sessions.filter(active=True)
        count = 0
        for session in sessions:
            try:
                monitor.stop_session(session.session_id, f"stopped by {request.user.username}")
            except OrchestrationError as e:
                self.message_user(request, str(e), level="warning")
                continue
            count += 1
        if not count:
            self.message_user(request, "No active health sessions.", level="warning")
            return
        self.message_user(request, f"{count} health session(s) stopped.")


@admin.register(Snapshot)
class SnapshotAdmin(admin.ModelAdmin):
    list_display = ["snapshot_id", "project", "environment", "version", "verified", "created_at"]
    list_filter = ["environment", "verified", "project"]
    search_fields = ["snapshot_id", "commit_id", "version"]
    readonly_fields = ["snapshot_id", "created_at"]


class HealthCheckStateInline(admin.TabularInline):
    model = HealthCheckState
    extra = 0
    fields = [
        "name",
        "kind",
        "target",
        "threshold",
        "consecutive_failures",
        "total_failures",
        "last_passed",
        "checked_at",
    ]
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(HealthSession)
class HealthSessionAdmin(admin.ModelAdmin):
    list_display = [
        "session_id",
        "deployment",
        "environment",
        "active",
        "rollback_recommended",
        "observations",
        "started_at",
    ]
    list_filter = ["active", "rollback_recommended", "environment"]
    search_fields = ["session_id", "deployment__deployment_id"]
    readonly_fields = [
        "session_id",
        "deployment",
        "environment",
        "active",
        "rollback_recommended",
        "recommended_check",
        "interval_seconds",
        "observations",
        "failed_observations",
        "started_at",
        "ends_at",
        "last_observed_at",
        "stopped_at",
        "stop_reason",
    ]
    inlines = [HealthCheckStateInline]


@admin.register(RollbackRecord)
class RollbackRecordAdmin(admin.ModelAdmin):
    list_display = [
        "rollback_id",
        "project",
        "environment",
        "snapshot",
        "status",
        "failed_step",
        "actor",
        "approved_by",
        "created_at",
    ]
    list_filter = ["status", "environment", "project"]
    search_fields = ["rollback_id", "actor", "reason"]
    readonly_fields = [
        "rollback_id",
        "project",
        "environment",
        "snapshot",
        "deployment",
        "reason",
        "actor",
        "approved_by",
        "decided_at",
        "status",
        "failed_step",
        "error_message",
        "analysis",
        "output",
        "health_results",
        "created_at",
        "completed_at",
    ]
