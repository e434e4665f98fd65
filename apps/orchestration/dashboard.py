"""
Release dashboard.

One read-only aggregate over pipelines, deployments and rollbacks: what is
running or being monitored now, what waits for a human, recent history and
success metrics over a trailing window.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from django.db.models import Count, Q
from django.utils import timezone

from apps.audit.recorder import AuditRecorder
from apps.deployments.models import (
    DeploymentRequest,
    DeploymentStatus,
    HealthSession,
    RollbackRecord,
    RollbackStatus,
)
from apps.deployments.monitor import DeploymentMonitor
from apps.deployments.rollback import RollbackController
from apps.deployments.trigger import DeploymentTrigger
from apps.orchestration.models import ExecutionStatus, PipelineExecution

RECENT_LIMIT = 10


@dataclass
class DashboardData:
    executing_deployments: list[DeploymentRequest] = field(default_factory=list)
    monitored_sessions: list[HealthSession] = field(default_factory=list)
    pending_approvals: list[DeploymentRequest] = field(default_factory=list)
    pending_rollbacks: list[RollbackRecord] = field(default_factory=list)
    recent_executions: list[PipelineExecution] = field(default_factory=list)
    deployment_history: list[DeploymentRequest] = field(default_factory=list)
    metrics: dict[str, Any] = field(default_factory=dict)
    generated_at: Any = None


class ReleaseDashboard:
    def __init__(
        self,
        deployment_trigger: DeploymentTrigger,
        monitor: DeploymentMonitor,
        rollback: RollbackController,
        audit: AuditRecorder,
    ):
        self.deployment_trigger = deployment_trigger
        self.monitor = monitor
        self.rollback = rollback
        self.audit = audit

    def get_dashboard_data(
        self,
        project_id: str | None = None,
        environment: str | None = None,
        window_days: int = 7,
    ) -> DashboardData:
        """Everything the release overview shows, optionally narrowed to a project/environment."""
        try:
            return self._collect(project_id, environment, window_days)
        except Exception as e:
            self.audit.record(
                "dashboard_data_error",
                f"Error collecting dashboard data: {e}",
                {"project_id": project_id, "environment": environment, "error": str(e)},
            )
            raise

    def _collect(self, project_id, environment, window_days) -> DashboardData:
        now = timezone.now()
        since = now - timedelta(days=window_days)

        executing = DeploymentRequest.objects.filter(status=DeploymentStatus.EXECUTING)
        executing = self._narrow(executing, project_id, environment)

        sessions = self.monitor.get_active_sessions(environment)
        if project_id:
            sessions = [s for s in sessions if s.deployment.project_id == project_id]

        approvals = self.deployment_trigger.get_pending_approvals(environment=environment)
        rollbacks = self.rollback.get_pending_rollbacks(environment=environment)
        if project_id:
            approvals = [d for d in approvals if d.project_id == project_id]
            rollbacks = [r for r in rollbacks if r.project_id == project_id]

        executions = self._narrow(
            PipelineExecution.objects.select_related("configuration", "retry_of"),
            project_id,
            environment,
        )
        history = self.deployment_trigger.get_deployment_history(
            environment=environment, limit=RECENT_LIMIT, project_id=project_id
        )

        return DashboardData(
            executing_deployments=list(executing.order_by("-started_at", "-id")),
            monitored_sessions=sessions,
            pending_approvals=approvals,
            pending_rollbacks=rollbacks,
            recent_executions=list(executions.order_by("-created_at", "-id")[:RECENT_LIMIT]),
            deployment_history=history,
            metrics=self._metrics(project_id, environment, since, window_days),
            generated_at=now,
        )

    def _metrics(self, project_id, environment, since, window_days) -> dict[str, Any]:
        pipelines = self._narrow(
            PipelineExecution.objects.filter(created_at__gte=since), project_id, environment
        )
        pipeline_counts = pipelines.aggregate(
            total=Count("id"),
            successful=Count("id", filter=Q(status=ExecutionStatus.SUCCESS)),
            failed=Count("id", filter=Q(status=ExecutionStatus.FAILED)),
            cancelled=Count("id", filter=Q(status=ExecutionStatus.CANCELLED)),
            running=Count("id", filter=Q(status=ExecutionStatus.RUNNING)),
        )
        durations = [
            (completed - started).total_seconds()
            for started, completed in pipelines.filter(completed_at__isnull=False).values_list(
                "started_at", "completed_at"
            )
        ]

        deployments = self._narrow(
            DeploymentRequest.objects.filter(created_at__gte=since), project_id, environment
        )
        deployment_counts = deployments.aggregate(
            total=Count("id"),
            successful=Count("id", filter=Q(status=DeploymentStatus.SUCCESS)),
            failed=Count("id", filter=Q(status=DeploymentStatus.FAILED)),
            rolled_back=Count("id", filter=Q(status=DeploymentStatus.ROLLED_BACK)),
        )

        rollbacks = self._narrow(
            RollbackRecord.objects.filter(created_at__gte=since), project_id, environment
        )
        rollback_counts = rollbacks.aggregate(
            total=Count("id"),
            failed=Count("id", filter=Q(status=RollbackStatus.FAILED)),
        )

        total_runs = pipeline_counts["total"]
        return {
            "window_days": window_days,
            "pipelines": {
                **pipeline_counts,
                "success_rate": (
                    round(pipeline_counts["successful"] / total_runs * 100, 1) if total_runs else 0
                ),
                "average_duration_seconds": (
                    round(sum(durations) / len(durations), 1) if durations else 0
                ),
            },
            "deployments": {
                **deployment_counts,
                "per_day": round(deployment_counts["total"] / window_days, 2),
            },
            "rollbacks": rollback_counts,
        }

    @staticmethod
    def _narrow(queryset, project_id, environment):
        if project_id:
            queryset = queryset.filter(project_id=project_id)
        if environment:
            queryset = queryset.filter(environment=environment)
        return queryset
