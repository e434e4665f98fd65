"""
Deployment Trigger.

Validates deployment requests against the target environment's approval
policy. Requests to environments that require approval are parked in
pending_approval until an authorized, distinct actor approves or rejects
them; everything else executes straight away.

Execution captures a Snapshot of the deployed state, runs the deploy stage
through the stage executor and, on success, verifies the snapshot and opens a
health monitoring session.
"""

from __future__ import annotations

import logging
import shlex
import uuid
from typing import Any, Callable

from django.utils import timezone

from apps.audit.recorder import AuditRecorder
from apps.deployments.checks import resolve_health_checks
from apps.deployments.exceptions import AlreadyDecided, DeploymentNotFound, InsufficientPermission
from apps.deployments.models import (
    RESOLVED_STATUSES,
    DeploymentRequest,
    DeploymentStatus,
    Snapshot,
)
from apps.deployments.monitor import DeploymentMonitor
from apps.deployments.policy import Actor, approver_roles, can_approve, can_request
from apps.orchestration.dtos import EnvironmentDefinition, StageContext, StageTemplate
from apps.orchestration.events import DeploymentStatusEvent, EventBus
from apps.orchestration.exceptions import UnknownEnvironment
from apps.orchestration.executors import StageExecutor
from apps.orchestration.generator import PipelineConfigGenerator

logger = logging.getLogger(__name__)

# Called with (session_id, countdown_seconds) to schedule the next health poll
HealthPollScheduler = Callable[[str, int], Any]


class DeploymentTrigger:
    """
    Entry point for deployments.

    Usage:
        trigger = get_services().deployment_trigger
        request = trigger.trigger_deployment(
            "web-app", "production", "v1.4.0", "release", Actor("dana", Role.DEVELOPER)
        )
        request.status  # "pending_approval"
        trigger.approve(request.deployment_id, Actor("ada", Role.ADMIN))
    """

    def __init__(
        self,
        generator: PipelineConfigGenerator,
        executor: StageExecutor,
        monitor: DeploymentMonitor,
        bus: EventBus,
        audit: AuditRecorder,
        schedule_health_poll: HealthPollScheduler | None = None,
    ):
        self.generator = generator
        self.executor = executor
        self.monitor = monitor
        self.bus = bus
        self.audit = audit
        self.schedule_health_poll = schedule_health_poll

    # ------------------------------------------------------------------
    # Requests and decisions
    # ------------------------------------------------------------------

    def trigger_deployment(
        self,
        project_id: str,
        environment: str,
        version: str,
        reason: str,
        actor: Actor,
        commit_id: str = "",
        branch: str = "",
        execution_id: str | None = None,
        stage: dict[str, Any] | None = None,
        execute: bool = True,
    ) -> DeploymentRequest:
        """
        Create a deployment request.

        Returns the request in pending_approval when the environment requires
        approval. Otherwise the request is approved implicitly and, unless
        ``execute`` is False, run before returning.
        """
        if not can_request(actor):
            self._deny("request", actor, environment)

        configuration = self.generator.resolve(project_id, actor=actor.name)
        plan = configuration.plan()
        env_def = plan.environments.get(environment)
        if env_def is None:
            raise UnknownEnvironment(
                f"Environment {environment!r} is not defined for project {project_id}"
            )

        if not stage:
            template = plan.get_stage("deploy")
            stage = template.to_dict() if template else {}

        needs_approval = env_def.approval_required
        deployment = DeploymentRequest.objects.create(
            deployment_id=str(uuid.uuid4()),
            project_id=project_id,
            configuration=configuration,
            execution=self._execution(execution_id),
            environment=environment,
            version=version,
            commit_id=commit_id or version,
            branch=branch,
            stage=stage,
            requested_by=actor.name,
            requested_role=actor.role,
            reason=reason,
            status=(
                DeploymentStatus.PENDING_APPROVAL if needs_approval else DeploymentStatus.APPROVED
            ),
        )
        deployment.log(f"Deployment of {version} to {environment} requested by {actor}")

        if needs_approval:
            self.audit.record(
                "deployment_approval_requested",
                f"Deployment {version} to {environment} awaits approval",
                {
                    "deployment_id": deployment.deployment_id,
                    "project_id": project_id,
                    "environment": environment,
                    "approver_roles": sorted(approver_roles(environment)),
                },
                actor=actor.name,
            )
        else:
            self.audit.record(
                "deployment_triggered",
                f"Deployment {version} to {environment} triggered",
                {
                    "deployment_id": deployment.deployment_id,
                    "project_id": project_id,
                    "environment": environment,
                },
                actor=actor.name,
            )
        self._emit(deployment)

        if not needs_approval and execute:
            return self.execute(deployment.deployment_id)
        return deployment

    def approve(self, deployment_id: str, approver: Actor, execute: bool = True) -> DeploymentRequest:
        """
        Approve a pending request, then run it unless ``execute`` is False.

        Raises:
            InsufficientPermission: approver lacks an approver role for the
                environment, or is the requester.
            AlreadyDecided: the request already left pending_approval.
        """
        deployment = self._decide(deployment_id, approver, DeploymentStatus.APPROVED)
        if execute:
            return self.execute(deployment.deployment_id)
        return deployment

    def reject(self, deployment_id: str, approver: Actor, reason: str = "") -> DeploymentRequest:
        return self._decide(deployment_id, approver, DeploymentStatus.REJECTED, reason)

    def _decide(
        self,
        deployment_id: str,
        approver: Actor,
        status: str,
        reason: str = "",
    ) -> DeploymentRequest:
        deployment = self.get_deployment(deployment_id)
        verb = "approve" if status == DeploymentStatus.APPROVED else "reject"

        if not can_approve(approver, deployment.environment):
            self._deny(verb, approver, deployment.environment, deployment)
        if approver.name == deployment.requested_by:
            self._deny(verb, approver, deployment.environment, deployment, "own request")

        now = timezone.now()
        fields = {"status": status, "decided_by": approver.name, "decided_at": now}
        if status == DeploymentStatus.REJECTED:
            fields["decision_reason"] = reason
            fields["completed_at"] = now

        # First decision wins; a concurrent second one updates nothing.
        updated = DeploymentRequest.objects.filter(
            pk=deployment.pk, status=DeploymentStatus.PENDING_APPROVAL
        ).update(**fields)
        if not updated:
            deployment.refresh_from_db()
            raise AlreadyDecided(
                f"Deployment {deployment_id} was already decided ({deployment.status})"
            )

        deployment.refresh_from_db()
        deployment.log(f"Deployment {status} by {approver}" + (f": {reason}" if reason else ""))
        self.audit.record(
            f"deployment_{status}",
            f"Deployment {deployment.version} to {deployment.environment} {status} by {approver.name}",
            {
                "deployment_id": deployment_id,
                "environment": deployment.environment,
                "requested_by": deployment.requested_by,
                "reason": reason,
            },
            actor=approver.name,
        )
        self._emit(deployment)
        return deployment

    def _deny(
        self,
        verb: str,
        actor: Actor,
        environment: str,
        deployment: DeploymentRequest | None = None,
        detail: str = "",
    ) -> None:
        message = f"{actor} may not {verb} deployments to {environment}"
        if detail:
            message = f"{actor} may not {verb} their {detail}"
        self.audit.record(
            "deployment_permission_denied",
            message,
            {
                "deployment_id": deployment.deployment_id if deployment else None,
                "environment": environment,
                "role": actor.role,
                "operation": verb,
            },
            actor=actor.name,
        )
        raise InsufficientPermission(message)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, deployment_id: str) -> DeploymentRequest:
        """Run an approved deployment to success or failure."""
        deployment = self.get_deployment(deployment_id)
        deployment.mark_executing()
        self._emit(deployment)

        plan = deployment.configuration.plan()
        env_def = plan.environments.get(deployment.environment)
        deployment.snapshot = self._capture_snapshot(deployment)
        deployment.save(update_fields=["snapshot"])
        deployment.log(f"Captured snapshot {deployment.snapshot.snapshot_id}")

        template = self._template(deployment)
        ctx = StageContext(
            execution_id=deployment.deployment_id,
            project_id=deployment.project_id,
            commit_id=deployment.commit_id,
            branch=deployment.branch,
            environment=deployment.environment,
            variables={
                **(env_def.variables if env_def else {}),
                "DEPLOY_VERSION": deployment.version,
                "DEPLOYMENT_ID": deployment.deployment_id,
            },
        )
        result = self.executor.execute(template, ctx)

        if not result.success:
            deployment.mark_failed(result.error or "Deployment failed", output=result.output)
            deployment.log(f"Deployment failed: {deployment.error_message}", level="error")
            logger.warning(
                f"Deployment {deployment.deployment_id} failed: {deployment.error_message}",
                extra={"deployment_id": deployment.deployment_id, "project_id": deployment.project_id},
            )
            self.audit.record(
                "deployment_failed",
                f"Deployment {deployment.version} to {deployment.environment} failed",
                {
                    "deployment_id": deployment.deployment_id,
                    "error": deployment.error_message,
                    "attempts": result.attempts,
                },
                actor=deployment.requested_by,
            )
            self._emit(deployment)
            return deployment

        deployment.mark_succeeded(output=result.output)
        deployment.snapshot.mark_verified()
        deployment.log("Deployment succeeded")
        logger.info(
            f"Deployment {deployment.deployment_id} succeeded",
            extra={"deployment_id": deployment.deployment_id, "project_id": deployment.project_id},
        )
        self.audit.record(
            "deployment_executed",
            f"Deployment {deployment.version} to {deployment.environment} succeeded",
            {
                "deployment_id": deployment.deployment_id,
                "snapshot_id": deployment.snapshot.snapshot_id,
                "approved_by": deployment.decided_by,
            },
            actor=deployment.requested_by,
        )
        self._emit(deployment)
        self._start_monitoring(deployment, env_def)
        return deployment

    def _template(self, deployment: DeploymentRequest) -> StageTemplate:
        if deployment.stage:
            return StageTemplate.from_dict(deployment.stage)
        return StageTemplate(
            name="deploy",
            display_name="Deploy",
            description="Deploy application",
            commands=[
                "echo " + shlex.quote(f"Deploying {deployment.version} to {deployment.environment}")
            ],
            timeout_seconds=15 * 60,
        )

    def _capture_snapshot(self, deployment: DeploymentRequest) -> Snapshot:
        settings = deployment.configuration.settings or {}
        return Snapshot.objects.create(
            snapshot_id=str(uuid.uuid4()),
            project_id=deployment.project_id,
            environment=deployment.environment,
            version=deployment.version,
            commit_id=deployment.commit_id,
            config_files=list(settings.get("config_files") or []),
            data_backup_ref=f"backup-{deployment.environment}-{deployment.deployment_id[:8]}",
        )

    def _start_monitoring(
        self, deployment: DeploymentRequest, env_def: EnvironmentDefinition | None
    ) -> str | None:
        policy = deployment.configuration.plan().deployment_policy
        checks = resolve_health_checks(policy, env_def)
        if not checks:
            deployment.log("No health checks configured; monitoring skipped", level="warning")
            return None

        session_id = self.monitor.start_session(
            deployment.deployment_id,
            checks,
            interval_seconds=policy.health_check_interval,
            window_seconds=policy.monitoring_window,
        )
        if self.schedule_health_poll is not None:
            self.schedule_health_poll(session_id, policy.health_check_interval)
        return session_id

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_deployment(self, deployment_id: str) -> DeploymentRequest:
        try:
            return DeploymentRequest.objects.select_related("configuration").get(
                deployment_id=deployment_id
            )
        except DeploymentRequest.DoesNotExist:
            raise DeploymentNotFound(f"Deployment not found: {deployment_id}") from None

    def get_pending_approvals(
        self,
        environment: str | None = None,
        approver: Actor | None = None,
    ) -> list[DeploymentRequest]:
        """Outstanding requests, oldest first; limited to what ``approver`` may decide."""
        queryset = DeploymentRequest.objects.filter(status=DeploymentStatus.PENDING_APPROVAL)
        if environment:
            queryset = queryset.filter(environment=environment)
        pending = list(queryset.order_by("created_at", "id"))
        if approver is not None:
            pending = [
                d
                for d in pending
                if can_approve(approver, d.environment) and d.requested_by != approver.name
            ]
        return pending

    def get_deployment_history(
        self,
        environment: str | None = None,
        limit: int = 50,
        project_id: str | None = None,
    ) -> list[DeploymentRequest]:
        """Resolved requests, newest first."""
        queryset = DeploymentRequest.objects.filter(status__in=RESOLVED_STATUSES)
        if environment:
            queryset = queryset.filter(environment=environment)
        if project_id:
            queryset = queryset.filter(project_id=project_id)
        return list(queryset.order_by("-created_at", "-id")[:limit])

    def get_available_environments(self, project_id: str, actor: Actor) -> list[dict[str, Any]]:
        plan = self.generator.resolve(project_id, actor=actor.name).plan()
        return [
            {
                "name": env.name,
                "display_name": env.display_name,
                "approval_required": env.approval_required,
                "can_request": can_request(actor),
                "can_approve": can_approve(actor, env.name),
            }
            for env in plan.environments.values()
        ]

    # ------------------------------------------------------------------

    @staticmethod
    def _execution(execution_id: str | None):
        if not execution_id:
            return None
        from apps.orchestration.models import PipelineExecution

        return PipelineExecution.objects.filter(execution_id=execution_id).first()

    def _emit(self, deployment: DeploymentRequest) -> None:
        self.bus.broadcast(
            DeploymentStatusEvent(
                deployment_id=deployment.deployment_id,
                project_id=deployment.project_id,
                environment=deployment.environment,
                status=deployment.status,
                error=deployment.error_message,
            )
        )

