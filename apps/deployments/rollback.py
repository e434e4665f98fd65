"""
Rollback Controller.

Restores an environment to a verified snapshot:

1. mark the environment's active deployment rolled_back
2. restore config files and redeploy the snapshot's commit
3. re-run a reduced health-check set (each check probed once)

Rolling back directly takes an actor allowed to approve deployments to the
environment. Anyone else files a request (pending_approval) that such an
approver executes or rejects.

A failure in step 2 or 3 raises RollbackFailed carrying a failure analysis
with recovery options. That is a human-escalation condition; nothing here
retries it. Every step is audited whatever the outcome.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from django.db import transaction
from django.utils import timezone

from apps.audit.recorder import AuditRecorder
from apps.deployments.checks import resolve_health_checks
from apps.deployments.exceptions import (
    InsufficientPermission,
    InvalidTarget,
    RollbackFailed,
    RollbackNotFound,
)
from apps.deployments.health import HealthProbe, build_probe, run_check
from apps.deployments.models import (
    ACTIVE_STATUSES,
    DeploymentRequest,
    RollbackRecord,
    RollbackStatus,
    Snapshot,
)
from apps.deployments.policy import Actor, can_approve, can_request
from apps.deployments.recovery import analyze_failure
from apps.orchestration.dtos import HealthCheckSpec, StageContext, StageTemplate
from apps.orchestration.events import EventBus, RollbackEvent
from apps.orchestration.executors import StageExecutor
from apps.orchestration.generator import DEFAULT_ROLLBACK_COMMANDS, PipelineConfigGenerator

logger = logging.getLogger(__name__)

ROLLBACK_TIMEOUT_SECONDS = 15 * 60


@dataclass
class RollbackResult:
    rollback_id: str
    environment: str
    snapshot_id: str
    status: str
    deployment_id: str | None = None
    health_results: list[dict[str, Any]] = field(default_factory=list)
    output: str = ""
    requested_by: str = ""
    approved_by: str = ""

    @classmethod
    def from_record(cls, record: RollbackRecord) -> RollbackResult:
        return cls(
            rollback_id=record.rollback_id,
            environment=record.environment,
            snapshot_id=record.snapshot.snapshot_id,
            status=record.status,
            deployment_id=record.deployment.deployment_id if record.deployment else None,
            health_results=record.health_results,
            output=record.output,
            requested_by=record.actor,
            approved_by=record.approved_by,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "rollback_id": self.rollback_id,
            "environment": self.environment,
            "snapshot_id": self.snapshot_id,
            "status": self.status,
            "deployment_id": self.deployment_id,
            "health_results": self.health_results,
            "requested_by": self.requested_by,
            "approved_by": self.approved_by or None,
        }


def active_deployment(project_id: str, environment: str) -> DeploymentRequest | None:
    """The newest deployment that may still be live in the environment."""
    return (
        DeploymentRequest.objects.filter(
            project_id=project_id,
            environment=environment,
            status__in=ACTIVE_STATUSES,
        )
        .order_by("-created_at", "-id")
        .first()
    )


class RollbackController:
    """
    Usage:
        controller = get_services().rollback
        options = controller.get_rollback_options("production", project_id="web-app")

        # An approver rolls back directly
        controller.rollback("production", options[0].snapshot_id, "bad release", ada)

        # Anyone else asks first
        pending = controller.request_rollback("production", snapshot_id, "bad release", dana)
        controller.approve_rollback(pending.rollback_id, ada)
    """

    def __init__(
        self,
        generator: PipelineConfigGenerator,
        executor: StageExecutor,
        bus: EventBus,
        audit: AuditRecorder,
        probe_factory: Callable[[HealthCheckSpec], HealthProbe] = build_probe,
    ):
        self.generator = generator
        self.executor = executor
        self.bus = bus
        self.audit = audit
        self.probe_factory = probe_factory

    def rollback(
        self,
        environment: str,
        target_snapshot_id: str,
        reason: str,
        actor: Actor,
    ) -> RollbackResult:
        """
        Roll ``environment`` back to a verified snapshot.

        Raises:
            InsufficientPermission: ``actor`` may not approve deployments to
                the environment. Raised before anything is changed.
            InvalidTarget: snapshot missing, unverified or for another
                environment. Raised before anything is changed.
            RollbackFailed: redeploy or health verification failed.
        """
        if not can_approve(actor, environment):
            self._deny("roll back", actor, environment, target_snapshot_id)
        snapshot = self._validate_target(environment, target_snapshot_id, actor.name)

        record = RollbackRecord.objects.create(
            rollback_id=str(uuid.uuid4()),
            project_id=snapshot.project_id,
            environment=environment,
            snapshot=snapshot,
            reason=reason,
            actor=actor.name,
            approved_by=actor.name,
            decided_at=timezone.now(),
        )
        return self._execute(record)

    def request_rollback(
        self,
        environment: str,
        target_snapshot_id: str,
        reason: str,
        actor: Actor,
    ) -> RollbackResult:
        """File a rollback for an approver to execute or reject. Nothing is run yet."""
        if not can_request(actor):
            self._deny("request rollbacks of", actor, environment, target_snapshot_id)
        snapshot = self._validate_target(environment, target_snapshot_id, actor.name)

        record = RollbackRecord.objects.create(
            rollback_id=str(uuid.uuid4()),
            project_id=snapshot.project_id,
            environment=environment,
            snapshot=snapshot,
            reason=reason,
            actor=actor.name,
            status=RollbackStatus.PENDING_APPROVAL,
        )
        logger.info(
            f"Rollback {record.rollback_id} of {environment} requested by {actor}",
            extra={"project_id": snapshot.project_id, "rollback_id": record.rollback_id},
        )
        self._audit_step(
            record,
            "rollback_requested",
            f"Rollback of {environment} to {snapshot.commit_id} requested: {reason}",
        )
        self._emit(record)
        return RollbackResult.from_record(record)

    def approve_rollback(self, rollback_id: str, approver: Actor) -> RollbackResult:
        """
        Approve a pending request and execute it.

        Raises:
            InsufficientPermission: wrong role, or the approver filed the request.
            InvalidTransition: the request was already decided.
            InvalidTarget: the snapshot stopped being a valid target.
            RollbackFailed: redeploy or health verification failed.
        """
        record = self._pending(rollback_id, approver, "approve")
        self._validate_target(record.environment, record.snapshot.snapshot_id, approver.name)
        record.decide(RollbackStatus.IN_PROGRESS, approver.name)
        self._audit_step(
            record,
            "rollback_approved",
            f"Rollback of {record.environment} approved by {approver}",
            actor=approver.name,
        )
        return self._execute(record)

    def reject_rollback(
        self, rollback_id: str, approver: Actor, reason: str = ""
    ) -> RollbackResult:
        record = self._pending(rollback_id, approver, "reject")
        record.decide(RollbackStatus.REJECTED, approver.name, error_message=reason)
        self._audit_step(
            record,
            "rollback_request_rejected",
            f"Rollback of {record.environment} rejected by {approver}: {reason}",
            actor=approver.name,
        )
        self._emit(record)
        return RollbackResult.from_record(record)

    def get_rollback(self, rollback_id: str) -> RollbackRecord:
        try:
            return RollbackRecord.objects.select_related("snapshot", "deployment").get(
                rollback_id=rollback_id
            )
        except RollbackRecord.DoesNotExist:
            raise RollbackNotFound(f"Rollback not found: {rollback_id}") from None

    def get_pending_rollbacks(self, environment: str | None = None) -> list[RollbackRecord]:
        """Outstanding rollback requests, oldest first."""
        queryset = RollbackRecord.objects.select_related("snapshot").filter(
            status=RollbackStatus.PENDING_APPROVAL
        )
        if environment:
            queryset = queryset.filter(environment=environment)
        return list(queryset.order_by("created_at", "id"))

    def get_rollback_options(
        self, environment: str, project_id: str | None = None, limit: int = 20
    ) -> list[Snapshot]:
        """Verified snapshots for the environment, newest first."""
        queryset = Snapshot.objects.filter(environment=environment, verified=True)
        if project_id:
            queryset = queryset.filter(project_id=project_id)
        return list(queryset.order_by("-created_at", "-id")[:limit])

    def get_history(self, environment: str | None = None, limit: int = 50) -> list[RollbackRecord]:
        queryset = RollbackRecord.objects.select_related("snapshot", "deployment")
        if environment:
            queryset = queryset.filter(environment=environment)
        return list(queryset.order_by("-created_at", "-id")[:limit])

    def _execute(self, record: RollbackRecord) -> RollbackResult:
        snapshot = record.snapshot
        environment = record.environment
        configuration = self.generator.resolve(snapshot.project_id, actor=record.actor)
        plan = configuration.plan()

        # Step 1
        with transaction.atomic():
            deployment = active_deployment(snapshot.project_id, environment)
            if deployment is not None:
                record.deployment = deployment
                record.save(update_fields=["deployment"])
                deployment.mark_rolled_back()
                deployment.log(
                    f"Rolled back to snapshot {snapshot.snapshot_id}: {record.reason}",
                    level="warning",
                )

        self._audit_step(
            record, "rollback_started", f"Rollback of {environment} to {snapshot.commit_id} started"
        )
        self._audit_step(
            record,
            "rollback_deployment_marked",
            (
                f"Deployment {deployment.deployment_id} marked rolled_back"
                if deployment
                else f"No active deployment in {environment}"
            ),
        )

        # Step 2
        commands = plan.deployment_policy.rollback_commands or list(DEFAULT_ROLLBACK_COMMANDS)
        template = StageTemplate(
            name="rollback",
            display_name="Rollback",
            description=f"Restore {environment} to {snapshot.commit_id}",
            commands=commands,
            timeout_seconds=ROLLBACK_TIMEOUT_SECONDS,
        )
        env_def = plan.environments.get(environment)
        ctx = StageContext(
            execution_id=record.rollback_id,
            project_id=snapshot.project_id,
            commit_id=snapshot.commit_id,
            branch="",
            environment=environment,
            variables={
                **(env_def.variables if env_def else {}),
                "ROLLBACK_COMMIT": snapshot.commit_id,
                "ROLLBACK_VERSION": snapshot.version,
                "ROLLBACK_SNAPSHOT": snapshot.snapshot_id,
                "ROLLBACK_CONFIG_FILES": " ".join(snapshot.config_files),
                "ROLLBACK_DATA_BACKUP": snapshot.data_backup_ref,
            },
        )
        redeploy = self.executor.execute(template, ctx)
        if not redeploy.success:
            self._fail(
                record,
                "redeploy",
                f"Redeploy of {snapshot.commit_id} failed: {redeploy.error}",
                redeploy.output,
            )
        self._audit_step(
            record, "rollback_redeployed", f"Redeployed {snapshot.commit_id} to {environment}"
        )

        # Step 3
        health_results = []
        for spec in resolve_health_checks(plan.deployment_policy, env_def):
            health_results.append(run_check(spec, self.probe_factory).to_dict())
        record.health_results = health_results
        record.output = redeploy.output
        record.save(update_fields=["health_results", "output"])

        failing = [r["name"] for r in health_results if not r["passed"]]
        if failing:
            self._fail(
                record,
                "health_check",
                f"Health checks failed after rollback: {', '.join(failing)}",
                redeploy.output,
            )
        self._audit_step(
            record,
            "rollback_health_verified",
            f"{len(health_results)} health checks passed after rollback",
        )

        record.finish(RollbackStatus.SUCCESS)
        logger.info(
            f"Rollback {record.rollback_id} of {environment} succeeded",
            extra={"project_id": snapshot.project_id, "rollback_id": record.rollback_id},
        )
        self._audit_step(record, "rollback_completed", f"Rollback of {environment} completed")
        self._emit(record)
        return RollbackResult.from_record(record)

    def _pending(self, rollback_id: str, approver: Actor, verb: str) -> RollbackRecord:
        record = self.get_rollback(rollback_id)
        if not can_approve(approver, record.environment):
            self._deny(
                f"{verb} rollbacks of", approver, record.environment, rollback_id=rollback_id
            )
        if approver.name == record.actor:
            message = f"{approver} may not {verb} their own rollback request"
            self._deny_with(message, approver, record.environment, rollback_id=rollback_id)
        return record

    def _deny(
        self,
        verb: str,
        actor: Actor,
        environment: str,
        snapshot_id: str = "",
        rollback_id: str = "",
    ) -> None:
        message = f"{actor} may not {verb} {environment}"
        self._deny_with(message, actor, environment, snapshot_id, rollback_id)

    def _deny_with(
        self,
        message: str,
        actor: Actor,
        environment: str,
        snapshot_id: str = "",
        rollback_id: str = "",
    ) -> None:
        self.audit.record(
            "rollback_permission_denied",
            message,
            {
                "environment": environment,
                "snapshot_id": snapshot_id or None,
                "rollback_id": rollback_id or None,
                "role": actor.role,
            },
            actor=actor.name,
        )
        raise InsufficientPermission(message)

    def _validate_target(self, environment: str, snapshot_id: str, actor: str) -> Snapshot:
        snapshot = Snapshot.objects.filter(snapshot_id=snapshot_id).first()
        problem = ""
        if snapshot is None:
            problem = f"Snapshot {snapshot_id} does not exist"
        elif snapshot.environment != environment:
            problem = f"Snapshot {snapshot_id} belongs to {snapshot.environment}, not {environment}"
        elif not snapshot.verified:
            problem = f"Snapshot {snapshot_id} is not verified"

        if problem:
            self.audit.record(
                "rollback_rejected",
                problem,
                {"environment": environment, "snapshot_id": snapshot_id},
                actor=actor,
            )
            raise InvalidTarget(problem)
        return snapshot

    def _audit_step(
        self,
        record: RollbackRecord,
        action: str,
        description: str,
        actor: str = "",
        **details: Any,
    ) -> None:
        self.audit.record(
            action,
            description,
            {
                "rollback_id": record.rollback_id,
                "environment": record.environment,
                "snapshot_id": record.snapshot.snapshot_id,
                **details,
            },
            actor=actor or record.actor,
        )

    def _fail(self, record: RollbackRecord, step: str, message: str, output: str = "") -> None:
        analysis = analyze_failure(record, step, message).to_dict()
        record.finish(
            RollbackStatus.FAILED,
            failed_step=step,
            error_message=message,
            output=output,
            analysis=analysis,
        )
        logger.error(
            f"Rollback {record.rollback_id} failed at {step}: {message}",
            extra={"rollback_id": record.rollback_id, "environment": record.environment},
        )
        self._audit_step(
            record,
            "rollback_failed",
            message,
            category=analysis["category"],
            severity=analysis["severity"],
            root_cause=analysis["root_cause"],
        )
        self._emit(record)
        raise RollbackFailed(message, rollback_id=record.rollback_id, step=step, analysis=analysis)

    def _emit(self, record: RollbackRecord) -> None:
        self.bus.broadcast(
            RollbackEvent(
                rollback_id=record.rollback_id,
                environment=record.environment,
                snapshot_id=record.snapshot.snapshot_id,
                status=record.status,
                error=record.error_message,
            )
        )
