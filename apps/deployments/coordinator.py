"""
Wiring between the pipeline, deployments and rollbacks.

Subscribes to two bus events:

- DeployStageReached: turns the pipeline's deploy stage into a
  DeploymentRequest and reports the outcome back as a StageResult.
- RollbackRecommendedEvent: rolls back automatically when the deployment's
  policy has rollback_on_failure, otherwise leaves the decision to a human.
"""

from __future__ import annotations

import logging

from apps.audit.recorder import AuditRecorder
from apps.deployments.exceptions import InsufficientPermission, InvalidTarget, RollbackFailed
from apps.deployments.models import DeploymentRequest, DeploymentStatus, Snapshot
from apps.deployments.policy import PIPELINE_ROLE, Actor, Role
from apps.deployments.rollback import RollbackController, RollbackResult
from apps.deployments.trigger import DeploymentTrigger
from apps.orchestration.dtos import StageResult
from apps.orchestration.events import DeployStageReached, EventBus, RollbackRecommendedEvent

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "release-orchestrator"


class DeploymentCoordinator:
    def __init__(
        self,
        deployment_trigger: DeploymentTrigger,
        rollback: RollbackController,
        audit: AuditRecorder,
    ):
        self.deployment_trigger = deployment_trigger
        self.rollback = rollback
        self.audit = audit

    def subscribe(self, bus: EventBus) -> None:
        bus.subscribe(DeployStageReached, self.on_deploy_stage_reached)
        bus.subscribe(RollbackRecommendedEvent, self.on_rollback_recommended)

    def on_deploy_stage_reached(self, event: DeployStageReached) -> StageResult:
        deployment = self.deployment_trigger.trigger_deployment(
            event.project_id,
            event.environment,
            version=event.commit_id[:12],
            reason=f"Pipeline {event.execution_id} on {event.branch}",
            actor=Actor(event.actor or SYSTEM_ACTOR, PIPELINE_ROLE),
            commit_id=event.commit_id,
            branch=event.branch,
            execution_id=event.execution_id,
            stage=event.stage,
        )

        if deployment.status == DeploymentStatus.PENDING_APPROVAL:
            return StageResult(
                success=True,
                output=(
                    f"Deployment {deployment.deployment_id} awaiting approval for {event.environment}"
                ),
                deferred=True,
            )
        if deployment.status == DeploymentStatus.SUCCESS:
            return StageResult(success=True, output=deployment.output, attempts=1)
        return StageResult(
            success=False,
            output=deployment.output,
            error=deployment.error_message or f"Deployment ended in {deployment.status}",
            error_type="DeploymentFailed",
        )

    def on_rollback_recommended(self, event: RollbackRecommendedEvent) -> RollbackResult | None:
        deployment = DeploymentRequest.objects.select_related("configuration", "snapshot").get(
            deployment_id=event.deployment_id
        )
        policy = deployment.configuration.plan().deployment_policy

        if not policy.rollback_on_failure:
            self.audit.record(
                "rollback_awaiting_decision",
                f"Rollback recommended for {deployment.environment}; manual decision required",
                {"deployment_id": deployment.deployment_id, "check": event.check_name},
            )
            return None

        target = self._previous_snapshot(deployment)
        if target is None:
            logger.warning(
                f"No verified snapshot to roll {deployment.environment} back to",
                extra={"deployment_id": deployment.deployment_id},
            )
            self.audit.record(
                "rollback_unavailable",
                f"Automatic rollback of {deployment.environment} impossible: no verified snapshot",
                {"deployment_id": deployment.deployment_id, "check": event.check_name},
            )
            return None

        try:
            return self.rollback.rollback(
                deployment.environment,
                target.snapshot_id,
                reason=f"Health check {event.check_name} failed {event.consecutive_failures} times",
                # rollback_on_failure stands in for an approver
                actor=Actor(SYSTEM_ACTOR, Role.ADMIN),
            )
        except (InsufficientPermission, InvalidTarget, RollbackFailed) as e:
            logger.error(
                f"Automatic rollback of {deployment.environment} failed, escalate: {e}",
                extra={"deployment_id": deployment.deployment_id},
            )
            return None

    @staticmethod
    def _previous_snapshot(deployment: DeploymentRequest) -> Snapshot | None:
        queryset = Snapshot.objects.filter(
            project_id=deployment.project_id,
            environment=deployment.environment,
            verified=True,
        )
        if deployment.snapshot_id:
            queryset = queryset.exclude(pk=deployment.snapshot_id)
        return queryset.order_by("-created_at", "-id").first()
