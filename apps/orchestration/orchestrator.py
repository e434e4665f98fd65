"""
Pipeline Orchestrator service.

The top-level coordinator. Sequences the stages of a PipelineExecution for a
commit/branch, one at a time and strictly in configuration order.

Key responsibilities:
1. State machine: running -> success | failed | cancelled (terminal states are final)
2. Stage records created PENDING up front, then RUNNING -> SUCCESS/FAILED/SKIPPED
3. Failure policy: a failed stage without continue_on_error skips every later stage
4. Cancellation honoured at stage boundaries
5. Deploy hand-off: the deploy stage is published as DeployStageReached and
   handled by whoever subscribed (the deployments app)
6. Observability: progress events on the bus, audit actions for every outcome
"""

from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass
from typing import Any, Callable

from django.conf import settings
from django.db import transaction

from apps.audit.recorder import AuditRecorder
from apps.orchestration.dtos import StageContext, StageResult, StageTemplate
from apps.orchestration.events import (
    DeployStageReached,
    EventBus,
    PipelineStatusEvent,
    StageProgressEvent,
)
from apps.orchestration.exceptions import (
    InvalidTransition,
    OrchestrationError,
    PipelineNotFound,
    UnknownEnvironment,
)
from apps.orchestration.executors import StageExecutor
from apps.orchestration.generator import PipelineConfigGenerator
from apps.orchestration.models import (
    ExecutionStatus,
    PipelineConfiguration,
    PipelineExecution,
    Stage,
    StageStatus,
)
from apps.orchestration.webhooks import PullRequestEvent, PushEvent, ReleaseEvent, WebhookEvent

logger = logging.getLogger(__name__)

DEPLOY_STAGE = "deploy"

# Stages that only make sense once the deployment has actually happened
POST_DEPLOY_STAGES = ("post_deploy_test", "monitor_setup")

PR_TEST_ACTIONS = ("opened", "synchronize")


@dataclass
class WebhookOutcome:
    """What a webhook caused: nothing, a test run, a pipeline, or both."""

    action: str
    execution: PipelineExecution | None = None
    test_execution: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "execution_id": self.execution.execution_id if self.execution else None,
            "test_execution_id": (
                self.test_execution.test_execution_id if self.test_execution else None
            ),
        }


class PipelineOrchestrator:
    """
    Main orchestrator service for pipeline execution.

    Usage:
        orchestrator = get_services().orchestrator
        execution = orchestrator.trigger("web-app", commit_id="abc123", branch="main", actor="dev")
        orchestrator.run(execution.execution_id)
    """

    def __init__(
        self,
        generator: PipelineConfigGenerator,
        executor: StageExecutor,
        bus: EventBus,
        audit: AuditRecorder,
        test_trigger: Any = None,
        scm_provider_factory: Callable[[str], Any] | None = None,
        default_environment: str | None = None,
        release_environment: str | None = None,
        open_issue_on_failure: bool | None = None,
    ):
        self.generator = generator
        self.executor = executor
        self.bus = bus
        self.audit = audit
        self.test_trigger = test_trigger
        self.scm_provider_factory = scm_provider_factory
        self.default_environment = default_environment or getattr(
            settings, "ORCHESTRATION_DEFAULT_ENVIRONMENT", "development"
        )
        self.release_environment = release_environment or getattr(
            settings, "ORCHESTRATION_RELEASE_ENVIRONMENT", "production"
        )
        self.open_issue_on_failure = (
            open_issue_on_failure
            if open_issue_on_failure is not None
            else bool(getattr(settings, "ORCHESTRATION_OPEN_ISSUE_ON_FAILURE", False))
        )

    # ------------------------------------------------------------------
    # Triggering
    # ------------------------------------------------------------------

    def trigger(
        self,
        project_id: str,
        commit_id: str,
        branch: str,
        actor: str,
        environment: str | None = None,
        parameters: dict[str, Any] | None = None,
        configuration: PipelineConfiguration | None = None,
        retry_of: PipelineExecution | None = None,
    ) -> PipelineExecution:
        """
        Accept a trigger and create the execution with all stages PENDING.

        Does not run anything; call run() (directly or through a Celery task).
        """
        if configuration is None:
            configuration = self.generator.resolve(project_id, actor=actor)
        plan = configuration.plan()
        environment = environment or self.default_environment
        if environment not in plan.environments:
            raise UnknownEnvironment(
                f"Environment '{environment}' is not defined for project {project_id}"
            )

        with transaction.atomic():
            execution = PipelineExecution.objects.create(
                execution_id=str(uuid.uuid4()),
                project_id=project_id,
                configuration=configuration,
                commit_id=commit_id,
                branch=branch,
                triggered_by=actor,
                environment=environment,
                parameters=dict(parameters or {}),
                status=ExecutionStatus.RUNNING,
                retry_of=retry_of,
            )
            Stage.objects.bulk_create(
                [
                    Stage(
                        execution=execution,
                        position=position,
                        name=template.name,
                        continue_on_error=template.continue_on_error,
                    )
                    for position, template in enumerate(plan.stages)
                ]
            )

        logger.info(
            f"Pipeline triggered: {execution.execution_id} for {project_id}@{branch} ({commit_id})",
            extra={"execution_id": execution.execution_id, "project_id": project_id},
        )
        self.audit.record(
            "pipeline_triggered",
            f"Pipeline triggered for {project_id} on {branch}",
            {
                "execution_id": execution.execution_id,
                "project_id": project_id,
                "commit_id": commit_id,
                "branch": branch,
                "environment": environment,
                "config_version": configuration.version,
            },
            actor=actor,
        )
        self.bus.broadcast(
            PipelineStatusEvent(
                execution_id=execution.execution_id,
                project_id=project_id,
                status=ExecutionStatus.RUNNING,
            )
        )
        return execution

    def retry_execution(self, execution_id: str, actor: str) -> PipelineExecution:
        """Start a new execution of the same commit/branch/configuration."""
        original = self.get_execution(execution_id)
        if original.status not in (ExecutionStatus.FAILED, ExecutionStatus.CANCELLED):
            raise InvalidTransition(
                f"Only failed or cancelled pipelines can be retried (current: {original.status})"
            )
        return self.trigger(
            project_id=original.project_id,
            commit_id=original.commit_id,
            branch=original.branch,
            actor=actor,
            environment=original.environment,
            parameters=original.parameters,
            configuration=original.configuration,
            retry_of=original,
        )

    def cancel(self, execution_id: str, actor: str) -> PipelineExecution:
        """
        Request cancellation.

        The running stage finishes (or times out); no later stage starts.
        """
        updated = PipelineExecution.objects.filter(
            execution_id=execution_id, status=ExecutionStatus.RUNNING
        ).update(cancel_requested=True)
        execution = self.get_execution(execution_id)
        if not updated:
            raise InvalidTransition(
                f"Pipeline {execution_id} is already {execution.status}; cannot cancel"
            )
        self.audit.record(
            "pipeline_cancel_requested",
            f"Cancellation requested for pipeline {execution_id}",
            {"execution_id": execution_id, "project_id": execution.project_id},
            actor=actor,
        )
        return execution

    def get_execution(self, execution_id: str) -> PipelineExecution:
        try:
            return PipelineExecution.objects.select_related("configuration").get(
                execution_id=execution_id
            )
        except PipelineExecution.DoesNotExist:
            raise PipelineNotFound(f"Pipeline execution not found: {execution_id}")

    def get_history(self, project_id: str, limit: int = 50) -> list[PipelineExecution]:
        return list(
            PipelineExecution.objects.filter(project_id=project_id).order_by("-created_at", "-id")[
                :limit
            ]
        )

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    def run(self, execution_id: str) -> PipelineExecution:
        """
        Execute the stages of a triggered execution in order.

        The execution is claimed first, so a duplicate task delivery cannot run
        the same stages twice.
        """
        execution = self.get_execution(execution_id)
        execution.claim()

        plan = execution.configuration.plan()
        stages = list(execution.stages.order_by("position"))

        try:
            for index, stage in enumerate(stages):
                if stage.status != StageStatus.PENDING:
                    continue

                if execution.cancellation_requested():
                    self._skip(execution, stages[index:], "pipeline cancelled")
                    self._finish(execution, ExecutionStatus.CANCELLED, "Cancelled by request")
                    return execution

                template = plan.stages[stage.position]
                result = self._run_stage(execution, stage, template, plan.environments)

                if not result.success and not template.continue_on_error:
                    self._skip(execution, stages[index + 1 :], f"stage {stage.name} failed")
                    self._finish(
                        execution,
                        ExecutionStatus.FAILED,
                        f"Stage {stage.name} failed: {result.error}",
                    )
                    return execution

                if result.deferred:
                    deferred = [s for s in stages[index + 1 :] if s.name in POST_DEPLOY_STAGES]
                    self._skip(execution, deferred, "deployment awaiting approval")

            self._finish(execution, ExecutionStatus.SUCCESS)

        except Exception as e:
            logger.exception(
                f"Pipeline failed unexpectedly: {e}",
                extra={"execution_id": execution.execution_id, "project_id": execution.project_id},
            )
            for stage in stages:
                stage.refresh_from_db()
                if stage.status == StageStatus.RUNNING:
                    stage.mark_failed(type(e).__name__, str(e))
                    self._emit_stage(execution, stage)
            pending = [s for s in stages if s.status == StageStatus.PENDING]
            self._skip(execution, pending, "pipeline error")
            execution.refresh_from_db()
            if execution.is_running:
                self._finish(execution, ExecutionStatus.FAILED, f"{type(e).__name__}: {e}")

        return execution

    def _run_stage(
        self,
        execution: PipelineExecution,
        stage: Stage,
        template: StageTemplate,
        environments: dict,
    ) -> StageResult:
        env_def = environments.get(execution.environment)
        variables = dict(env_def.variables) if env_def else {}
        variables.update(execution.parameters.get("variables", {}))

        ctx = StageContext(
            execution_id=execution.execution_id,
            project_id=execution.project_id,
            commit_id=execution.commit_id,
            branch=execution.branch,
            environment=execution.environment,
            workspace=self._workspace(execution.project_id),
            variables=variables,
        )

        stage.mark_running()
        self._emit_stage(execution, stage)

        if template.name == DEPLOY_STAGE:
            result = self._run_deploy_stage(execution, template, ctx)
        else:
            result = self.executor.execute(template, ctx)

        if result.success and result.deferred:
            stage.mark_deferred(output=result.output, reason="deployment awaiting approval")
        elif result.success:
            stage.mark_succeeded(output=result.output, attempts=result.attempts)
        else:
            stage.mark_failed(
                error_type=result.error_type or "StageExecutionError",
                error=result.error or "",
                output=result.output,
                attempts=result.attempts,
            )
            self.audit.record(
                "pipeline_stage_failed",
                f"Stage {stage.name} failed for pipeline {execution.execution_id}",
                {
                    "execution_id": execution.execution_id,
                    "stage": stage.name,
                    "error_type": stage.error_type,
                    "error": stage.error,
                    "attempts": stage.attempts,
                    "continue_on_error": template.continue_on_error,
                },
                actor=execution.triggered_by,
            )
        self._emit_stage(execution, stage)
        return result

    def _run_deploy_stage(
        self,
        execution: PipelineExecution,
        template: StageTemplate,
        ctx: StageContext,
    ) -> StageResult:
        """Hand the deploy stage to the deployment subscriber, or run it directly."""
        if not self.bus.has_subscribers(DeployStageReached):
            return self.executor.execute(template, ctx)

        event = DeployStageReached(
            execution_id=execution.execution_id,
            project_id=execution.project_id,
            environment=execution.environment,
            commit_id=execution.commit_id,
            branch=execution.branch,
            actor=execution.triggered_by,
            stage=template.to_dict(),
        )
        try:
            result = self.bus.dispatch(event)
        except OrchestrationError as e:
            return StageResult(
                success=False,
                error=str(e),
                error_type=type(e).__name__,
                retryable=False,
            )
        if not isinstance(result, StageResult):
            return self.executor.execute(template, ctx)
        return result

    def _workspace(self, project_id: str) -> str:
        root = getattr(settings, "ORCHESTRATION_WORKSPACE_ROOT", "")
        if not root:
            return ""
        path = os.path.join(root, project_id)
        os.makedirs(path, exist_ok=True)
        return path

    def _skip(self, execution: PipelineExecution, stages: list[Stage], reason: str) -> None:
        for stage in stages:
            if stage.status == StageStatus.PENDING:
                stage.mark_skipped(reason)
                self._emit_stage(execution, stage)

    def _emit_stage(self, execution: PipelineExecution, stage: Stage) -> None:
        self.bus.broadcast(
            StageProgressEvent(
                execution_id=execution.execution_id,
                project_id=execution.project_id,
                stage=stage.name,
                position=stage.position,
                status=stage.status,
                error=stage.error if stage.status == StageStatus.FAILED else "",
            )
        )

    def _finish(self, execution: PipelineExecution, status: str, error: str = "") -> None:
        if status == ExecutionStatus.SUCCESS:
            execution.mark_succeeded()
        elif status == ExecutionStatus.CANCELLED:
            execution.mark_cancelled(error)
        else:
            execution.mark_failed(error)

        logger.info(
            f"Pipeline {execution.execution_id} finished: {status}",
            extra={"execution_id": execution.execution_id, "project_id": execution.project_id},
        )
        self.audit.record(
            f"pipeline_{status}",
            f"Pipeline {execution.execution_id} finished with status {status}",
            {
                "execution_id": execution.execution_id,
                "project_id": execution.project_id,
                "error": error,
                "duration_ms": execution.duration_ms,
            },
            actor=execution.triggered_by,
        )
        self.bus.broadcast(
            PipelineStatusEvent(
                execution_id=execution.execution_id,
                project_id=execution.project_id,
                status=status,
                error=error,
            )
        )
        if status == ExecutionStatus.FAILED and self.open_issue_on_failure:
            self._open_failure_issue(execution)

    def _open_failure_issue(self, execution: PipelineExecution) -> None:
        """Open an issue on the project's repository. Failures are logged, not raised."""
        from apps.scm.exceptions import ProviderError

        project = execution.project
        if not (project.scm_provider and project.repository and self.scm_provider_factory):
            return

        failed = execution.stages.filter(status=StageStatus.FAILED).first()
        body = (
            f"Pipeline `{execution.execution_id}` failed on `{execution.branch}` "
            f"at commit `{execution.commit_id}`.\n\n{execution.error_message}"
        )
        if failed and failed.output:
            body += f"\n\n```\n{failed.output[-2000:]}\n```"

        try:
            provider = self.scm_provider_factory(project.scm_provider)
            issue = provider.create_issue(
                project.repository,
                title=f"Pipeline failed on {execution.branch} ({execution.commit_id[:8]})",
                body=body,
                labels=["ci-failure"],
            )
        except ProviderError as e:
            logger.warning(
                f"Could not open failure issue for pipeline {execution.execution_id}: {e}",
                extra={"execution_id": execution.execution_id},
            )
            self.audit.record(
                "pipeline_failure_issue_error",
                f"Could not open failure issue: {e}",
                {"execution_id": execution.execution_id},
            )
            return

        self.audit.record(
            "pipeline_failure_issue_opened",
            f"Opened issue {issue.number} for failed pipeline {execution.execution_id}",
            {"execution_id": execution.execution_id, "issue": issue.url},
        )

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def handle_webhook(self, project_id: str, event: WebhookEvent | None) -> WebhookOutcome:
        """
        Route a parsed webhook.

        push                      -> commit test run + pipeline to the default environment
        release published         -> pipeline to the release environment
        pull_request opened/sync  -> test run only, no pipeline
        anything else             -> ignored
        """
        if isinstance(event, PushEvent):
            test_execution = None
            if self.test_trigger is not None:
                test_execution = self.test_trigger.trigger_on_commit(
                    project_id,
                    event.commit_id,
                    event.branch,
                    event.actor,
                    changed_files=event.changed_files,
                )
            execution = self.trigger(
                project_id,
                commit_id=event.commit_id,
                branch=event.branch,
                actor=event.actor,
                environment=self.default_environment,
                parameters={"trigger": "push"},
            )
            return WebhookOutcome("pipeline", execution=execution, test_execution=test_execution)

        if isinstance(event, ReleaseEvent) and event.action == "published":
            execution = self.trigger(
                project_id,
                commit_id=event.commit_id or event.tag_name,
                branch=event.tag_name,
                actor=event.actor,
                environment=self.release_environment,
                parameters={"trigger": "release", "tag": event.tag_name},
            )
            return WebhookOutcome("pipeline", execution=execution)

        if isinstance(event, PullRequestEvent) and event.action in PR_TEST_ACTIONS:
            if self.test_trigger is None:
                return WebhookOutcome("ignored")
            test_execution = self.test_trigger.trigger_on_pull_request(
                project_id,
                event.pr_id,
                event.source_branch,
                event.target_branch,
                event.actor,
                commit_id=event.commit_id,
            )
            return WebhookOutcome("tests", test_execution=test_execution)

        return WebhookOutcome("ignored")
