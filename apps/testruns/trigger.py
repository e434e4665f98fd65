"""
Automated Test Trigger.

Selects the enabled test suites of a project's pipeline configuration for a
commit, pull request or manual request and runs them through the stage
executor. Suites run concurrently (up to max_concurrent_suites) when the test
policy allows it, otherwise one after another. Worker threads only run
commands; every database write happens on the calling thread.
"""

from __future__ import annotations

import logging
import re
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait

from apps.audit.recorder import AuditRecorder
from apps.orchestration.dtos import (
    StageContext,
    StageResult,
    StageTemplate,
    TestPolicy,
    TestSuiteTemplate,
)
from apps.orchestration.events import EventBus, TestExecutionEvent
from apps.orchestration.exceptions import ConfigurationNotFound, TestExecutionNotFound
from apps.orchestration.executors import StageExecutor
from apps.orchestration.generator import PipelineConfigGenerator
from apps.testruns.models import (
    SuiteRun,
    SuiteStatus,
    TestExecution,
    TestExecutionStatus,
    TriggerType,
)

logger = logging.getLogger(__name__)


def glob_to_regex(pattern: str) -> re.Pattern:
    """Translate a path glob: ``**/`` spans zero or more directories, ``*`` stays in one."""
    parts = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(parts))


def select_suites(
    suites: list[TestSuiteTemplate], changed_files: list[str] | None
) -> list[TestSuiteTemplate]:
    """
    Suites whose path patterns match a changed file.

    With no changed files, or when nothing matches, every suite runs.
    """
    if not changed_files:
        return list(suites)

    selected = []
    for suite in suites:
        regexes = [glob_to_regex(p) for p in suite.path_patterns]
        if any(regex.fullmatch(path) for regex in regexes for path in changed_files):
            selected.append(suite)
    return selected or list(suites)


class AutomatedTestTrigger:
    """
    Runs test suites for source-control events.

    Usage:
        trigger = get_services().test_trigger
        execution = trigger.trigger_on_commit("web-app", "abc123", "main", "dev")
        execution.status  # "passed" / "failed"
    """

    def __init__(
        self,
        generator: PipelineConfigGenerator,
        executor: StageExecutor,
        bus: EventBus,
        audit: AuditRecorder,
    ):
        self.generator = generator
        self.executor = executor
        self.bus = bus
        self.audit = audit

    def trigger_on_commit(
        self,
        project_id: str,
        commit_id: str,
        branch: str,
        author: str,
        changed_files: list[str] | None = None,
    ) -> TestExecution | None:
        """Run suites for a pushed commit. Returns None when commit triggers are off."""
        policy = self._policy(project_id, author)
        if not policy.trigger_on_commit:
            logger.info(f"Commit test trigger disabled for {project_id}")
            return None

        suites = select_suites(policy.enabled_suites(), changed_files)
        execution = self._create(
            project_id,
            TriggerType.COMMIT,
            policy,
            suites,
            commit_id=commit_id,
            branch=branch,
            author=author,
            changed_files=list(changed_files or []),
        )
        return self._execute(execution, policy, suites)

    def trigger_on_pull_request(
        self,
        project_id: str,
        pr_id: str,
        source_branch: str,
        target_branch: str,
        author: str,
        commit_id: str = "",
    ) -> TestExecution | None:
        """Run all enabled suites for a pull request. Returns None when PR triggers are off."""
        policy = self._policy(project_id, author)
        if not policy.trigger_on_pull_request:
            logger.info(f"Pull request test trigger disabled for {project_id}")
            return None

        suites = policy.enabled_suites()
        execution = self._create(
            project_id,
            TriggerType.PULL_REQUEST,
            policy,
            suites,
            commit_id=commit_id,
            branch=source_branch,
            pr_id=str(pr_id),
            source_branch=source_branch,
            target_branch=target_branch,
            author=author,
        )
        return self._execute(execution, policy, suites)

    def trigger_manual(
        self,
        project_id: str,
        branch: str,
        actor: str,
        suites: list[str] | None = None,
        commit_id: str = "",
    ) -> TestExecution:
        """Run the named suites (default: all enabled) on request."""
        policy = self._policy(project_id, actor)
        selected = policy.enabled_suites()
        if suites:
            selected = [s for s in selected if s.name in suites]
            if not selected:
                raise ConfigurationNotFound(
                    f"No enabled test suites named {', '.join(suites)} for {project_id}"
                )

        execution = self._create(
            project_id,
            TriggerType.MANUAL,
            policy,
            selected,
            commit_id=commit_id,
            branch=branch,
            author=actor,
        )
        return self._execute(execution, policy, selected)

    def is_merge_ready(self, project_id: str, pr_id: str) -> bool:
        """
        True when pre-merge testing is not required, or the latest test
        execution for the pull request passed.
        """
        policy = self._policy(project_id, "")
        if not policy.pre_merge_required:
            return True

        latest = (
            TestExecution.objects.filter(
                project_id=project_id,
                trigger_type=TriggerType.PULL_REQUEST,
                pr_id=str(pr_id),
            )
            .order_by("-created_at", "-id")
            .first()
        )
        return latest is not None and latest.status == TestExecutionStatus.PASSED

    def get_execution(self, test_execution_id: str) -> TestExecution:
        try:
            return TestExecution.objects.prefetch_related("suite_runs").get(
                test_execution_id=test_execution_id
            )
        except TestExecution.DoesNotExist:
            raise TestExecutionNotFound(f"Test execution {test_execution_id} not found") from None

    def get_test_history(self, project_id: str, limit: int = 50) -> list[TestExecution]:
        return list(
            TestExecution.objects.filter(project_id=project_id)
            .prefetch_related("suite_runs")
            .order_by("-created_at", "-id")[:limit]
        )

    def _policy(self, project_id: str, actor: str) -> TestPolicy:
        return self.generator.resolve(project_id, actor=actor).plan().test_policy

    def _create(
        self,
        project_id: str,
        trigger_type: str,
        policy: TestPolicy,
        suites: list[TestSuiteTemplate],
        **fields,
    ) -> TestExecution:
        execution = TestExecution.objects.create(
            test_execution_id=str(uuid.uuid4()),
            project_id=project_id,
            trigger_type=trigger_type,
            parallel=policy.parallel_execution,
            **fields,
        )
        SuiteRun.objects.bulk_create(
            [
                SuiteRun(
                    test_execution=execution,
                    name=suite.name,
                    command=suite.command,
                    optional=suite.optional,
                )
                for suite in suites
            ]
        )
        self.audit.record(
            "tests_triggered",
            f"{trigger_type} tests triggered for {project_id}: {', '.join(s.name for s in suites)}",
            {
                "test_execution_id": execution.test_execution_id,
                "project_id": project_id,
                "suites": [s.name for s in suites],
                "trigger_type": trigger_type,
            },
            actor=fields.get("author", ""),
        )
        self.bus.broadcast(
            TestExecutionEvent(
                test_execution_id=execution.test_execution_id,
                project_id=project_id,
                status=execution.status,
            )
        )
        return execution

    def _context(self, execution: TestExecution) -> StageContext:
        return StageContext(
            execution_id=execution.test_execution_id,
            project_id=execution.project_id,
            commit_id=execution.commit_id,
            branch=execution.branch,
            environment="test",
        )

    @staticmethod
    def _template(suite: TestSuiteTemplate) -> StageTemplate:
        return StageTemplate(
            name=f"test:{suite.name}",
            display_name=f"{suite.name} tests",
            description="",
            commands=[suite.command],
            timeout_seconds=suite.timeout_seconds,
            retry_count=suite.retry_count,
        )

    def _execute(
        self,
        execution: TestExecution,
        policy: TestPolicy,
        suites: list[TestSuiteTemplate],
    ) -> TestExecution:
        runs = {run.name: run for run in execution.suite_runs.all()}
        ctx = self._context(execution)

        if policy.parallel_execution and len(suites) > 1:
            self._run_parallel(execution, policy, suites, runs, ctx)
        else:
            self._run_sequential(policy, suites, runs, ctx)

        passed = all(
            run.status == SuiteStatus.PASSED for run in runs.values() if not run.optional
        )
        execution.mark_completed(passed)

        logger.info(
            f"Test execution {execution.test_execution_id} {execution.status}",
            extra={"project_id": execution.project_id},
        )
        self.audit.record(
            "tests_completed",
            f"Tests {execution.status} for {execution.project_id}",
            {
                "test_execution_id": execution.test_execution_id,
                "project_id": execution.project_id,
                "suites": {name: run.status for name, run in runs.items()},
            },
            actor=execution.author,
        )
        self.bus.broadcast(
            TestExecutionEvent(
                test_execution_id=execution.test_execution_id,
                project_id=execution.project_id,
                status=execution.status,
            )
        )
        return execution

    def _record(self, run: SuiteRun, result: StageResult) -> None:
        run.mark_finished(
            passed=result.success,
            output=result.output,
            error=result.error or "",
            attempts=result.attempts,
            duration_ms=result.duration_ms,
        )

    @staticmethod
    def _stops_run(policy: TestPolicy, suite: TestSuiteTemplate, result: StageResult) -> bool:
        return not result.success and (policy.fail_fast or suite.fail_fast)

    def _run_sequential(self, policy, suites, runs, ctx) -> None:
        for index, suite in enumerate(suites):
            run = runs[suite.name]
            run.mark_running()
            result = self.executor.execute(self._template(suite), ctx)
            self._record(run, result)
            if self._stops_run(policy, suite, result):
                for remaining in suites[index + 1 :]:
                    runs[remaining.name].mark_cancelled(f"cancelled: {suite.name} failed (fail fast)")
                return

    def _run_parallel(self, execution, policy, suites, runs, ctx) -> None:
        """Keep up to max_concurrent_suites running; fail fast stops new submissions."""
        workers = min(policy.max_concurrent_suites, len(suites))
        queued = list(suites)
        stop_reason = ""
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix=f"tests-{execution.test_execution_id[:8]}"
        ) as pool:
            running: dict[Future, TestSuiteTemplate] = {}
            while queued or running:
                while queued and len(running) < workers and not stop_reason:
                    suite = queued.pop(0)
                    runs[suite.name].mark_running()
                    running[pool.submit(self.executor.execute, self._template(suite), ctx)] = suite
                if not running:
                    break

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    suite = running.pop(future)
                    result = future.result()
                    self._record(runs[suite.name], result)
                    if self._stops_run(policy, suite, result) and not stop_reason:
                        stop_reason = f"cancelled: {suite.name} failed (fail fast)"

        for suite in queued:
            runs[suite.name].mark_cancelled(stop_reason)
