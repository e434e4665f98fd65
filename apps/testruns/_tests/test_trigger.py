"""Tests for the AutomatedTestTrigger."""

import pytest
from django.test import SimpleTestCase, TestCase

from apps.orchestration._tests.fakes import FakeCommandRunner, make_project, make_services
from apps.orchestration.exceptions import ConfigurationNotFound, TestExecutionNotFound
from apps.orchestration.generator import build_plan
from apps.testruns.models import SuiteStatus, TestExecutionStatus, TriggerType
from apps.testruns.trigger import glob_to_regex, select_suites

ALL_SUITES = {"enable_integration_tests": True, "enable_e2e_tests": True}


def _runs(execution):
    return {run.name: run for run in execution.suite_runs.all()}


class SelectSuitesTests(SimpleTestCase):
    def setUp(self):
        self.suites = build_plan("nodejs", ["web"], ALL_SUITES).test_policy.enabled_suites()

    def test_no_changed_files_runs_everything(self):
        assert [s.name for s in select_suites(self.suites, [])] == ["unit", "integration", "e2e"]

    def test_changed_source_selects_unit(self):
        selected = select_suites(self.suites, ["src/components/button.ts"])

        assert [s.name for s in selected] == ["unit"]

    def test_changed_tests_select_integration(self):
        selected = select_suites(self.suites, ["test/api/orders.js", "src/lib/api.js"])

        assert [s.name for s in selected] == ["unit", "integration"]

    def test_nothing_matches_runs_everything(self):
        assert len(select_suites(self.suites, ["README.md"])) == 3

    def test_glob_single_star_stays_in_directory(self):
        regex = glob_to_regex("src/*.js")

        assert regex.fullmatch("src/app.js")
        assert not regex.fullmatch("src/nested/app.js")
        assert glob_to_regex("src/**/*.js").fullmatch("src/nested/deep/app.js")


class TriggerTestCase(TestCase):
    project_settings = ALL_SUITES

    def setUp(self):
        make_project("web-app", settings=self.project_settings)
        self.runner = FakeCommandRunner()
        self.services, _, self.sink, self.audit, _ = make_services(runner=self.runner)
        self.trigger = self.services.test_trigger


class CommitTriggerTests(TriggerTestCase):
    def test_runs_all_suites_in_parallel(self):
        execution = self.trigger.trigger_on_commit("web-app", "abc123", "main", "dana")

        assert execution.trigger_type == TriggerType.COMMIT
        assert execution.status == TestExecutionStatus.PASSED
        assert execution.parallel is True
        assert execution.completed_at is not None
        runs = _runs(execution)
        assert sorted(runs) == ["e2e", "integration", "unit"]
        assert {run.status for run in runs.values()} == {SuiteStatus.PASSED}
        assert sorted(self.runner.commands) == [
            "npm run test:e2e",
            "npm run test:integration",
            "npm run test:unit",
        ]
        assert self.audit.actions == [
            "pipeline_config_generated",
            "tests_triggered",
            "tests_completed",
        ]

    def test_changed_files_narrow_the_suites(self):
        execution = self.trigger.trigger_on_commit(
            "web-app", "abc123", "main", "dana", changed_files=["src/index.ts"]
        )

        assert list(_runs(execution)) == ["unit"]
        assert execution.changed_files == ["src/index.ts"]

    def test_failing_suite_fails_the_execution(self):
        self.runner.failures = {"test:integration": 1}

        execution = self.trigger.trigger_on_commit("web-app", "abc123", "main", "dana")

        runs = _runs(execution)
        assert execution.status == TestExecutionStatus.FAILED
        assert runs["integration"].status == SuiteStatus.FAILED
        assert runs["integration"].attempts == 2
        assert runs["unit"].status == SuiteStatus.PASSED
        assert runs["e2e"].status == SuiteStatus.PASSED


class OptionalSuiteTests(TriggerTestCase):
    project_settings = {**ALL_SUITES, "optional_test_suites": ["e2e"]}

    def test_optional_failure_does_not_fail_execution(self):
        self.runner.failures = {"test:e2e": 1}

        execution = self.trigger.trigger_on_commit("web-app", "abc123", "main", "dana")

        assert _runs(execution)["e2e"].status == SuiteStatus.FAILED
        assert execution.status == TestExecutionStatus.PASSED


class SequentialFailFastTests(TriggerTestCase):
    project_settings = {**ALL_SUITES, "parallel_test_execution": False}

    def test_unit_failure_cancels_the_rest(self):
        self.runner.failures = {"test:unit": 1}

        execution = self.trigger.trigger_on_commit("web-app", "abc123", "main", "dana")

        runs = _runs(execution)
        assert execution.parallel is False
        assert execution.status == TestExecutionStatus.FAILED
        assert runs["unit"].status == SuiteStatus.FAILED
        assert runs["integration"].status == SuiteStatus.CANCELLED
        assert runs["e2e"].status == SuiteStatus.CANCELLED
        assert "unit failed" in runs["e2e"].error
        assert "npm run test:integration" not in self.runner.commands

    def test_failure_without_fail_fast_continues(self):
        self.runner.failures = {"test:integration": 1}

        execution = self.trigger.trigger_on_commit("web-app", "abc123", "main", "dana")

        runs = _runs(execution)
        assert runs["integration"].status == SuiteStatus.FAILED
        assert runs["e2e"].status == SuiteStatus.PASSED


class ParallelFailFastTests(TriggerTestCase):
    project_settings = {**ALL_SUITES, "max_concurrent_suites": 1, "fail_fast": True}

    def test_queued_suites_are_cancelled(self):
        self.runner.failures = {"test:unit": 1}

        execution = self.trigger.trigger_on_commit("web-app", "abc123", "main", "dana")

        runs = _runs(execution)
        assert execution.status == TestExecutionStatus.FAILED
        assert runs["unit"].status == SuiteStatus.FAILED
        assert runs["integration"].status == SuiteStatus.CANCELLED
        assert runs["e2e"].status == SuiteStatus.CANCELLED
        assert self.runner.commands == ["npm run test:unit"] * 3


class PullRequestTriggerTests(TriggerTestCase):
    def test_pull_request_runs_all_suites(self):
        execution = self.trigger.trigger_on_pull_request(
            "web-app", 42, "feature/login", "main", "dana", commit_id="beef"
        )

        assert execution.trigger_type == TriggerType.PULL_REQUEST
        assert execution.pr_id == "42"
        assert execution.branch == "feature/login"
        assert execution.target_branch == "main"
        assert len(_runs(execution)) == 3

    def test_merge_ready_follows_latest_run(self):
        assert self.trigger.is_merge_ready("web-app", "42") is False

        self.runner.failures = {"test:unit": 1}
        self.trigger.trigger_on_pull_request("web-app", "42", "feature/login", "main", "dana")
        assert self.trigger.is_merge_ready("web-app", "42") is False

        self.runner.failures = {}
        self.trigger.trigger_on_pull_request("web-app", "42", "feature/login", "main", "dana")
        assert self.trigger.is_merge_ready("web-app", "42") is True


class DisabledTriggerTests(TriggerTestCase):
    project_settings = {
        "trigger_on_commit": False,
        "trigger_on_pull_request": False,
        "pre_merge_required": False,
    }

    def test_disabled_triggers_return_none(self):
        assert self.trigger.trigger_on_commit("web-app", "abc", "main", "dana") is None
        assert (
            self.trigger.trigger_on_pull_request("web-app", "1", "feature/x", "main", "dana")
            is None
        )
        assert self.runner.commands == []

    def test_merge_ready_without_pre_merge_requirement(self):
        assert self.trigger.is_merge_ready("web-app", "1") is True


class ManualTriggerTests(TriggerTestCase):
    def test_named_suites(self):
        execution = self.trigger.trigger_manual("web-app", "main", "dana", suites=["e2e"])

        assert execution.trigger_type == TriggerType.MANUAL
        assert list(_runs(execution)) == ["e2e"]
        assert self.runner.commands == ["npm run test:e2e"]

    def test_unknown_suite(self):
        with pytest.raises(ConfigurationNotFound):
            self.trigger.trigger_manual("web-app", "main", "dana", suites=["smoke"])

    def test_history_and_lookup(self):
        first = self.trigger.trigger_manual("web-app", "main", "dana")
        second = self.trigger.trigger_manual("web-app", "main", "dana")

        history = self.trigger.get_test_history("web-app")
        assert [e.test_execution_id for e in history] == [
            second.test_execution_id,
            first.test_execution_id,
        ]
        assert self.trigger.get_execution(first.test_execution_id).pk == first.pk
        with pytest.raises(TestExecutionNotFound):
            self.trigger.get_execution("missing")
