"""Tests for the release dashboard aggregate and its endpoint."""

from unittest import mock

import pytest
from django.test import TestCase

from apps.deployments.models import DeploymentStatus
from apps.deployments.policy import Actor, Role
from apps.orchestration._tests.fakes import FakeCommandRunner, make_project, make_services
from apps.orchestration.models import ExecutionStatus

DANA = Actor("dana", Role.DEVELOPER)

HEALTH_CHECKS = [{"name": "app", "kind": "command", "target": "true", "threshold": 3}]


class DashboardTestCase(TestCase):
    def setUp(self):
        make_project("web-app", settings={"health_checks": HEALTH_CHECKS})
        make_project("api")
        self.runner = FakeCommandRunner()
        self.services, *_ = make_services(runner=self.runner)
        self.dashboard = self.services.dashboard

        orchestrator = self.services.orchestrator
        passed = orchestrator.trigger("web-app", commit_id="abc123", branch="main", actor="dana")
        self.passed = orchestrator.run(passed.execution_id)
        self.runner.failures = {"npm run build": 1}
        failed = orchestrator.trigger("web-app", commit_id="def456", branch="main", actor="dana")
        self.failed = orchestrator.run(failed.execution_id)
        self.runner.failures = {}

        self.pending = self.services.deployment_trigger.trigger_deployment(
            "web-app", "production", "v2", "release", DANA
        )


class DashboardDataTests(DashboardTestCase):
    def test_collects_every_section(self):
        data = self.dashboard.get_dashboard_data()

        assert self.passed.status == ExecutionStatus.SUCCESS
        assert self.failed.status == ExecutionStatus.FAILED
        assert [e.execution_id for e in data.recent_executions] == [
            self.failed.execution_id,
            self.passed.execution_id,
        ]
        assert [d.deployment_id for d in data.pending_approvals] == [self.pending.deployment_id]
        assert [d.status for d in data.deployment_history] == [DeploymentStatus.SUCCESS]
        assert [s.environment for s in data.monitored_sessions] == ["development"]
        assert data.executing_deployments == []
        assert data.pending_rollbacks == []
        assert data.generated_at is not None

    def test_metrics(self):
        metrics = self.dashboard.get_dashboard_data().metrics

        assert metrics["window_days"] == 7
        pipelines = metrics["pipelines"]
        assert pipelines["total"] == 2
        assert pipelines["successful"] == 1
        assert pipelines["failed"] == 1
        assert pipelines["running"] == 0
        assert pipelines["success_rate"] == 50.0
        assert pipelines["average_duration_seconds"] >= 0
        assert metrics["deployments"]["total"] == 2
        assert metrics["deployments"]["successful"] == 1
        assert metrics["deployments"]["per_day"] == round(2 / 7, 2)
        assert metrics["rollbacks"] == {"total": 0, "failed": 0}

    def test_pending_rollback_requests_are_listed(self):
        snapshot_id = self.services.rollback.get_rollback_options("development")[0].snapshot_id
        requested = self.services.rollback.request_rollback(
            "development", snapshot_id, "", DANA
        )

        data = self.dashboard.get_dashboard_data()

        assert [r.rollback_id for r in data.pending_rollbacks] == [requested.rollback_id]

    def test_narrowed_to_environment(self):
        data = self.dashboard.get_dashboard_data(environment="production")

        assert [d.deployment_id for d in data.pending_approvals] == [self.pending.deployment_id]
        assert data.deployment_history == []
        assert data.monitored_sessions == []
        assert data.metrics["pipelines"]["total"] == 0

    def test_narrowed_to_project(self):
        data = self.dashboard.get_dashboard_data(project_id="api")

        assert data.recent_executions == []
        assert data.pending_approvals == []
        assert data.monitored_sessions == []
        assert data.metrics["pipelines"]["success_rate"] == 0

    def test_collection_error_is_audited(self):
        audit = mock.Mock()
        self.dashboard.audit = audit

        with mock.patch.object(
            self.services.monitor, "get_active_sessions", side_effect=RuntimeError("db gone")
        ):
            with pytest.raises(RuntimeError, match="db gone"):
                self.dashboard.get_dashboard_data(project_id="web-app")

        audit.record.assert_called_once()
        assert audit.record.call_args.args[0] == "dashboard_data_error"


class DashboardViewTests(DashboardTestCase):
    def setUp(self):
        super().setUp()
        patcher = mock.patch("apps.orchestration.views.get_services", return_value=self.services)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_dashboard(self):
        response = self.client.get("/orchestration/dashboard/?project_id=web-app")

        assert response.status_code == 200
        data = response.json()
        assert data["pending_approvals"][0]["deployment_id"] == self.pending.deployment_id
        assert data["active_deployments"]["executing"] == []
        assert data["active_deployments"]["monitoring"][0]["environment"] == "development"
        assert [e["status"] for e in data["recent_executions"]] == ["failed", "success"]
        assert data["deployment_history"][0]["environment"] == "development"
        assert data["metrics"]["pipelines"]["success_rate"] == 50.0

    def test_window_must_be_positive(self):
        assert self.client.get("/orchestration/dashboard/?window_days=0").status_code == 400
        assert self.client.get("/orchestration/dashboard/?window_days=week").status_code == 400
