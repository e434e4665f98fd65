"""Tests for the RollbackController and the automatic rollback wiring."""

from unittest import mock

import pytest
from django.test import TestCase

from apps.deployments.exceptions import (
    InsufficientPermission,
    InvalidTarget,
    RollbackFailed,
    RollbackNotFound,
)
from apps.deployments.health import build_probe
from apps.deployments.models import (
    DeploymentRequest,
    DeploymentStatus,
    HealthSession,
    RollbackRecord,
    RollbackStatus,
    Snapshot,
)
from apps.deployments.policy import Actor, Role
from apps.orchestration._tests.fakes import (
    FakeCommandRunner,
    ScriptedProbeFactory,
    make_project,
    make_services,
)
from apps.orchestration.events import RollbackEvent
from apps.orchestration.exceptions import InvalidTransition
from apps.orchestration.models import PipelineConfiguration

DANA = Actor("dana", Role.DEVELOPER)
ADA = Actor("ada", Role.ADMIN)
LEE = Actor("lee", Role.LEAD_DEVELOPER)

HEALTH_CHECKS = [
    {"name": "app", "kind": "command", "target": "systemctl is-active app", "threshold": 3},
]


class RollbackTestCase(TestCase):
    project_settings = {"health_checks": HEALTH_CHECKS, "config_files": [".env"]}

    def setUp(self):
        make_project("web-app", settings=self.project_settings)
        self.runner = FakeCommandRunner()
        self.probes = ScriptedProbeFactory()
        self.services, _, self.sink, self.audit, _ = make_services(
            runner=self.runner, probe_factory=self.probes
        )
        self.rollback = self.services.rollback

    def deploy(self, version, environment="development"):
        return self.services.deployment_trigger.trigger_deployment(
            "web-app", environment, version, "", DANA, commit_id=f"commit-{version}"
        )


class RollbackControllerTests(RollbackTestCase):
    def setUp(self):
        super().setUp()
        self.v1 = self.deploy("v1")
        self.v2 = self.deploy("v2")

    def test_rollback_to_verified_snapshot(self):
        result = self.rollback.rollback(
            "development", self.v1.snapshot.snapshot_id, "bad release", ADA
        )

        assert result.status == RollbackStatus.SUCCESS
        assert result.deployment_id == self.v2.deployment_id
        assert result.health_results[0]["name"] == "app"
        assert result.health_results[0]["passed"] is True

        self.v2.refresh_from_db()
        assert self.v2.status == DeploymentStatus.ROLLED_BACK
        self.v1.refresh_from_db()
        assert self.v1.status == DeploymentStatus.SUCCESS

        record = RollbackRecord.objects.get()
        assert record.status == RollbackStatus.SUCCESS
        assert record.actor == "ada"
        assert record.completed_at is not None
        assert [a for a in self.audit.actions if a.startswith("rollback_")] == [
            "rollback_started",
            "rollback_deployment_marked",
            "rollback_redeployed",
            "rollback_health_verified",
            "rollback_completed",
        ]
        assert [e.status for e in self.sink.of_type(RollbackEvent)] == [RollbackStatus.SUCCESS]

    def test_redeploy_receives_snapshot_details(self):
        self.rollback.rollback("development", self.v1.snapshot.snapshot_id, "", ADA)

        rollback_calls = [(c, env) for c, env in self.runner.calls if "Redeploying" in c]
        _command, env = rollback_calls[0]
        assert env["ROLLBACK_COMMIT"] == "commit-v1"
        assert env["ROLLBACK_VERSION"] == "v1"
        assert env["ROLLBACK_CONFIG_FILES"] == ".env"
        assert env["ROLLBACK_DATA_BACKUP"].startswith("backup-development-")

    def test_unverified_snapshot_is_rejected_without_changes(self):
        self.runner.failures = {"Deploying application": 1}
        failed = self.deploy("v3")
        self.runner.failures = {}
        commands_before = len(self.runner.commands)

        with pytest.raises(InvalidTarget, match="not verified"):
            self.rollback.rollback("development", failed.snapshot.snapshot_id, "", ADA)

        assert not RollbackRecord.objects.exists()
        assert len(self.runner.commands) == commands_before
        self.v2.refresh_from_db()
        assert self.v2.status == DeploymentStatus.SUCCESS
        assert self.audit.actions[-1] == "rollback_rejected"

    def test_snapshot_from_another_environment(self):
        with pytest.raises(InvalidTarget, match="belongs to development"):
            self.rollback.rollback("staging", self.v1.snapshot.snapshot_id, "", ADA)

    def test_missing_snapshot(self):
        with pytest.raises(InvalidTarget, match="does not exist"):
            self.rollback.rollback("development", "missing", "", ADA)

    def test_failed_redeploy(self):
        self.runner.failures = {"Redeploying": 1}

        with pytest.raises(RollbackFailed) as excinfo:
            self.rollback.rollback("development", self.v1.snapshot.snapshot_id, "", ADA)

        assert excinfo.value.step == "redeploy"
        record = RollbackRecord.objects.get(rollback_id=excinfo.value.rollback_id)
        assert record.status == RollbackStatus.FAILED
        assert record.failed_step == "redeploy"
        assert "rollback_failed" in self.audit.actions
        assert "rollback_health_verified" not in self.audit.actions

        analysis = excinfo.value.analysis
        assert analysis == record.analysis
        assert analysis["failed_step"] == "redeploy"
        assert analysis["category"] == "unknown"
        assert analysis["alternative_snapshots"][0]["snapshot_id"] == self.v2.snapshot.snapshot_id
        assert analysis["recovery_options"][0].startswith(
            f"Roll back to snapshot {self.v2.snapshot.snapshot_id}"
        )

    def test_timed_out_redeploy_is_analyzed(self):
        self.runner.timeouts = ("Redeploying",)

        with pytest.raises(RollbackFailed) as excinfo:
            self.rollback.rollback("development", self.v1.snapshot.snapshot_id, "", ADA)

        analysis = excinfo.value.analysis
        assert analysis["category"] == "timeout"
        assert "Retry the rollback with longer command timeouts" in analysis["recovery_options"]
        entry = [e for e in self.audit.entries if e["action_type"] == "rollback_failed"][0]
        assert entry["context"]["category"] == "timeout"

    def test_failed_health_verification(self):
        self.probes.scripts["app"] = [False]

        with pytest.raises(RollbackFailed, match="app") as excinfo:
            self.rollback.rollback("development", self.v1.snapshot.snapshot_id, "", ADA)

        assert excinfo.value.step == "health_check"
        record = RollbackRecord.objects.get()
        assert record.health_results[0]["passed"] is False
        assert [e.status for e in self.sink.of_type(RollbackEvent)] == [RollbackStatus.FAILED]
        assert record.analysis["category"] == "health"
        assert record.analysis["root_cause"].startswith("The restored release did not pass")

    def test_unbuildable_health_check_fails_the_rollback(self):
        configuration = self.services.generator.get_latest("web-app")
        policy = {
            **configuration.deployment_policy,
            "health_checks": [{"name": "tcp", "kind": "tcp"}],
        }
        PipelineConfiguration.objects.filter(pk=configuration.pk).update(deployment_policy=policy)
        self.rollback.probe_factory = build_probe

        with pytest.raises(RollbackFailed, match="tcp") as excinfo:
            self.rollback.rollback("development", self.v1.snapshot.snapshot_id, "", ADA)

        assert excinfo.value.step == "health_check"
        assert RollbackRecord.objects.get().status == RollbackStatus.FAILED
        assert "rollback_failed" in self.audit.actions
        assert [e.status for e in self.sink.of_type(RollbackEvent)] == [RollbackStatus.FAILED]

    def test_rollback_options_and_history(self):
        options = self.rollback.get_rollback_options("development", project_id="web-app")

        assert [s.snapshot_id for s in options] == [
            self.v2.snapshot.snapshot_id,
            self.v1.snapshot.snapshot_id,
        ]
        assert self.rollback.get_rollback_options("production") == []

        self.rollback.rollback("development", self.v1.snapshot.snapshot_id, "", ADA)
        assert len(self.rollback.get_history("development")) == 1


class RollbackApprovalTests(RollbackTestCase):
    def setUp(self):
        super().setUp()
        self.v1 = self.deploy("v1")
        self.v2 = self.deploy("v2")
        self.target = self.v1.snapshot.snapshot_id

    def test_developer_cannot_roll_back_directly(self):
        commands_before = len(self.runner.commands)

        with pytest.raises(InsufficientPermission, match="may not roll back development"):
            self.rollback.rollback("development", self.target, "", DANA)

        assert not RollbackRecord.objects.exists()
        assert len(self.runner.commands) == commands_before
        self.v2.refresh_from_db()
        assert self.v2.status == DeploymentStatus.SUCCESS
        assert self.audit.actions[-1] == "rollback_permission_denied"

    def test_production_rollback_needs_admin(self):
        with pytest.raises(InsufficientPermission, match="may not roll back production"):
            self.rollback.rollback("production", "any-snapshot", "", LEE)

        assert not RollbackRecord.objects.exists()

    def test_request_then_approve(self):
        commands_before = len(self.runner.commands)

        pending = self.rollback.request_rollback("development", self.target, "bad release", DANA)

        assert pending.status == RollbackStatus.PENDING_APPROVAL
        assert pending.requested_by == "dana"
        assert len(self.runner.commands) == commands_before
        self.v2.refresh_from_db()
        assert self.v2.status == DeploymentStatus.SUCCESS
        assert [r.rollback_id for r in self.rollback.get_pending_rollbacks()] == [
            pending.rollback_id
        ]

        result = self.rollback.approve_rollback(pending.rollback_id, ADA)

        assert result.status == RollbackStatus.SUCCESS
        assert result.approved_by == "ada"
        assert result.deployment_id == self.v2.deployment_id
        self.v2.refresh_from_db()
        assert self.v2.status == DeploymentStatus.ROLLED_BACK
        assert self.rollback.get_pending_rollbacks() == []
        actions = [a for a in self.audit.actions if a.startswith("rollback_")]
        assert actions[:3] == ["rollback_requested", "rollback_approved", "rollback_started"]
        assert [e.status for e in self.sink.of_type(RollbackEvent)] == [
            RollbackStatus.PENDING_APPROVAL,
            RollbackStatus.SUCCESS,
        ]

    def test_viewer_cannot_request(self):
        with pytest.raises(InsufficientPermission):
            self.rollback.request_rollback(
                "development", self.target, "", Actor("val", Role.VIEWER)
            )

        assert not RollbackRecord.objects.exists()

    def test_request_for_unverified_snapshot_is_rejected(self):
        with pytest.raises(InvalidTarget):
            self.rollback.request_rollback("development", "missing", "", DANA)

        assert not RollbackRecord.objects.exists()

    def test_developer_cannot_approve(self):
        pending = self.rollback.request_rollback("development", self.target, "", DANA)

        with pytest.raises(InsufficientPermission):
            self.rollback.approve_rollback(pending.rollback_id, Actor("dev", Role.DEVELOPER))

        assert self.rollback.get_rollback(pending.rollback_id).status == (
            RollbackStatus.PENDING_APPROVAL
        )

    def test_requester_cannot_approve_own_request(self):
        pending = self.rollback.request_rollback("development", self.target, "", LEE)

        with pytest.raises(InsufficientPermission, match="own rollback request"):
            self.rollback.approve_rollback(pending.rollback_id, LEE)

        self.v2.refresh_from_db()
        assert self.v2.status == DeploymentStatus.SUCCESS

    def test_reject(self):
        pending = self.rollback.request_rollback("development", self.target, "", DANA)

        result = self.rollback.reject_rollback(pending.rollback_id, ADA, "v2 is fine")

        assert result.status == RollbackStatus.REJECTED
        record = self.rollback.get_rollback(pending.rollback_id)
        assert record.approved_by == "ada"
        assert record.error_message == "v2 is fine"
        assert record.completed_at is not None
        with pytest.raises(InvalidTransition, match="already rejected"):
            self.rollback.approve_rollback(pending.rollback_id, ADA)
        self.v2.refresh_from_db()
        assert self.v2.status == DeploymentStatus.SUCCESS

    def test_concurrent_approval_runs_once(self):
        pending = self.rollback.request_rollback("development", self.target, "", DANA)
        stale = self.rollback.get_rollback(pending.rollback_id)
        self.rollback.approve_rollback(pending.rollback_id, ADA)
        commands_after_first = len(self.runner.commands)

        # A second approver read the request before the first one claimed it
        with mock.patch.object(self.rollback, "get_rollback", return_value=stale):
            with pytest.raises(InvalidTransition):
                self.rollback.approve_rollback(pending.rollback_id, Actor("root", Role.ADMIN))

        assert len(self.runner.commands) == commands_after_first
        assert RollbackRecord.objects.get().status == RollbackStatus.SUCCESS

    def test_unknown_rollback(self):
        with pytest.raises(RollbackNotFound):
            self.rollback.approve_rollback("missing", ADA)


class AutomaticRollbackTests(RollbackTestCase):
    def test_threshold_breach_rolls_back_to_previous_snapshot(self):
        v1 = self.deploy("v1")
        v2 = self.deploy("v2")
        # Three failed observations, then the post-rollback verification passes
        self.probes.scripts["app"] = [False, False, False, True]
        monitor = self.services.monitor
        session_id = HealthSession.objects.get(deployment=v2).session_id

        monitor.observe(session_id)
        monitor.observe(session_id)
        observation = monitor.observe(session_id)

        assert observation.newly_recommended is True
        v2.refresh_from_db()
        assert v2.status == DeploymentStatus.ROLLED_BACK
        record = RollbackRecord.objects.get()
        assert record.snapshot_id == v1.snapshot_id
        assert record.deployment_id == v2.pk
        assert record.actor == "release-orchestrator"
        assert record.status == RollbackStatus.SUCCESS
        assert "Health check app failed 3 times" in record.reason

    def test_no_previous_snapshot(self):
        v1 = self.deploy("v1")
        self.probes.scripts["app"] = [False]
        session_id = HealthSession.objects.get(deployment=v1).session_id

        for _ in range(3):
            self.services.monitor.observe(session_id)

        assert not RollbackRecord.objects.exists()
        assert "rollback_unavailable" in self.audit.actions
        assert DeploymentRequest.objects.get().status == DeploymentStatus.SUCCESS

    def test_failed_automatic_rollback_is_escalated(self):
        self.deploy("v1")
        v2 = self.deploy("v2")
        self.probes.scripts["app"] = [False]
        session_id = HealthSession.objects.get(deployment=v2).session_id

        with self.assertLogs("apps.deployments.coordinator", level="ERROR") as logs:
            for _ in range(3):
                self.services.monitor.observe(session_id)

        assert "escalate" in logs.output[0]
        assert RollbackRecord.objects.get().status == RollbackStatus.FAILED

    def test_failed_deployment_snapshot_is_never_a_target(self):
        v1 = self.deploy("v1")
        self.runner.failures = {"Deploying application": 1}
        self.deploy("v2")
        self.runner.failures = {}

        assert Snapshot.objects.filter(verified=True).count() == 1
        assert self.rollback.get_rollback_options("development")[0].pk == v1.snapshot_id


class ManualDecisionTests(RollbackTestCase):
    project_settings = {"health_checks": HEALTH_CHECKS, "rollback_on_failure": False}

    def test_recommendation_waits_for_a_human(self):
        self.deploy("v1")
        v2 = self.deploy("v2")
        self.probes.scripts["app"] = [False]
        session_id = HealthSession.objects.get(deployment=v2).session_id

        for _ in range(3):
            self.services.monitor.observe(session_id)

        assert not RollbackRecord.objects.exists()
        assert "rollback_awaiting_decision" in self.audit.actions
        v2.refresh_from_db()
        assert v2.status == DeploymentStatus.SUCCESS
