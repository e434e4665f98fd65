"""Tests for the DeploymentTrigger approval flow and execution."""

from unittest import mock

import pytest
from django.test import TestCase

from apps.deployments.exceptions import AlreadyDecided, DeploymentNotFound, InsufficientPermission
from apps.deployments.models import DeploymentRequest, DeploymentStatus, HealthSession, Snapshot
from apps.deployments.policy import Actor, Role
from apps.orchestration._tests.fakes import FakeCommandRunner, make_project, make_services
from apps.orchestration.events import DeploymentStatusEvent
from apps.orchestration.exceptions import InvalidTransition, UnknownEnvironment

DANA = Actor("dana", Role.DEVELOPER)
ADA = Actor("ada", Role.ADMIN)
LEE = Actor("lee", Role.LEAD_DEVELOPER)
VIC = Actor("vic", Role.VIEWER)


class DeploymentTriggerTestCase(TestCase):
    project_settings: dict = {}

    def setUp(self):
        make_project("web-app", settings=self.project_settings)
        self.runner = FakeCommandRunner()
        self.services, _, self.sink, self.audit, self.scheduled = make_services(
            runner=self.runner
        )
        self.trigger = self.services.deployment_trigger

    def request(self, environment="production", actor=DANA, version="v1.4.0", **kwargs):
        return self.trigger.trigger_deployment(
            "web-app", environment, version, "release", actor, **kwargs
        )


class ApprovalTests(DeploymentTriggerTestCase):
    def test_production_waits_for_approval(self):
        deployment = self.request()

        assert deployment.status == DeploymentStatus.PENDING_APPROVAL
        assert deployment.requested_by == "dana"
        assert deployment.requested_role == Role.DEVELOPER
        assert deployment.stage["name"] == "deploy"
        assert "deployment_approval_requested" in self.audit.actions
        assert self.runner.commands == []

    def test_developer_cannot_approve(self):
        deployment = self.request()

        with pytest.raises(InsufficientPermission):
            self.trigger.approve(deployment.deployment_id, DANA)

        deployment.refresh_from_db()
        assert deployment.status == DeploymentStatus.PENDING_APPROVAL
        assert deployment.decided_by == ""
        assert self.audit.actions[-1] == "deployment_permission_denied"
        assert self.audit.entries[-1]["context"]["operation"] == "approve"

    def test_lead_developer_cannot_approve_production(self):
        deployment = self.request()

        with pytest.raises(InsufficientPermission):
            self.trigger.approve(deployment.deployment_id, LEE)

    def test_self_approval_is_denied(self):
        deployment = self.request(actor=ADA)

        with pytest.raises(InsufficientPermission, match="own request"):
            self.trigger.approve(deployment.deployment_id, ADA)

        deployment.refresh_from_db()
        assert deployment.status == DeploymentStatus.PENDING_APPROVAL

    def test_admin_approval_executes(self):
        deployment = self.request()

        deployment = self.trigger.approve(deployment.deployment_id, ADA)

        assert deployment.status == DeploymentStatus.SUCCESS
        assert deployment.decided_by == "ada"
        assert deployment.decided_at is not None
        assert deployment.snapshot.verified is True
        assert "echo 'Deploying application'" in self.runner.commands
        assert self.audit.actions[-1] == "deployment_executed"
        statuses = [e.status for e in self.sink.of_type(DeploymentStatusEvent)]
        assert statuses == [
            DeploymentStatus.PENDING_APPROVAL,
            DeploymentStatus.APPROVED,
            DeploymentStatus.EXECUTING,
            DeploymentStatus.SUCCESS,
        ]

    def test_approve_without_execution(self):
        deployment = self.request()

        deployment = self.trigger.approve(deployment.deployment_id, ADA, execute=False)

        assert deployment.status == DeploymentStatus.APPROVED
        assert self.runner.commands == []

    def test_second_decision_conflicts(self):
        deployment = self.request()
        self.trigger.approve(deployment.deployment_id, ADA, execute=False)

        with pytest.raises(AlreadyDecided):
            self.trigger.reject(deployment.deployment_id, Actor("max", Role.ADMIN), "too late")

        assert DeploymentRequest.objects.get().decided_by == "ada"

    def test_concurrent_decision_loses_to_first(self):
        deployment = self.request()
        self.trigger.approve(deployment.deployment_id, ADA, execute=False)

        # The second approver read the request while it was still pending
        with mock.patch.object(self.trigger, "get_deployment", return_value=deployment):
            with pytest.raises(AlreadyDecided):
                self.trigger.reject(deployment.deployment_id, Actor("max", Role.ADMIN), "late")

        stored = DeploymentRequest.objects.get()
        assert stored.status == DeploymentStatus.APPROVED
        assert stored.decided_by == "ada"
        assert stored.decision_reason == ""

    def test_duplicate_execution_is_refused(self):
        deployment = self.request()
        self.trigger.approve(deployment.deployment_id, ADA, execute=False)
        stale = DeploymentRequest.objects.get(pk=deployment.pk)
        self.trigger.execute(deployment.deployment_id)
        commands = list(self.runner.commands)

        with mock.patch.object(self.trigger, "get_deployment", return_value=stale):
            with pytest.raises(InvalidTransition):
                self.trigger.execute(deployment.deployment_id)

        assert self.runner.commands == commands
        assert Snapshot.objects.count() == 1
        assert DeploymentRequest.objects.get().status == DeploymentStatus.SUCCESS

    def test_executing_request_is_not_run_again(self):
        deployment = self.request()
        self.trigger.approve(deployment.deployment_id, ADA, execute=False)
        DeploymentRequest.objects.filter(pk=deployment.pk).update(
            status=DeploymentStatus.EXECUTING
        )

        with pytest.raises(InvalidTransition, match="executing"):
            self.trigger.execute(deployment.deployment_id)

        assert self.runner.commands == []
        assert not Snapshot.objects.exists()

    def test_reject(self):
        deployment = self.request(environment="staging")

        deployment = self.trigger.reject(deployment.deployment_id, LEE, "freeze week")

        assert deployment.status == DeploymentStatus.REJECTED
        assert deployment.decision_reason == "freeze week"
        assert deployment.completed_at is not None
        assert "deployment_rejected" in self.audit.actions
        with pytest.raises(InvalidTransition):
            self.trigger.execute(deployment.deployment_id)

    def test_viewer_cannot_request(self):
        with pytest.raises(InsufficientPermission):
            self.request(environment="development", actor=VIC)

        assert not DeploymentRequest.objects.exists()
        assert self.audit.actions == ["deployment_permission_denied"]

    def test_unknown_environment(self):
        with pytest.raises(UnknownEnvironment):
            self.request(environment="qa")

    def test_unknown_deployment(self):
        with pytest.raises(DeploymentNotFound):
            self.trigger.approve("missing", ADA)


class ImmediateDeploymentTests(DeploymentTriggerTestCase):
    project_settings = {
        "config_files": [".env", "nginx.conf"],
        "environment_urls": {"development": "https://dev.example.com"},
    }

    def test_development_deploys_immediately(self):
        deployment = self.request(environment="development", version="v2.0.0", commit_id="c0ffee")

        assert deployment.status == DeploymentStatus.SUCCESS
        assert deployment.decided_by == ""
        assert deployment.snapshot.commit_id == "c0ffee"
        assert deployment.snapshot.config_files == [".env", "nginx.conf"]
        assert deployment.snapshot.verified is True
        assert self.audit.actions[:3] == [
            "pipeline_config_generated",
            "deployment_triggered",
            "deployment_executed",
        ]

    def test_deploy_variables(self):
        deployment = self.request(environment="development")

        _command, env = self.runner.calls[0]
        assert env["DEPLOY_VERSION"] == "v1.4.0"
        assert env["DEPLOYMENT_ID"] == deployment.deployment_id
        assert env["NODE_ENV"] == "development"

    def test_success_starts_health_session(self):
        deployment = self.request(environment="development")

        session = HealthSession.objects.get(deployment=deployment)
        check = session.checks.get()
        assert check.target == "https://dev.example.com/health"
        assert check.threshold == 3
        assert self.scheduled == [(session.session_id, 30)]

    def test_failure_leaves_snapshot_unverified(self):
        self.runner.failures = {"Deploying application": 1}

        deployment = self.request(environment="development")

        assert deployment.status == DeploymentStatus.FAILED
        assert "exited with code 1" in deployment.error_message
        assert deployment.snapshot.verified is False
        assert not HealthSession.objects.exists()
        assert "deployment_failed" in self.audit.actions

    def test_without_base_url_monitoring_is_skipped(self):
        deployment = self.request(environment="staging", actor=DANA)
        deployment = self.trigger.approve(deployment.deployment_id, LEE)

        assert deployment.status == DeploymentStatus.SUCCESS
        assert not HealthSession.objects.exists()
        assert self.scheduled == []
        assert deployment.log_entries.filter(message__contains="monitoring skipped").exists()


class QueryTests(DeploymentTriggerTestCase):
    def test_pending_approvals_for_approver(self):
        staging = self.request(environment="staging")
        production = self.request(environment="production")
        own = self.request(environment="staging", actor=LEE)

        everything = self.trigger.get_pending_approvals()
        assert [d.pk for d in everything] == [staging.pk, production.pk, own.pk]

        for_lee = self.trigger.get_pending_approvals(approver=LEE)
        assert [d.pk for d in for_lee] == [staging.pk]

        assert [d.pk for d in self.trigger.get_pending_approvals(environment="production")] == [
            production.pk
        ]

    def test_history_contains_resolved_only(self):
        self.request(environment="production")
        done = self.request(environment="development")

        assert [d.pk for d in self.trigger.get_deployment_history()] == [done.pk]
        assert self.trigger.get_deployment_history(environment="production") == []

    def test_available_environments(self):
        environments = self.trigger.get_available_environments("web-app", LEE)

        by_name = {env["name"]: env for env in environments}
        assert sorted(by_name) == ["development", "production", "staging"]
        assert by_name["staging"]["can_approve"] is True
        assert by_name["production"]["can_approve"] is False
        assert by_name["production"]["approval_required"] is True
        assert by_name["development"]["approval_required"] is False
