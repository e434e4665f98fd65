"""Tests for the rollback_environment management command."""

import json
from io import StringIO
from unittest import mock

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase

from apps.deployments.models import DeploymentStatus
from apps.deployments.policy import Actor, Role
from apps.orchestration._tests.fakes import make_project, make_services

DANA = Actor("dana", Role.DEVELOPER)


class RollbackEnvironmentCommandTests(TestCase):
    def setUp(self):
        make_project("web-app")
        self.services, self.runner, *_ = make_services()
        patcher = mock.patch(
            "apps.deployments.management.commands.rollback_environment.get_services",
            return_value=self.services,
        )
        patcher.start()
        self.addCleanup(patcher.stop)

        trigger = self.services.deployment_trigger
        self.v1 = trigger.trigger_deployment("web-app", "development", "v1", "", DANA)
        self.v2 = trigger.trigger_deployment("web-app", "development", "v2", "", DANA)

    def call(self, *args, stderr=None):
        out = StringIO()
        call_command("rollback_environment", *args, stdout=out, stderr=stderr or StringIO())
        return out.getvalue()

    def test_list_targets(self):
        output = self.call("development", "--project", "web-app", "--list")

        assert self.v1.snapshot.snapshot_id in output
        assert self.v2.snapshot.snapshot_id in output

    def test_list_without_snapshots(self):
        assert "No verified snapshots" in self.call("staging", "--list")

    def test_rollback_to_specific_snapshot(self):
        output = self.call(
            "development",
            "--snapshot",
            self.v1.snapshot.snapshot_id,
            "--actor",
            "ada",
            "--role",
            "admin",
        )

        assert "succeeded" in output
        self.v2.refresh_from_db()
        assert self.v2.status == DeploymentStatus.ROLLED_BACK

    def test_newest_snapshot_as_json(self):
        output = self.call("development", "--project", "web-app", "--role", "admin", "--json")

        data = json.loads(output)
        assert data["snapshot_id"] == self.v2.snapshot.snapshot_id
        assert data["status"] == "success"

    def test_snapshot_or_project_required(self):
        with pytest.raises(CommandError, match="--snapshot"):
            self.call("development", "--role", "admin")

    def test_no_snapshot_for_project(self):
        with pytest.raises(CommandError, match="No verified snapshots"):
            self.call("production", "--project", "web-app", "--role", "admin")

    def test_invalid_target(self):
        with pytest.raises(CommandError, match="Invalid rollback target"):
            self.call("staging", "--snapshot", self.v1.snapshot.snapshot_id, "--role", "admin")

    def test_failed_rollback_needs_intervention(self):
        self.runner.failures = {"Redeploying": 1}

        with pytest.raises(CommandError, match="Manual intervention required"):
            self.call("development", "--snapshot", self.v1.snapshot.snapshot_id, "--role", "admin")

    def test_failure_lists_recovery_options(self):
        self.runner.failures = {"Redeploying": 1}
        err = StringIO()

        with pytest.raises(CommandError):
            self.call(
                "development",
                "--snapshot",
                self.v1.snapshot.snapshot_id,
                "--role",
                "admin",
                stderr=err,
            )

        assert "Recovery options:" in err.getvalue()
        assert f"Roll back to snapshot {self.v2.snapshot.snapshot_id}" in err.getvalue()

    def test_role_required(self):
        with pytest.raises(CommandError, match="--role"):
            self.call("development", "--project", "web-app")

    def test_developer_cannot_roll_back(self):
        with pytest.raises(CommandError, match="may not roll back development"):
            self.call(
                "development", "--project", "web-app", "--actor", "dana", "--role", "developer"
            )

        self.v2.refresh_from_db()
        assert self.v2.status == DeploymentStatus.SUCCESS

    def test_request_then_approve(self):
        output = self.call(
            "development",
            "--project",
            "web-app",
            "--actor",
            "dana",
            "--role",
            "developer",
            "--request",
            "--json",
        )
        rollback_id = json.loads(output)["rollback_id"]
        self.v2.refresh_from_db()
        assert self.v2.status == DeploymentStatus.SUCCESS

        output = self.call(
            "development", "--approve", rollback_id, "--actor", "ada", "--role", "admin"
        )

        assert "succeeded" in output
        self.v2.refresh_from_db()
        assert self.v2.status == DeploymentStatus.ROLLED_BACK
