from unittest import mock

from django.test import TestCase

from apps.deployments.models import DeploymentStatus, HealthSession
from apps.deployments.policy import Actor, Role
from apps.deployments.tasks import execute_deployment_task, poll_health_session
from apps.orchestration._tests.fakes import ScriptedProbeFactory, make_project, make_services

HEALTH_CHECKS = [{"name": "app", "kind": "command", "target": "true", "threshold": 2}]


class DeploymentTaskTests(TestCase):
    def setUp(self):
        make_project(
            "web-app", settings={"health_checks": HEALTH_CHECKS, "rollback_on_failure": False}
        )
        self.probes = ScriptedProbeFactory()
        self.services, *_ = make_services(probe_factory=self.probes)
        patcher = mock.patch(
            "apps.orchestration.container.get_services", return_value=self.services
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def deploy(self, **kwargs):
        return self.services.deployment_trigger.trigger_deployment(
            "web-app", "development", "v1", "", Actor("dana", Role.DEVELOPER), **kwargs
        )

    def test_execute_deployment_task(self):
        deployment = self.deploy(execute=False)

        result = execute_deployment_task.apply(args=[deployment.deployment_id]).get()

        assert result["status"] == DeploymentStatus.SUCCESS
        assert result["deployment_id"] == deployment.deployment_id

    def test_redelivered_execution_is_skipped(self):
        deployment = self.deploy(execute=False)
        execute_deployment_task.apply(args=[deployment.deployment_id]).get()

        with self.assertLogs("apps.deployments.tasks", level="WARNING"):
            result = execute_deployment_task.apply(args=[deployment.deployment_id]).get()

        assert result["status"] == "skipped"
        assert "cannot execute from success" in result["error"]

    @mock.patch("apps.deployments.tasks.poll_health_session")
    def test_poll_reschedules_while_healthy(self, rescheduler):
        session = HealthSession.objects.get(deployment=self.deploy())

        result = poll_health_session.apply(args=[session.session_id]).get()

        assert result["active"] is True
        rescheduler.apply_async.assert_called_once_with(args=[session.session_id], countdown=30)

    @mock.patch("apps.deployments.tasks.poll_health_session")
    def test_poll_stops_once_rollback_is_recommended(self, rescheduler):
        session = HealthSession.objects.get(deployment=self.deploy())
        self.probes.scripts["app"] = [False]

        poll_health_session.apply(args=[session.session_id]).get()
        result = poll_health_session.apply(args=[session.session_id]).get()

        assert result["rollback_recommended"] is True
        assert rescheduler.apply_async.call_count == 1

    @mock.patch("apps.deployments.tasks.poll_health_session")
    def test_poll_stops_for_inactive_session(self, rescheduler):
        session = HealthSession.objects.get(deployment=self.deploy())
        self.services.monitor.stop_session(session.session_id)

        result = poll_health_session.apply(args=[session.session_id]).get()

        assert result["active"] is False
        rescheduler.apply_async.assert_not_called()
