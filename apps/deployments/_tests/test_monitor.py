from datetime import timedelta

import pytest
from django.test import TestCase
from django.utils import timezone

from apps.deployments.exceptions import DeploymentNotFound, SessionNotFound
from apps.deployments.health import build_probe
from apps.deployments.models import HealthSession
from apps.deployments.policy import Actor, Role
from apps.orchestration._tests.fakes import ScriptedProbeFactory, make_project, make_services
from apps.orchestration.dtos import HealthCheckSpec
from apps.orchestration.events import RollbackRecommendedEvent

HEALTH_CHECKS = [
    {"name": "app", "kind": "command", "target": "systemctl is-active app", "threshold": 3},
    {"name": "cpu", "kind": "cpu", "threshold": 2},
]


class DeploymentMonitorTests(TestCase):
    def setUp(self):
        make_project(
            "web-app",
            settings={"health_checks": HEALTH_CHECKS, "rollback_on_failure": False},
        )
        self.probes = ScriptedProbeFactory()
        self.services, _, self.sink, self.audit, self.scheduled = make_services(
            probe_factory=self.probes
        )
        self.monitor = self.services.monitor
        self.deployment = self.services.deployment_trigger.trigger_deployment(
            "web-app", "development", "v1.0.0", "", Actor("dana", Role.DEVELOPER)
        )
        self.session_id = HealthSession.objects.get(deployment=self.deployment).session_id

    def script(self, name, *outcomes):
        self.probes.scripts[name] = list(outcomes)

    def test_session_started_after_deployment(self):
        session = self.monitor.get_session(self.session_id)

        assert session.active is True
        assert session.interval_seconds == 30
        assert [c.name for c in session.checks.all()] == ["app", "cpu"]
        assert self.scheduled == [(self.session_id, 30)]
        assert "deployment_monitoring_started" in self.audit.actions

    def test_failures_below_threshold(self):
        self.script("app", False)

        self.monitor.observe(self.session_id)
        observation = self.monitor.observe(self.session_id)

        app = next(c for c in observation.checks if c["name"] == "app")
        assert app["consecutive_failures"] == 2
        assert app["passed"] is False
        assert observation.rollback_recommended is False
        assert self.sink.of_type(RollbackRecommendedEvent) == []

    def test_success_resets_counter(self):
        self.script("app", False, False, True, False, False)

        for _ in range(5):
            observation = self.monitor.observe(self.session_id)

        app = next(c for c in observation.checks if c["name"] == "app")
        assert app["consecutive_failures"] == 2
        assert observation.rollback_recommended is False
        metrics = self.monitor.get_metrics(self.session_id)
        assert next(c for c in metrics["checks"] if c["name"] == "app")["total_failures"] == 4

    def test_threshold_recommends_rollback_once(self):
        self.script("cpu", False)

        first = self.monitor.observe(self.session_id)
        second = self.monitor.observe(self.session_id)
        third = self.monitor.observe(self.session_id)

        assert first.rollback_recommended is False
        assert second.rollback_recommended is True
        assert second.newly_recommended is True
        assert third.rollback_recommended is True
        assert third.newly_recommended is False

        events = self.sink.of_type(RollbackRecommendedEvent)
        assert len(events) == 1
        assert events[0].check_name == "cpu"
        assert events[0].consecutive_failures == 2
        assert self.audit.actions.count("deployment_rollback_recommended") == 1
        assert "rollback_awaiting_decision" in self.audit.actions
        assert self.monitor.get_session(self.session_id).recommended_check == "cpu"

    def test_metrics(self):
        self.script("app", True, False)

        self.monitor.observe(self.session_id)
        self.monitor.observe(self.session_id)
        metrics = self.monitor.get_metrics(self.session_id)

        assert metrics["observations"] == 2
        assert metrics["failed_observations"] == 1
        assert metrics["success_rate"] == 50.0
        assert metrics["deployment_id"] == self.deployment.deployment_id

    def test_metrics_before_first_observation(self):
        assert self.monitor.get_metrics(self.session_id)["success_rate"] is None

    def test_stopped_session_is_not_checked(self):
        self.monitor.stop_session(self.session_id, "manual")

        observation = self.monitor.observe(self.session_id)

        assert observation.active is False
        assert self.probes.probed == []
        assert self.monitor.get_session(self.session_id).stop_reason == "manual"
        assert self.monitor.get_active_sessions() == []

    def test_window_elapsed_closes_session(self):
        HealthSession.objects.filter(session_id=self.session_id).update(
            ends_at=timezone.now() - timedelta(seconds=1)
        )

        observation = self.monitor.observe(self.session_id)

        assert observation.active is False
        assert self.probes.probed == ["app", "cpu"]
        assert self.audit.actions[-1] == "deployment_monitoring_stopped"

    def test_active_sessions_by_environment(self):
        assert [s.session_id for s in self.monitor.get_active_sessions("development")] == [
            self.session_id
        ]
        assert self.monitor.get_active_sessions("production") == []

    def test_start_session_with_explicit_checks(self):
        session_id = self.monitor.start_session(
            self.deployment.deployment_id,
            [HealthCheckSpec(name="memory", kind="memory", threshold=0)],
            interval_seconds=5,
            window_seconds=60,
        )

        session = self.monitor.get_session(session_id)
        assert session.interval_seconds == 5
        assert session.checks.get().threshold == 1

    def test_unbuildable_check_counts_as_failure(self):
        self.monitor.probe_factory = build_probe
        session_id = self.monitor.start_session(
            self.deployment.deployment_id, [HealthCheckSpec(name="tcp", kind="tcp", threshold=1)]
        )

        observation = self.monitor.observe(session_id)

        [check] = observation.checks
        assert check["passed"] is False
        assert "tcp" in check["message"]
        assert observation.rollback_recommended is True

    def test_unknown_ids(self):
        with pytest.raises(SessionNotFound):
            self.monitor.observe("missing")
        with pytest.raises(DeploymentNotFound):
            self.monitor.start_session("missing", [])
