"""
Deployment Monitor.

Tracks health sessions for deployed versions. Each observation runs every
check once: a failure bumps that check's consecutive-failure counter, a
success resets it. When a counter reaches its threshold the session is
flagged rollback_recommended (once, never cleared) and a
RollbackRecommendedEvent is broadcast. The monitor never rolls back itself.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from apps.audit.recorder import AuditRecorder
from apps.deployments.exceptions import DeploymentNotFound, SessionNotFound
from apps.deployments.health import HealthProbe, build_probe, run_check
from apps.deployments.models import DeploymentRequest, HealthCheckState, HealthSession
from apps.orchestration.dtos import HealthCheckSpec
from apps.orchestration.events import EventBus, RollbackRecommendedEvent

logger = logging.getLogger(__name__)


@dataclass
class HealthObservation:
    """Result of one observe() call."""

    session_id: str
    deployment_id: str
    active: bool
    rollback_recommended: bool
    newly_recommended: bool = False
    checks: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "deployment_id": self.deployment_id,
            "active": self.active,
            "rollback_recommended": self.rollback_recommended,
            "newly_recommended": self.newly_recommended,
            "checks": self.checks,
        }


def _check_dict(check: HealthCheckState) -> dict[str, Any]:
    return {
        "name": check.name,
        "kind": check.kind,
        "passed": check.last_passed,
        "message": check.last_message,
        "consecutive_failures": check.consecutive_failures,
        "threshold": check.threshold,
    }


class DeploymentMonitor:
    """
    Owns health sessions and their per-check counters.

    Usage:
        monitor = get_services().monitor
        session_id = monitor.start_session(deployment_id, checks)
        observation = monitor.observe(session_id)
    """

    def __init__(
        self,
        bus: EventBus,
        audit: AuditRecorder,
        probe_factory: Callable[[HealthCheckSpec], HealthProbe] = build_probe,
    ):
        self.bus = bus
        self.audit = audit
        self.probe_factory = probe_factory

    def start_session(
        self,
        deployment_id: str,
        health_checks: list[HealthCheckSpec],
        interval_seconds: int | None = None,
        window_seconds: int | None = None,
    ) -> str:
        """Open a new session for a deployment. Returns the session id."""
        try:
            deployment = DeploymentRequest.objects.get(deployment_id=deployment_id)
        except DeploymentRequest.DoesNotExist:
            raise DeploymentNotFound(f"Deployment not found: {deployment_id}") from None

        interval = interval_seconds or getattr(settings, "DEPLOYMENT_HEALTH_POLL_INTERVAL", 30)
        window = window_seconds or getattr(settings, "DEPLOYMENT_MONITORING_WINDOW", 600)
        now = timezone.now()

        with transaction.atomic():
            session = HealthSession.objects.create(
                session_id=str(uuid.uuid4()),
                deployment=deployment,
                environment=deployment.environment,
                interval_seconds=interval,
                started_at=now,
                ends_at=now + timedelta(seconds=window),
            )
            HealthCheckState.objects.bulk_create(
                [
                    HealthCheckState(
                        session=session,
                        name=spec.name,
                        kind=spec.kind,
                        target=spec.target,
                        threshold=max(1, spec.threshold),
                        timeout_seconds=spec.timeout_seconds,
                        options=spec.options,
                    )
                    for spec in health_checks
                ]
            )

        deployment.log(
            f"Health monitoring started ({len(health_checks)} checks, every {interval}s for {window}s)"
        )
        self.audit.record(
            "deployment_monitoring_started",
            f"Monitoring deployment {deployment_id} in {deployment.environment}",
            {
                "session_id": session.session_id,
                "deployment_id": deployment_id,
                "checks": [spec.name for spec in health_checks],
            },
        )
        return session.session_id

    def observe(self, session_id: str) -> HealthObservation:
        """
        Probe every check once and update counters.

        Inactive sessions are reported as they are, without probing. A session
        whose window has elapsed is closed after this observation.
        """
        session = self.get_session(session_id)
        deployment = session.deployment
        checks = list(session.checks.all())

        if not session.active:
            return self._observation(session, checks)

        crossed: HealthCheckState | None = None
        any_failed = False
        for check in checks:
            result = run_check(self._spec(check), self.probe_factory)
            reached = check.record(result.passed, result.message)
            if not result.passed:
                any_failed = True
                deployment.log(
                    f"Health check {check.name} failed "
                    f"({check.consecutive_failures}/{check.threshold}): {result.message}",
                    level="warning",
                )
            if reached and crossed is None:
                crossed = check

        session.observations += 1
        session.failed_observations += 1 if any_failed else 0
        session.last_observed_at = timezone.now()
        session.save(update_fields=["observations", "failed_observations", "last_observed_at"])

        newly_recommended = False
        if crossed is not None and session.recommend_rollback(crossed.name):
            newly_recommended = True
            self._recommend(session, crossed)

        if session.last_observed_at >= session.ends_at:
            self._close(session, "monitoring window elapsed")

        return self._observation(session, checks, newly_recommended)

    def stop_session(self, session_id: str, reason: str = "stopped") -> HealthSession:
        session = self.get_session(session_id)
        if session.active:
            self._close(session, reason)
        return session

    def get_session(self, session_id: str) -> HealthSession:
        try:
            return HealthSession.objects.select_related("deployment").get(session_id=session_id)
        except HealthSession.DoesNotExist:
            raise SessionNotFound(f"Health session not found: {session_id}") from None

    def get_active_sessions(self, environment: str | None = None) -> list[HealthSession]:
        queryset = HealthSession.objects.filter(active=True).select_related("deployment")
        if environment:
            queryset = queryset.filter(environment=environment)
        return list(queryset.order_by("-started_at", "-id"))

    def get_metrics(self, session_id: str) -> dict[str, Any]:
        session = self.get_session(session_id)
        checks = list(session.checks.all())
        observations = session.observations
        return {
            "session_id": session.session_id,
            "deployment_id": session.deployment.deployment_id,
            "environment": session.environment,
            "active": session.active,
            "rollback_recommended": session.rollback_recommended,
            "observations": observations,
            "failed_observations": session.failed_observations,
            "success_rate": (
                round((observations - session.failed_observations) / observations * 100, 1)
                if observations
                else None
            ),
            "started_at": session.started_at.isoformat(),
            "last_observed_at": (
                session.last_observed_at.isoformat() if session.last_observed_at else None
            ),
            "checks": [
                {**_check_dict(check), "total_failures": check.total_failures} for check in checks
            ],
        }

    def _spec(self, check: HealthCheckState) -> HealthCheckSpec:
        return HealthCheckSpec(
            name=check.name,
            kind=check.kind,
            target=check.target,
            threshold=check.threshold,
            timeout_seconds=check.timeout_seconds,
            options=check.options,
        )

    def _recommend(self, session: HealthSession, check: HealthCheckState) -> None:
        deployment = session.deployment
        deployment.log(
            f"Rollback recommended: {check.name} failed {check.consecutive_failures} times in a row",
            level="error",
        )
        logger.warning(
            f"Rollback recommended for deployment {deployment.deployment_id} ({check.name})",
            extra={"deployment_id": deployment.deployment_id, "session_id": session.session_id},
        )
        self.audit.record(
            "deployment_rollback_recommended",
            f"Health check {check.name} crossed its failure threshold",
            {
                "session_id": session.session_id,
                "deployment_id": deployment.deployment_id,
                "check": check.name,
                "consecutive_failures": check.consecutive_failures,
                "threshold": check.threshold,
            },
        )
        self.bus.broadcast(
            RollbackRecommendedEvent(
                session_id=session.session_id,
                deployment_id=deployment.deployment_id,
                environment=session.environment,
                check_name=check.name,
                consecutive_failures=check.consecutive_failures,
            )
        )

    def _close(self, session: HealthSession, reason: str) -> None:
        session.stop(reason)
        session.deployment.log(f"Health monitoring stopped: {reason}")
        self.audit.record(
            "deployment_monitoring_stopped",
            f"Monitoring session {session.session_id} stopped: {reason}",
            {"session_id": session.session_id, "observations": session.observations},
        )

    @staticmethod
    def _observation(
        session: HealthSession,
        checks: list[HealthCheckState],
        newly_recommended: bool = False,
    ) -> HealthObservation:
        return HealthObservation(
            session_id=session.session_id,
            deployment_id=session.deployment.deployment_id,
            active=session.active,
            rollback_recommended=session.rollback_recommended,
            newly_recommended=newly_recommended,
            checks=[_check_dict(check) for check in checks],
        )
