"""
Service container.

Builds every component once per process and wires them together through
their constructors. Only the edges (views, Celery tasks, management
commands) call get_services(); components never look each other up.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from apps.audit.recorder import AuditRecorder, get_audit_recorder
from apps.deployments.coordinator import DeploymentCoordinator
from apps.deployments.monitor import DeploymentMonitor
from apps.deployments.rollback import RollbackController
from apps.deployments.trigger import DeploymentTrigger
from apps.orchestration.dashboard import ReleaseDashboard
from apps.orchestration.events import EventBus
from apps.orchestration.executors import CommandRunner, StageExecutor, SubprocessCommandRunner
from apps.orchestration.generator import PipelineConfigGenerator
from apps.orchestration.orchestrator import PipelineOrchestrator
from apps.projects.store import ProjectStore
from apps.scm.registry import get_provider
from apps.testruns.trigger import AutomatedTestTrigger


@dataclass
class Services:
    audit: AuditRecorder
    bus: EventBus
    store: ProjectStore
    generator: PipelineConfigGenerator
    executor: StageExecutor
    test_trigger: AutomatedTestTrigger
    monitor: DeploymentMonitor
    deployment_trigger: DeploymentTrigger
    rollback: RollbackController
    coordinator: DeploymentCoordinator
    orchestrator: PipelineOrchestrator
    dashboard: ReleaseDashboard


def schedule_health_poll(session_id: str, countdown: int) -> None:
    from apps.deployments.tasks import poll_health_session

    poll_health_session.apply_async(args=[session_id], countdown=countdown)


def build_services(
    runner: CommandRunner | None = None,
    bus: EventBus | None = None,
    audit: AuditRecorder | None = None,
    schedule_health_poll=schedule_health_poll,
    **executor_options,
) -> Services:
    """Wire a fresh set of components. Tests pass fakes for the collaborators."""
    audit = audit if audit is not None else get_audit_recorder()
    bus = bus if bus is not None else EventBus()
    store = ProjectStore()
    generator = PipelineConfigGenerator(audit=audit, store=store)
    executor = StageExecutor(runner=runner or SubprocessCommandRunner(), **executor_options)

    test_trigger = AutomatedTestTrigger(generator, executor, bus, audit)
    monitor = DeploymentMonitor(bus, audit)
    deployment_trigger = DeploymentTrigger(
        generator,
        executor,
        monitor,
        bus,
        audit,
        schedule_health_poll=schedule_health_poll,
    )
    rollback = RollbackController(generator, executor, bus, audit)
    coordinator = DeploymentCoordinator(deployment_trigger, rollback, audit)
    coordinator.subscribe(bus)

    orchestrator = PipelineOrchestrator(
        generator,
        executor,
        bus,
        audit,
        test_trigger=test_trigger,
        scm_provider_factory=get_provider,
    )
    return Services(
        audit=audit,
        bus=bus,
        store=store,
        generator=generator,
        executor=executor,
        test_trigger=test_trigger,
        monitor=monitor,
        deployment_trigger=deployment_trigger,
        rollback=rollback,
        coordinator=coordinator,
        orchestrator=orchestrator,
        dashboard=ReleaseDashboard(deployment_trigger, monitor, rollback, audit),
    )


@lru_cache(maxsize=1)
def get_services() -> Services:
    """The process-wide container."""
    return build_services()
