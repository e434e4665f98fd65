"""Test doubles shared by the orchestration, testruns and deployments tests."""

from __future__ import annotations

import threading
from collections import defaultdict

from apps.audit.recorder import AuditRecorder
from apps.deployments.health import HealthProbe, ProbeResult
from apps.orchestration.container import build_services
from apps.orchestration.events import Event, EventBus, EventSink
from apps.orchestration.executors import CommandOutcome, CommandRunner
from apps.projects.models import Project


class FakeCommandRunner(CommandRunner):
    """
    Records commands instead of running them.

    ``failures`` maps a substring to the exit code of any command containing
    it; a list of codes is consumed one call at a time (last one repeats).
    """

    def __init__(self, failures=None, timeouts=()):
        self.failures = dict(failures or {})
        self.timeouts = tuple(timeouts)
        self.calls: list[tuple[str, dict[str, str]]] = []
        self._lock = threading.Lock()

    def run(self, command, *, env, cwd, timeout):
        with self._lock:
            self.calls.append((command, env))
            exit_code = 0
            for fragment, code in self.failures.items():
                if fragment in command:
                    if isinstance(code, list):
                        exit_code = code.pop(0) if len(code) > 1 else code[0]
                    else:
                        exit_code = code
                    break
        if any(fragment in command for fragment in self.timeouts):
            return CommandOutcome(command=command, exit_code=-1, output="hung", timed_out=True)
        return CommandOutcome(command=command, exit_code=exit_code, output=f"ran {command}")

    @property
    def commands(self) -> list[str]:
        return [command for command, _env in self.calls]


class RecordingSink(EventSink):
    def __init__(self):
        self.events: list[Event] = []

    def emit(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type):
        return [e for e in self.events if isinstance(e, event_type)]


class RecordingAuditRecorder(AuditRecorder):
    def __init__(self):
        self.entries: list[dict] = []

    def _write(self, action_type, description, context, actor):
        self.entries.append(
            {
                "action_type": action_type,
                "description": description,
                "context": context,
                "actor": actor,
            }
        )

    @property
    def actions(self) -> list[str]:
        return [entry["action_type"] for entry in self.entries]


class ScriptedProbe(HealthProbe):
    kind = "scripted"

    def __init__(self, name, outcomes):
        super().__init__(name)
        self.outcomes = outcomes

    def probe(self) -> ProbeResult:
        passed = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if passed:
            return self._ok(f"{self.name} healthy")
        return self._fail(f"{self.name} unhealthy")


class ScriptedProbeFactory:
    """
    Probe factory returning pre-scripted outcomes per check name.

    Unscripted checks pass. The last outcome of a script repeats.
    """

    def __init__(self, scripts=None):
        self.scripts = defaultdict(lambda: [True])
        for name, outcomes in (scripts or {}).items():
            self.scripts[name] = list(outcomes)
        self.probed: list[str] = []

    def __call__(self, spec):
        self.probed.append(spec.name)
        return ScriptedProbe(spec.name, self.scripts[spec.name])


def make_project(slug="web-app", language="nodejs", platforms=None, settings=None, **fields):
    return Project.objects.create(
        slug=slug,
        name=fields.pop("name", slug.replace("-", " ").title()),
        language=language,
        target_platforms=platforms if platforms is not None else ["web"],
        settings=settings or {},
        **fields,
    )


def make_services(runner=None, probe_factory=None, **executor_options):
    """
    Wire real components around fakes.

    Returns (services, runner, sink, audit, scheduled_polls).
    """
    runner = runner or FakeCommandRunner()
    sink = RecordingSink()
    audit = RecordingAuditRecorder()
    scheduled: list[tuple[str, int]] = []
    executor_options.setdefault("sleep", lambda seconds: None)
    executor_options.setdefault("backoff_factor", 0.0)

    services = build_services(
        runner=runner,
        bus=EventBus(sink=sink),
        audit=audit,
        schedule_health_poll=lambda session_id, countdown: scheduled.append(
            (session_id, countdown)
        ),
        **executor_options,
    )
    if probe_factory is not None:
        services.monitor.probe_factory = probe_factory
        services.rollback.probe_factory = probe_factory
    return services, runner, sink, audit, scheduled
