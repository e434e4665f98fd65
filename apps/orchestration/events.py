"""
Typed events and the in-process event bus.

Every component publishes small, fixed-shape event objects instead of loose
dicts. The bus forwards each event to a sink (structured logging by default)
and to in-process subscribers.

Two delivery modes:
- broadcast(): fire-and-forget, at-most-once. A failing subscriber is logged
  and never breaks the publisher.
- dispatch(): request/response hand-off. Subscriber errors propagate and the
  first subscriber's return value is handed back to the publisher.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, ClassVar

from django.conf import settings

logger = logging.getLogger("apps.orchestration.events")


@dataclass(frozen=True)
class Event:
    """Base event. Subclasses set ``topic``."""

    topic: ClassVar[str] = "event"

    def payload(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class StageProgressEvent(Event):
    topic: ClassVar[str] = "pipeline.stage"

    execution_id: str
    project_id: str
    stage: str
    position: int
    status: str
    error: str = ""


@dataclass(frozen=True)
class PipelineStatusEvent(Event):
    topic: ClassVar[str] = "pipeline.status"

    execution_id: str
    project_id: str
    status: str
    error: str = ""


@dataclass(frozen=True)
class DeployStageReached(Event):
    """Published by the orchestrator when a pipeline reaches its deploy stage."""

    topic: ClassVar[str] = "pipeline.deploy_reached"

    execution_id: str
    project_id: str
    environment: str
    commit_id: str
    branch: str
    actor: str
    stage: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeploymentStatusEvent(Event):
    topic: ClassVar[str] = "deployment.status"

    deployment_id: str
    project_id: str
    environment: str
    status: str
    error: str = ""


@dataclass(frozen=True)
class RollbackRecommendedEvent(Event):
    topic: ClassVar[str] = "deployment.rollback_recommended"

    session_id: str
    deployment_id: str
    environment: str
    check_name: str
    consecutive_failures: int


@dataclass(frozen=True)
class RollbackEvent(Event):
    topic: ClassVar[str] = "deployment.rollback"

    rollback_id: str
    environment: str
    snapshot_id: str
    status: str
    error: str = ""


@dataclass(frozen=True)
class TestExecutionEvent(Event):
    __test__ = False

    topic: ClassVar[str] = "tests.status"

    test_execution_id: str
    project_id: str
    status: str


class EventSink(ABC):
    """Receives every event published on the bus."""

    @abstractmethod
    def emit(self, event: Event) -> None:
        raise NotImplementedError


class LoggingSink(EventSink):
    """Default sink: structured logging."""

    def emit(self, event: Event) -> None:
        data = {"topic": event.topic, **event.payload()}
        logger.info(f"[EVENT] {event.topic}", extra={"event_data": data})


class NullSink(EventSink):
    def emit(self, event: Event) -> None:
        return None


def get_event_sink() -> EventSink:
    """Get configured event sink."""
    backend_name = getattr(settings, "ORCHESTRATION_METRICS_BACKEND", "logging")
    if backend_name == "null":
        return NullSink()
    return LoggingSink()


Handler = Callable[[Any], Any]


class EventBus:
    """
    In-process publish/subscribe.

    Usage:
        bus = EventBus()
        bus.subscribe(RollbackRecommendedEvent, coordinator.on_rollback_recommended)
        bus.broadcast(RollbackRecommendedEvent(...))
    """

    def __init__(self, sink: EventSink | None = None):
        self.sink = sink if sink is not None else get_event_sink()
        self._handlers: dict[type[Event], list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type[Event], handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def has_subscribers(self, event_type: type[Event]) -> bool:
        return bool(self._handlers.get(event_type))

    def _emit_to_sink(self, event: Event) -> None:
        try:
            self.sink.emit(event)
        except Exception:
            logger.warning("Event sink failed for %s", event.topic, exc_info=True)

    def broadcast(self, event: Event) -> None:
        """Deliver at most once; subscriber failures are logged, not raised."""
        self._emit_to_sink(event)
        for handler in list(self._handlers.get(type(event), [])):
            try:
                handler(event)
            except Exception:
                logger.exception(f"Event handler failed for {event.topic}")

    def dispatch(self, event: Event) -> Any:
        """
        Deliver to subscribers and return the first subscriber's result.

        Returns None when nothing is subscribed. Errors propagate.
        """
        self._emit_to_sink(event)
        handlers = list(self._handlers.get(type(event), []))
        results = [handler(event) for handler in handlers]
        return results[0] if results else None
