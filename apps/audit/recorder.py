"""
Audit recorders.

Components receive an AuditRecorder through their constructor and call
``record(action_type, description, context)``. Recording never raises: a sink
failure is logged as a warning and the caller carries on.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from django.conf import settings

logger = logging.getLogger(__name__)


class AuditRecorder(ABC):
    """Abstract audit sink."""

    def record(
        self,
        action_type: str,
        description: str,
        context: dict[str, Any] | None = None,
        actor: str = "",
    ) -> None:
        """Record an action. Errors from the sink are swallowed and logged."""
        try:
            self._write(action_type, description, context or {}, actor)
        except Exception:
            logger.warning("Failed to record audit action '%s'", action_type, exc_info=True)

    @abstractmethod
    def _write(
        self,
        action_type: str,
        description: str,
        context: dict[str, Any],
        actor: str,
    ) -> None:
        raise NotImplementedError


class LoggingAuditRecorder(AuditRecorder):
    """Writes audit actions to the ``apps.audit`` logger only."""

    def _write(self, action_type, description, context, actor):
        logger.info(
            f"[AUDIT] {action_type}: {description}",
            extra={"audit_action": action_type, "audit_actor": actor, "audit_context": context},
        )


class DatabaseAuditRecorder(AuditRecorder):
    """Persists audit actions as AuditEntry rows."""

    def _write(self, action_type, description, context, actor):
        from apps.audit.models import AuditEntry

        AuditEntry.objects.create(
            action_type=action_type,
            description=description,
            actor=actor,
            context=_jsonable(context),
        )


def _jsonable(value: Any) -> Any:
    """Coerce context values into something JSONField accepts."""
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def get_audit_recorder() -> AuditRecorder:
    """Build the recorder selected by settings.AUDIT_BACKEND."""
    backend_name = getattr(settings, "AUDIT_BACKEND", "database")
    if backend_name == "logging":
        return LoggingAuditRecorder()
    return DatabaseAuditRecorder()
