"""
JSON view helpers shared by the HTTP surfaces of every app.
"""

from __future__ import annotations

import json
from typing import Any

from django.http import JsonResponse

from apps.deployments.exceptions import (
    AlreadyDecided,
    DeploymentNotFound,
    InsufficientPermission,
    RollbackFailed,
    RollbackNotFound,
    SessionNotFound,
)
from apps.orchestration.exceptions import (
    ConfigurationNotFound,
    InvalidTransition,
    OrchestrationError,
    PipelineNotFound,
    ProjectNotFound,
    TestExecutionNotFound,
)

NOT_FOUND = (
    ProjectNotFound,
    ConfigurationNotFound,
    PipelineNotFound,
    TestExecutionNotFound,
    DeploymentNotFound,
    SessionNotFound,
    RollbackNotFound,
)


class InvalidRequest(Exception):
    """The request body is not usable."""


def parse_json_body(request) -> dict[str, Any]:
    if not request.body:
        return {}
    try:
        body = json.loads(request.body)
    except json.JSONDecodeError as e:
        raise InvalidRequest("Invalid JSON body") from e
    if not isinstance(body, dict):
        raise InvalidRequest("JSON body must be an object")
    return body


def require(body: dict[str, Any], *names: str) -> None:
    missing = [name for name in names if not body.get(name)]
    if missing:
        raise InvalidRequest(f"Missing required fields: {', '.join(missing)}")


class JSONResponseMixin:
    """Mixin for JSON responses."""

    def json_response(self, data: Any, status: int = 200) -> JsonResponse:
        return JsonResponse(data, status=status, safe=not isinstance(data, list))

    def error_response(self, message: str, status: int = 400, **extra: Any) -> JsonResponse:
        return JsonResponse({"error": message, **extra}, status=status)

    def domain_error_response(self, error: OrchestrationError) -> JsonResponse:
        """Map a domain error to its HTTP status."""
        message = str(error)
        error_type = type(error).__name__
        if isinstance(error, InsufficientPermission):
            return self.error_response(message, status=403, error_type=error_type)
        if isinstance(error, (AlreadyDecided, InvalidTransition)):
            return self.error_response(message, status=409, error_type=error_type)
        if isinstance(error, NOT_FOUND):
            return self.error_response(message, status=404, error_type=error_type)
        if isinstance(error, RollbackFailed):
            return self.error_response(
                message,
                status=500,
                error_type=error_type,
                rollback_id=error.rollback_id,
                failed_step=error.step,
                analysis=error.analysis,
                escalate=True,
            )
        return self.error_response(message, status=400, error_type=error_type)


def isoformat(value) -> str | None:
    return value.isoformat() if value else None
