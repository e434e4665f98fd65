"""
Views for the testruns app.

Test execution status and history, manual triggers and merge readiness.
"""

import logging
from typing import Any

from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from apps.orchestration.container import get_services
from apps.orchestration.exceptions import OrchestrationError
from apps.orchestration.http import (
    InvalidRequest,
    JSONResponseMixin,
    isoformat,
    parse_json_body,
    require,
)
from apps.testruns.models import TestExecution

logger = logging.getLogger(__name__)


def serialize_test_execution(execution: TestExecution, include_suites: bool = True) -> dict[str, Any]:
    data = {
        "test_execution_id": execution.test_execution_id,
        "project_id": execution.project_id,
        "trigger_type": execution.trigger_type,
        "status": execution.status,
        "commit_id": execution.commit_id,
        "branch": execution.branch,
        "pr_id": execution.pr_id or None,
        "author": execution.author,
        "parallel": execution.parallel,
        "started_at": isoformat(execution.started_at),
        "completed_at": isoformat(execution.completed_at),
    }
    if include_suites:
        data["suites"] = [
            {
                "name": run.name,
                "status": run.status,
                "optional": run.optional,
                "attempts": run.attempts,
                "error": run.error or None,
                "duration_ms": run.duration_ms,
            }
            for run in execution.suite_runs.all()
        ]
    return data


@method_decorator(csrf_exempt, name="dispatch")
class TestRunsView(JSONResponseMixin, View):
    """
    POST /tests/projects/<project_id>/
        Run suites on request.
    {
        "branch": "main",
        "actor": "dana",
        "suites": ["unit", "integration"],   // Optional: all enabled suites
        "commit_id": "abc123"                // Optional
    }

    GET /tests/projects/<project_id>/?limit=20
        Test history, newest first.
    """

    def post(self, request, project_id: str):
        try:
            body = parse_json_body(request)
            require(body, "branch")
        except InvalidRequest as e:
            return self.error_response(str(e))

        try:
            execution = get_services().test_trigger.trigger_manual(
                project_id,
                body["branch"],
                body.get("actor", ""),
                suites=body.get("suites") or None,
                commit_id=body.get("commit_id", ""),
            )
        except OrchestrationError as e:
            return self.domain_error_response(e)
        return self.json_response(serialize_test_execution(execution), status=201)

    def get(self, request, project_id: str):
        try:
            limit = int(request.GET.get("limit", 50))
        except ValueError:
            return self.error_response("limit must be an integer")

        history = get_services().test_trigger.get_test_history(project_id, limit=limit)
        executions = [serialize_test_execution(e, include_suites=False) for e in history]
        return self.json_response({"count": len(executions), "executions": executions})


@method_decorator(csrf_exempt, name="dispatch")
class TestRunStatusView(JSONResponseMixin, View):
    """GET /tests/<test_execution_id>/"""

    def get(self, request, test_execution_id: str):
        try:
            execution = get_services().test_trigger.get_execution(test_execution_id)
        except OrchestrationError as e:
            return self.domain_error_response(e)
        return self.json_response(serialize_test_execution(execution))


@method_decorator(csrf_exempt, name="dispatch")
class MergeReadinessView(JSONResponseMixin, View):
    """GET /tests/projects/<project_id>/pull-requests/<pr_id>/merge-ready/"""

    def get(self, request, project_id: str, pr_id: str):
        try:
            ready = get_services().test_trigger.is_merge_ready(project_id, pr_id)
        except OrchestrationError as e:
            return self.domain_error_response(e)
        return self.json_response({"project_id": project_id, "pr_id": pr_id, "merge_ready": ready})
