"""
Views for the orchestration app.

Provides HTTP endpoints for webhooks, pipeline runs, pipeline
configurations and the release dashboard.
"""

import logging
from typing import Any

from django.http import HttpResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from apps.deployments.views import deployment_to_dict, rollback_to_dict
from apps.orchestration.container import get_services
from apps.orchestration.exceptions import InvalidWebhook, OrchestrationError
from apps.orchestration.http import (
    InvalidRequest,
    JSONResponseMixin,
    isoformat,
    parse_json_body,
    require,
)
from apps.orchestration.models import PipelineConfiguration, PipelineExecution
from apps.orchestration.tasks import handle_webhook_task, run_pipeline_task
from apps.orchestration.webhooks import detect_event_type, parse_webhook

logger = logging.getLogger(__name__)


def execution_to_dict(execution: PipelineExecution, include_stages: bool = False) -> dict[str, Any]:
    data = {
        "execution_id": execution.execution_id,
        "project_id": execution.project_id,
        "commit_id": execution.commit_id,
        "branch": execution.branch,
        "triggered_by": execution.triggered_by,
        "environment": execution.environment,
        "status": execution.status,
        "error_message": execution.error_message or None,
        "config_version": execution.configuration.version,
        "retry_of": execution.retry_of.execution_id if execution.retry_of else None,
        "started_at": isoformat(execution.started_at),
        "completed_at": isoformat(execution.completed_at),
        "duration_ms": execution.duration_ms,
    }
    if include_stages:
        data["stages"] = [
            {
                "position": stage.position,
                "name": stage.name,
                "status": stage.status,
                "attempts": stage.attempts,
                "continue_on_error": stage.continue_on_error,
                "error_type": stage.error_type or None,
                "error": stage.error or None,
                "output": stage.output,
                "started_at": isoformat(stage.started_at),
                "completed_at": isoformat(stage.completed_at),
                "duration_ms": stage.duration_ms,
            }
            for stage in execution.stages.order_by("position")
        ]
    return data


def configuration_to_dict(configuration: PipelineConfiguration) -> dict[str, Any]:
    return {
        "config_id": configuration.config_id,
        "project_id": configuration.project_id,
        "version": configuration.version,
        "created_at": isoformat(configuration.created_at),
        **configuration.plan().to_dict(),
    }


@method_decorator(csrf_exempt, name="dispatch")
class WebhookView(JSONResponseMixin, View):
    """
    Source control webhook receiver.

    POST /orchestration/webhooks/<project_id>/

    The event type comes from X-GitHub-Event / X-Gitlab-Event, then from the
    payload. Accepted events are queued; ignored ones return 200.
    """

    def post(self, request, project_id: str):
        try:
            payload = parse_json_body(request)
            event_type = detect_event_type(request.headers, payload)
            event = parse_webhook(event_type, payload)
        except InvalidRequest as e:
            return self.error_response(str(e))
        except InvalidWebhook as e:
            logger.warning(f"Rejected webhook for {project_id}: {e}")
            return self.domain_error_response(e)

        if event is None:
            return self.json_response({"status": "ignored", "event_type": event_type})

        if not get_services().store.exists(project_id):
            return self.error_response(f"Project not found: {project_id}", status=404)

        task_result = handle_webhook_task.delay(project_id, event_type, payload)
        return self.json_response(
            {"status": "queued", "event_type": event_type, "task_id": task_result.id},
            status=202,
        )


@method_decorator(csrf_exempt, name="dispatch")
class PipelineView(JSONResponseMixin, View):
    """
    API endpoint for triggering and listing pipelines.

    POST /orchestration/pipelines/
    {
        "project_id": "web-app",
        "commit_id": "abc123",
        "branch": "main",
        "actor": "dana",
        "environment": "staging",   // Optional
        "parameters": {...}         // Optional
    }

    GET /orchestration/pipelines/?project_id=web-app&status=failed&limit=20
    """

    def post(self, request):
        try:
            body = parse_json_body(request)
            require(body, "project_id", "commit_id", "branch")
        except InvalidRequest as e:
            return self.error_response(str(e))

        try:
            execution = get_services().orchestrator.trigger(
                body["project_id"],
                commit_id=body["commit_id"],
                branch=body["branch"],
                actor=body.get("actor", ""),
                environment=body.get("environment"),
                parameters=body.get("parameters") or {},
            )
        except OrchestrationError as e:
            return self.domain_error_response(e)

        task_result = run_pipeline_task.delay(execution.execution_id)
        return self.json_response(
            {**execution_to_dict(execution), "task_id": task_result.id},
            status=202,
        )

    def get(self, request):
        status = request.GET.get("status")
        project_id = request.GET.get("project_id")
        try:
            limit = int(request.GET.get("limit", 50))
        except ValueError:
            return self.error_response("limit must be an integer")

        queryset = PipelineExecution.objects.select_related("configuration", "retry_of")
        if project_id:
            queryset = queryset.filter(project_id=project_id)
        if status:
            queryset = queryset.filter(status=status)

        executions = [execution_to_dict(e) for e in queryset.order_by("-created_at", "-id")[:limit]]
        return self.json_response({"count": len(executions), "executions": executions})


@method_decorator(csrf_exempt, name="dispatch")
class PipelineStatusView(JSONResponseMixin, View):
    """
    GET /orchestration/pipelines/<execution_id>/
        Execution status with every stage.
    """

    def get(self, request, execution_id: str):
        try:
            execution = get_services().orchestrator.get_execution(execution_id)
        except OrchestrationError as e:
            return self.domain_error_response(e)
        return self.json_response(execution_to_dict(execution, include_stages=True))


@method_decorator(csrf_exempt, name="dispatch")
class PipelineCancelView(JSONResponseMixin, View):
    """
    POST /orchestration/pipelines/<execution_id>/cancel/
        Takes effect at the next stage boundary.
    """

    def post(self, request, execution_id: str):
        try:
            body = parse_json_body(request)
        except InvalidRequest as e:
            return self.error_response(str(e))

        try:
            execution = get_services().orchestrator.cancel(execution_id, body.get("actor", ""))
        except OrchestrationError as e:
            return self.domain_error_response(e)
        return self.json_response(
            {**execution_to_dict(execution), "cancel_requested": True},
            status=202,
        )


@method_decorator(csrf_exempt, name="dispatch")
class PipelineRetryView(JSONResponseMixin, View):
    """
    POST /orchestration/pipelines/<execution_id>/retry/
        Start a new execution of a failed or cancelled pipeline.
    """

    def post(self, request, execution_id: str):
        try:
            body = parse_json_body(request)
        except InvalidRequest as e:
            return self.error_response(str(e))

        try:
            execution = get_services().orchestrator.retry_execution(
                execution_id, body.get("actor", "")
            )
        except OrchestrationError as e:
            return self.domain_error_response(e)

        task_result = run_pipeline_task.delay(execution.execution_id)
        return self.json_response(
            {**execution_to_dict(execution), "task_id": task_result.id},
            status=202,
        )


@method_decorator(csrf_exempt, name="dispatch")
class ConfigurationView(JSONResponseMixin, View):
    """
    Pipeline configurations of a project.

    POST /orchestration/projects/<project_id>/configurations/
        Generate a new configuration version. Without "language" the
        project's stored profile is used.
    {
        "language": "nodejs",
        "target_platforms": ["web", "docker"],
        "settings": {"enable_security_scan": true},
        "actor": "dana"
    }

    GET /orchestration/projects/<project_id>/configurations/
        Latest configuration. ?format=yaml returns the YAML export.
    """

    def post(self, request, project_id: str):
        try:
            body = parse_json_body(request)
        except InvalidRequest as e:
            return self.error_response(str(e))

        generator = get_services().generator
        actor = body.get("actor", "")
        try:
            if "language" in body:
                configuration = generator.generate(
                    project_id,
                    body["language"],
                    body.get("target_platforms") or [],
                    body.get("settings") or {},
                    actor=actor,
                )
            else:
                configuration = generator.generate_for_project(project_id, actor=actor)
        except OrchestrationError as e:
            return self.domain_error_response(e)
        return self.json_response(configuration_to_dict(configuration), status=201)

    def get(self, request, project_id: str):
        generator = get_services().generator
        try:
            configuration = generator.get_latest(project_id)
        except OrchestrationError as e:
            return self.domain_error_response(e)

        if request.GET.get("format") == "yaml":
            return HttpResponse(
                generator.export_yaml(configuration),
                content_type="application/x-yaml",
            )
        return self.json_response(configuration_to_dict(configuration))


@method_decorator(csrf_exempt, name="dispatch")
class DashboardView(JSONResponseMixin, View):
    """
    GET /orchestration/dashboard/?project_id=web-app&environment=production&window_days=7

    Executing and monitored deployments, pending approvals and rollback
    requests, recent pipelines and deployments, and success metrics over
    the window.
    """

    def get(self, request):
        try:
            window_days = int(request.GET.get("window_days", 7))
        except ValueError:
            return self.error_response("window_days must be an integer")
        if window_days < 1:
            return self.error_response("window_days must be at least 1")

        data = get_services().dashboard.get_dashboard_data(
            project_id=request.GET.get("project_id"),
            environment=request.GET.get("environment"),
            window_days=window_days,
        )
        return self.json_response(
            {
                "active_deployments": {
                    "executing": [deployment_to_dict(d) for d in data.executing_deployments],
                    "monitoring": [
                        {
                            "session_id": s.session_id,
                            "deployment_id": s.deployment.deployment_id,
                            "environment": s.environment,
                            "rollback_recommended": s.rollback_recommended,
                            "ends_at": isoformat(s.ends_at),
                        }
                        for s in data.monitored_sessions
                    ],
                },
                "pending_approvals": [deployment_to_dict(d) for d in data.pending_approvals],
                "pending_rollbacks": [rollback_to_dict(r) for r in data.pending_rollbacks],
                "recent_executions": [execution_to_dict(e) for e in data.recent_executions],
                "deployment_history": [deployment_to_dict(d) for d in data.deployment_history],
                "metrics": data.metrics,
                "generated_at": isoformat(data.generated_at),
            }
        )
