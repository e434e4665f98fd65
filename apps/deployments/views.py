"""
Views for the deployments app.

Deployment requests and approvals, rollbacks and health sessions. The
caller's identity comes from the request body or query string as
``actor`` + ``role``.
"""

import logging
from typing import Any

from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from apps.deployments.models import DeploymentRequest, DeploymentStatus, RollbackRecord, Snapshot
from apps.deployments.policy import Actor, Role
from apps.deployments.tasks import execute_deployment_task
from apps.orchestration.container import get_services
from apps.orchestration.exceptions import OrchestrationError
from apps.orchestration.http import (
    InvalidRequest,
    JSONResponseMixin,
    isoformat,
    parse_json_body,
    require,
)

logger = logging.getLogger(__name__)


def actor_from(data, name_field: str = "actor") -> Actor:
    name = data.get(name_field)
    role = data.get("role")
    if not name or not role:
        raise InvalidRequest(f"'{name_field}' and 'role' are required")
    if role not in Role.values:
        raise InvalidRequest(f"Unknown role: {role}")
    return Actor(name=name, role=role)


def deployment_to_dict(deployment: DeploymentRequest, include_log: bool = False) -> dict[str, Any]:
    data = {
        "deployment_id": deployment.deployment_id,
        "project_id": deployment.project_id,
        "environment": deployment.environment,
        "version": deployment.version,
        "commit_id": deployment.commit_id,
        "status": deployment.status,
        "requested_by": deployment.requested_by,
        "reason": deployment.reason,
        "decided_by": deployment.decided_by or None,
        "decided_at": isoformat(deployment.decided_at),
        "decision_reason": deployment.decision_reason or None,
        "error_message": deployment.error_message or None,
        "snapshot_id": deployment.snapshot.snapshot_id if deployment.snapshot else None,
        "created_at": isoformat(deployment.created_at),
        "completed_at": isoformat(deployment.completed_at),
    }
    if include_log:
        data["log"] = [
            {"level": e.level, "message": e.message, "at": isoformat(e.created_at)}
            for e in reversed(list(deployment.log_entries.order_by("-id")[:100]))
        ]
        data["health_sessions"] = list(
            deployment.health_sessions.values_list("session_id", flat=True)
        )
    return data


def snapshot_to_dict(snapshot: Snapshot) -> dict[str, Any]:
    return {
        "snapshot_id": snapshot.snapshot_id,
        "project_id": snapshot.project_id,
        "environment": snapshot.environment,
        "version": snapshot.version,
        "commit_id": snapshot.commit_id,
        "config_files": snapshot.config_files,
        "data_backup_ref": snapshot.data_backup_ref,
        "verified": snapshot.verified,
        "created_at": isoformat(snapshot.created_at),
    }


def rollback_to_dict(record: RollbackRecord) -> dict[str, Any]:
    return {
        "rollback_id": record.rollback_id,
        "project_id": record.project_id,
        "environment": record.environment,
        "snapshot_id": record.snapshot.snapshot_id,
        "deployment_id": record.deployment.deployment_id if record.deployment else None,
        "status": record.status,
        "reason": record.reason,
        "requested_by": record.actor,
        "approved_by": record.approved_by or None,
        "decided_at": isoformat(record.decided_at),
        "failed_step": record.failed_step or None,
        "error_message": record.error_message or None,
        "health_results": record.health_results,
        "analysis": record.analysis or None,
        "created_at": isoformat(record.created_at),
        "completed_at": isoformat(record.completed_at),
    }


def _limit(request, default: int = 50) -> int:
    try:
        return int(request.GET.get("limit", default))
    except ValueError:
        raise InvalidRequest("limit must be an integer") from None


@method_decorator(csrf_exempt, name="dispatch")
class DeploymentView(JSONResponseMixin, View):
    """
    POST /deployments/
    {
        "project_id": "web-app",
        "environment": "production",
        "version": "v1.4.0",
        "reason": "release",
        "actor": "dana",
        "role": "developer"
    }
        201 with status pending_approval, or 202 when queued for execution.

    GET /deployments/?environment=production&project_id=web-app&limit=20
        Resolved deployments, newest first.
    """

    def post(self, request):
        try:
            body = parse_json_body(request)
            require(body, "project_id", "environment", "version")
            actor = actor_from(body)
        except InvalidRequest as e:
            return self.error_response(str(e))

        try:
            deployment = get_services().deployment_trigger.trigger_deployment(
                body["project_id"],
                body["environment"],
                body["version"],
                body.get("reason", ""),
                actor,
                commit_id=body.get("commit_id", ""),
                branch=body.get("branch", ""),
                execute=False,
            )
        except OrchestrationError as e:
            return self.domain_error_response(e)

        if deployment.status == DeploymentStatus.PENDING_APPROVAL:
            return self.json_response(deployment_to_dict(deployment), status=201)

        task_result = execute_deployment_task.delay(deployment.deployment_id)
        return self.json_response(
            {**deployment_to_dict(deployment), "task_id": task_result.id},
            status=202,
        )

    def get(self, request):
        try:
            limit = _limit(request)
        except InvalidRequest as e:
            return self.error_response(str(e))

        history = get_services().deployment_trigger.get_deployment_history(
            environment=request.GET.get("environment"),
            limit=limit,
            project_id=request.GET.get("project_id"),
        )
        deployments = [deployment_to_dict(d) for d in history]
        return self.json_response({"count": len(deployments), "deployments": deployments})


@method_decorator(csrf_exempt, name="dispatch")
class DeploymentDetailView(JSONResponseMixin, View):
    """GET /deployments/<deployment_id>/"""

    def get(self, request, deployment_id: str):
        try:
            deployment = get_services().deployment_trigger.get_deployment(deployment_id)
        except OrchestrationError as e:
            return self.domain_error_response(e)
        return self.json_response(deployment_to_dict(deployment, include_log=True))


@method_decorator(csrf_exempt, name="dispatch")
class DeploymentDecisionView(JSONResponseMixin, View):
    """
    POST /deployments/<deployment_id>/approve/   {"approver": "ada", "role": "admin"}
    POST /deployments/<deployment_id>/reject/    {"approver": "ada", "role": "admin", "reason": "..."}

    403 without an approver role (or on one's own request), 409 when the
    request was already decided.
    """

    decision = "approve"

    def post(self, request, deployment_id: str):
        try:
            body = parse_json_body(request)
            approver = actor_from(body, "approver")
        except InvalidRequest as e:
            return self.error_response(str(e))

        trigger = get_services().deployment_trigger
        try:
            if self.decision == "approve":
                deployment = trigger.approve(deployment_id, approver, execute=False)
            else:
                deployment = trigger.reject(deployment_id, approver, body.get("reason", ""))
        except OrchestrationError as e:
            return self.domain_error_response(e)

        if self.decision == "approve":
            task_result = execute_deployment_task.delay(deployment.deployment_id)
            return self.json_response(
                {**deployment_to_dict(deployment), "task_id": task_result.id},
                status=202,
            )
        return self.json_response(deployment_to_dict(deployment))


@method_decorator(csrf_exempt, name="dispatch")
class PendingApprovalsView(JSONResponseMixin, View):
    """
    GET /deployments/pending/?environment=production
    GET /deployments/pending/?approver=ada&role=admin   (only what ada may decide)
    """

    def get(self, request):
        approver = None
        if request.GET.get("approver"):
            try:
                approver = actor_from(request.GET, "approver")
            except InvalidRequest as e:
                return self.error_response(str(e))

        pending = get_services().deployment_trigger.get_pending_approvals(
            environment=request.GET.get("environment"),
            approver=approver,
        )
        deployments = [deployment_to_dict(d) for d in pending]
        return self.json_response({"count": len(deployments), "deployments": deployments})


@method_decorator(csrf_exempt, name="dispatch")
class EnvironmentsView(JSONResponseMixin, View):
    """GET /deployments/environments/<project_id>/?actor=dana&role=developer"""

    def get(self, request, project_id: str):
        try:
            actor = actor_from(request.GET)
        except InvalidRequest as e:
            return self.error_response(str(e))

        try:
            environments = get_services().deployment_trigger.get_available_environments(
                project_id, actor
            )
        except OrchestrationError as e:
            return self.domain_error_response(e)
        return self.json_response({"environments": environments})


@method_decorator(csrf_exempt, name="dispatch")
class RollbackView(JSONResponseMixin, View):
    """
    GET /deployments/rollback/<environment>/?project_id=web-app
        Verified snapshots, newest first.

    POST /deployments/rollback/<environment>/
    {"snapshot_id": "...", "reason": "bad release", "actor": "ada", "role": "admin"}
        Roll back now. 403 unless the role may approve deployments to the
        environment, 400 for an invalid target, 500 (escalate) with the
        failure analysis when the rollback failed.

    POST /deployments/rollback/<environment>/request/
    {"snapshot_id": "...", "reason": "bad release", "actor": "dana", "role": "developer"}
        201 with status pending_approval.
    """

    mode = "execute"

    def get(self, request, environment: str):
        snapshots = get_services().rollback.get_rollback_options(
            environment, project_id=request.GET.get("project_id")
        )
        return self.json_response({"snapshots": [snapshot_to_dict(s) for s in snapshots]})

    def post(self, request, environment: str):
        try:
            body = parse_json_body(request)
            require(body, "snapshot_id")
            actor = actor_from(body)
        except InvalidRequest as e:
            return self.error_response(str(e))

        controller = get_services().rollback
        operation = controller.rollback if self.mode == "execute" else controller.request_rollback
        try:
            result = operation(environment, body["snapshot_id"], body.get("reason", ""), actor)
        except OrchestrationError as e:
            return self.domain_error_response(e)
        return self.json_response(result.to_dict(), status=200 if self.mode == "execute" else 201)


@method_decorator(csrf_exempt, name="dispatch")
class RollbackDetailView(JSONResponseMixin, View):
    """
    GET /deployments/rollbacks/<rollback_id>/
        The rollback, with its failure analysis when it failed.

    POST /deployments/rollbacks/<rollback_id>/approve/   {"approver": "ada", "role": "admin"}
    POST /deployments/rollbacks/<rollback_id>/reject/
    {"approver": "ada", "role": "admin", "reason": "..."}
        403 without an approver role (or on one's own request), 409 when
        the request was already decided.
    """

    decision = None

    def get(self, request, rollback_id: str):
        try:
            record = get_services().rollback.get_rollback(rollback_id)
        except OrchestrationError as e:
            return self.domain_error_response(e)
        return self.json_response(rollback_to_dict(record))

    def post(self, request, rollback_id: str):
        if self.decision is None:
            return self.error_response("Method not allowed", status=405)
        try:
            body = parse_json_body(request)
            approver = actor_from(body, "approver")
        except InvalidRequest as e:
            return self.error_response(str(e))

        controller = get_services().rollback
        try:
            if self.decision == "approve":
                controller.approve_rollback(rollback_id, approver)
            else:
                controller.reject_rollback(rollback_id, approver, body.get("reason", ""))
            record = controller.get_rollback(rollback_id)
        except OrchestrationError as e:
            return self.domain_error_response(e)
        return self.json_response(rollback_to_dict(record))


@method_decorator(csrf_exempt, name="dispatch")
class PendingRollbacksView(JSONResponseMixin, View):
    """GET /deployments/rollbacks/?environment=production"""

    def get(self, request):
        pending = get_services().rollback.get_pending_rollbacks(
            environment=request.GET.get("environment")
        )
        rollbacks = [rollback_to_dict(r) for r in pending]
        return self.json_response({"count": len(rollbacks), "rollbacks": rollbacks})


@method_decorator(csrf_exempt, name="dispatch")
class HealthSessionView(JSONResponseMixin, View):
    """
    GET  /deployments/sessions/<session_id>/           metrics
    POST /deployments/sessions/<session_id>/observe/   run the checks once
    POST /deployments/sessions/<session_id>/stop/      end monitoring
    """

    action = "metrics"

    def get(self, request, session_id: str):
        try:
            metrics = get_services().monitor.get_metrics(session_id)
        except OrchestrationError as e:
            return self.domain_error_response(e)
        return self.json_response(metrics)

    def post(self, request, session_id: str):
        monitor = get_services().monitor
        try:
            if self.action == "observe":
                return self.json_response(monitor.observe(session_id).to_dict())
            body = parse_json_body(request)
            monitor.stop_session(session_id, body.get("reason", "stopped by request"))
            return self.json_response(monitor.get_metrics(session_id))
        except InvalidRequest as e:
            return self.error_response(str(e))
        except OrchestrationError as e:
            return self.domain_error_response(e)
