"""Celery tasks for pipeline orchestration.

These tasks wrap the PipelineOrchestrator for async execution via Celery.
Executions are created synchronously by the caller; the tasks only run them.
"""

from __future__ import annotations

import logging
from typing import Any

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def run_pipeline_task(self, execution_id: str) -> dict[str, Any]:
    """
    Run the stages of a triggered PipelineExecution.

    Args:
        execution_id: Execution created by PipelineOrchestrator.trigger().

    Returns:
        Final execution status.
    """
    from apps.orchestration.container import get_services
    from apps.orchestration.exceptions import InvalidTransition

    try:
        execution = get_services().orchestrator.run(execution_id)
    except InvalidTransition as e:
        # Redelivered task: another worker already ran or is running it
        logger.warning(
            f"Skipping pipeline {execution_id}: {e}", extra={"execution_id": execution_id}
        )
        return {"execution_id": execution_id, "status": "skipped", "error": str(e)}
    return {
        "execution_id": execution.execution_id,
        "status": execution.status,
        "error": execution.error_message,
    }


@shared_task(bind=True)
def handle_webhook_task(
    self,
    project_id: str,
    event_type: str,
    payload: dict[str, Any],
) -> dict[str, Any]:
    """
    Route a source control webhook and run any pipeline it started.

    Args:
        project_id: Project slug the webhook was delivered for.
        event_type: push, pull_request or release.
        payload: Raw webhook body.

    Returns:
        WebhookOutcome as dict.
    """
    from apps.orchestration.container import get_services
    from apps.orchestration.webhooks import parse_webhook

    orchestrator = get_services().orchestrator
    outcome = orchestrator.handle_webhook(project_id, parse_webhook(event_type, payload))
    if outcome.execution is not None:
        run_pipeline_task.delay(outcome.execution.execution_id)
    return outcome.to_dict()
