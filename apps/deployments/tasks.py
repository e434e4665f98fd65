"""Celery tasks for deployments and health monitoring."""

from __future__ import annotations

import logging
from typing import Any

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task(bind=True)
def execute_deployment_task(self, deployment_id: str) -> dict[str, Any]:
    """Run an approved deployment. A redelivered task for a claimed request is skipped."""
    from apps.orchestration.container import get_services
    from apps.orchestration.exceptions import InvalidTransition

    try:
        deployment = get_services().deployment_trigger.execute(deployment_id)
    except InvalidTransition as e:
        logger.warning(
            f"Skipping deployment {deployment_id}: {e}", extra={"deployment_id": deployment_id}
        )
        return {"deployment_id": deployment_id, "status": "skipped", "error": str(e)}
    return {
        "deployment_id": deployment.deployment_id,
        "status": deployment.status,
        "error": deployment.error_message,
    }


@shared_task(bind=True)
def poll_health_session(self, session_id: str) -> dict[str, Any]:
    """
    Observe a health session once and schedule the next poll.

    Polling stops when the session is no longer active (window elapsed or
    stopped) or once rollback has been recommended.
    """
    from apps.orchestration.container import get_services

    monitor = get_services().monitor
    observation = monitor.observe(session_id)

    if observation.active and not observation.rollback_recommended:
        session = monitor.get_session(session_id)
        poll_health_session.apply_async(args=[session_id], countdown=session.interval_seconds)
    else:
        logger.info(
            f"Health polling finished for session {session_id}",
            extra={"session_id": session_id, "deployment_id": observation.deployment_id},
        )
    return observation.to_dict()
