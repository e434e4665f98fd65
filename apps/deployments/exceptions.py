"""Deployment, monitoring and rollback errors."""

from apps.orchestration.exceptions import OrchestrationError


class InsufficientPermission(OrchestrationError):
    """The actor's role does not allow the operation. Nothing was changed."""


class AlreadyDecided(OrchestrationError):
    """The deployment request has already left pending_approval."""


class DeploymentNotFound(OrchestrationError):
    pass


class SessionNotFound(OrchestrationError):
    pass


class RollbackNotFound(OrchestrationError):
    pass


class InvalidTarget(OrchestrationError):
    """The rollback snapshot is missing, unverified or for another environment."""


class RollbackFailed(OrchestrationError):
    """
    A rollback step failed. Requires human escalation; never retried
    automatically. ``analysis`` carries the likely cause and the recovery
    options an operator can pick from.
    """

    def __init__(self, message: str, rollback_id: str = "", step: str = "", analysis=None):
        self.rollback_id = rollback_id
        self.step = step
        self.analysis = analysis or {}
        super().__init__(message)
