"""Roles and the deployment approval policy."""

from dataclasses import dataclass

from django.conf import settings
from django.db import models


class Role(models.TextChoices):
    ADMIN = "admin", "Admin"
    LEAD_DEVELOPER = "lead_developer", "Lead developer"
    DEVELOPER = "developer", "Developer"
    VIEWER = "viewer", "Viewer"


DEFAULT_APPROVER_ROLES = {
    "development": [Role.ADMIN, Role.LEAD_DEVELOPER],
    "staging": [Role.ADMIN, Role.LEAD_DEVELOPER],
    "production": [Role.ADMIN],
}

# Pipelines request deployments on behalf of whoever pushed.
PIPELINE_ROLE = Role.DEVELOPER


@dataclass(frozen=True)
class Actor:
    name: str
    role: str = Role.DEVELOPER

    def __str__(self):
        return f"{self.name} ({self.role})"


def approver_roles(environment: str) -> set[str]:
    configured = getattr(settings, "DEPLOYMENT_APPROVER_ROLES", DEFAULT_APPROVER_ROLES)
    return {str(role) for role in configured.get(environment, [Role.ADMIN])}


def can_approve(actor: Actor, environment: str) -> bool:
    return actor.role in approver_roles(environment)


def can_request(actor: Actor) -> bool:
    return actor.role != Role.VIEWER
