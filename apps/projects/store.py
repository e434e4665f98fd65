"""Read-only project lookups."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from apps.orchestration.exceptions import ProjectNotFound


@dataclass(frozen=True)
class ProjectProfile:
    """Language/platform profile of a project, detached from the ORM."""

    project_id: str
    name: str
    language: str
    target_platforms: tuple[str, ...] = ()
    settings: dict[str, Any] = field(default_factory=dict)
    repository: str = ""
    default_branch: str = "main"
    scm_provider: str = ""


class ProjectStore:
    """Looks up project metadata. Never writes."""

    def get_profile(self, project_id: str) -> ProjectProfile:
        from apps.projects.models import Project

        try:
            project = Project.objects.get(slug=project_id)
        except Project.DoesNotExist:
            raise ProjectNotFound(f"Project not found: {project_id}")

        return ProjectProfile(
            project_id=project.slug,
            name=project.name,
            language=project.language,
            target_platforms=tuple(project.target_platforms or ()),
            settings=dict(project.settings or {}),
            repository=project.repository,
            default_branch=project.default_branch,
            scm_provider=project.scm_provider,
        )

    def exists(self, project_id: str) -> bool:
        from apps.projects.models import Project

        return Project.objects.filter(slug=project_id).exists()
