"""Project metadata used to generate and run pipelines."""

from django.db import models


class SourceControlProvider(models.TextChoices):
    """Hosting provider backing a project's repository."""

    GITHUB = "github", "GitHub"
    GITLAB = "gitlab", "GitLab"
    NONE = "", "None"


class Project(models.Model):
    """
    A buildable, deployable project.

    The slug is the project identifier used by every other app; pipelines,
    test executions and deployments reference projects through it.
    """

    slug = models.SlugField(
        max_length=100,
        unique=True,
        help_text="Project identifier used in URLs, webhooks and records.",
    )
    name = models.CharField(max_length=255)
    language = models.CharField(
        max_length=50,
        help_text="Ecosystem tag (flutter, nodejs, python, dotnet, ...).",
    )
    target_platforms = models.JSONField(
        default=list,
        blank=True,
        help_text="Target platforms (web, linux, android, docker, ...).",
    )
    settings = models.JSONField(
        default=dict,
        blank=True,
        help_text="Pipeline settings (enable_security_scan, deployment_strategy, ...).",
    )
    repository = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Repository path on the provider (e.g. 'acme/web-app').",
    )
    default_branch = models.CharField(max_length=255, default="main")
    scm_provider = models.CharField(
        max_length=20,
        choices=SourceControlProvider.choices,
        blank=True,
        default=SourceControlProvider.NONE,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["slug"]

    def __str__(self):
        return f"{self.name} ({self.slug})"
