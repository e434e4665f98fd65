"""
Models for automated test runs.

A TestExecution groups the suite runs caused by one commit, pull request or
manual request.
"""

from django.db import models
from django.utils import timezone


class TriggerType(models.TextChoices):
    COMMIT = "commit", "Commit"
    PULL_REQUEST = "pull_request", "Pull request"
    MANUAL = "manual", "Manual"


class TestExecutionStatus(models.TextChoices):
    __test__ = False

    RUNNING = "running", "Running"
    PASSED = "passed", "Passed"
    FAILED = "failed", "Failed"


class SuiteStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    RUNNING = "running", "Running"
    PASSED = "passed", "Passed"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"


class TestExecution(models.Model):
    """One triggered batch of test suites."""

    __test__ = False

    test_execution_id = models.CharField(max_length=64, unique=True)
    project = models.ForeignKey(
        "projects.Project",
        to_field="slug",
        on_delete=models.CASCADE,
        related_name="test_executions",
    )
    trigger_type = models.CharField(max_length=20, choices=TriggerType.choices, db_index=True)
    status = models.CharField(
        max_length=20,
        choices=TestExecutionStatus.choices,
        default=TestExecutionStatus.RUNNING,
        db_index=True,
    )
    commit_id = models.CharField(max_length=64, blank=True, default="")
    branch = models.CharField(max_length=255, blank=True, default="")
    pr_id = models.CharField(max_length=64, blank=True, default="", db_index=True)
    source_branch = models.CharField(max_length=255, blank=True, default="")
    target_branch = models.CharField(max_length=255, blank=True, default="")
    author = models.CharField(max_length=255, blank=True, default="")
    changed_files = models.JSONField(default=list, blank=True)
    parallel = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    started_at = models.DateTimeField(default=timezone.now)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["project", "created_at"], name="testexec_project_created_idx"),
            models.Index(fields=["project", "pr_id"], name="testexec_project_pr_idx"),
        ]

    def __str__(self):
        return f"Tests {self.test_execution_id} [{self.status}]"

    def mark_completed(self, passed: bool):
        self.status = TestExecutionStatus.PASSED if passed else TestExecutionStatus.FAILED
        self.completed_at = timezone.now()
        self.save(update_fields=["status", "completed_at"])


class SuiteRun(models.Model):
    """One suite within a TestExecution."""

    test_execution = models.ForeignKey(
        TestExecution,
        on_delete=models.CASCADE,
        related_name="suite_runs",
    )
    name = models.CharField(max_length=100)
    command = models.TextField()
    optional = models.BooleanField(default=False)
    status = models.CharField(
        max_length=20,
        choices=SuiteStatus.choices,
        default=SuiteStatus.PENDING,
    )
    attempts = models.PositiveIntegerField(default=0)
    output = models.TextField(blank=True, default="")
    error = models.TextField(blank=True, default="")
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    duration_ms = models.FloatField(default=0.0)

    class Meta:
        ordering = ["test_execution", "id"]

    def __str__(self):
        return f"{self.name} [{self.status}]"

    def mark_running(self):
        self.status = SuiteStatus.RUNNING
        self.started_at = timezone.now()
        self.save(update_fields=["status", "started_at"])

    def mark_finished(self, passed: bool, output: str, error: str, attempts: int, duration_ms: float):
        self.status = SuiteStatus.PASSED if passed else SuiteStatus.FAILED
        self.output = output
        self.error = error
        self.attempts = attempts
        self.duration_ms = duration_ms
        self.completed_at = timezone.now()
        self.save(
            update_fields=["status", "output", "error", "attempts", "duration_ms", "completed_at"]
        )

    def mark_cancelled(self, reason: str = ""):
        self.status = SuiteStatus.CANCELLED
        self.error = reason
        self.completed_at = timezone.now()
        self.save(update_fields=["status", "error", "completed_at"])
