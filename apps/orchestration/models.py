"""
Models for pipeline orchestration.

Provides the persisted pipeline configuration plus state tracking for
pipeline executions and their stages.
"""

from django.db import models
from django.utils import timezone

from apps.orchestration.dtos import PipelinePlan
from apps.orchestration.exceptions import InvalidTransition


class ExecutionStatus(models.TextChoices):
    """PipelineExecution state machine: running -> success | failed | cancelled."""

    RUNNING = "running", "Running"
    SUCCESS = "success", "Success"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"


class StageStatus(models.TextChoices):
    """Status for individual stages."""

    PENDING = "pending", "Pending"
    RUNNING = "running", "Running"
    SUCCESS = "success", "Success"
    FAILED = "failed", "Failed"
    SKIPPED = "skipped", "Skipped"


TERMINAL_STAGE_STATUSES = (StageStatus.SUCCESS, StageStatus.FAILED, StageStatus.SKIPPED)


class PipelineConfiguration(models.Model):
    """
    Generated, versioned pipeline plan for a project.

    Rows are never updated: regenerating a project's configuration writes a new
    row with a bumped version, so every execution keeps the exact stage order
    it was started with.
    """

    config_id = models.CharField(max_length=64, unique=True)
    project = models.ForeignKey(
        "projects.Project",
        to_field="slug",
        on_delete=models.CASCADE,
        related_name="pipeline_configurations",
    )
    language = models.CharField(max_length=50)
    target_platforms = models.JSONField(default=list, blank=True)
    settings = models.JSONField(
        default=dict,
        blank=True,
        help_text="Settings the plan was generated from.",
    )
    stages = models.JSONField(default=list, help_text="Ordered stage templates.")
    environments = models.JSONField(default=dict)
    test_policy = models.JSONField(default=dict)
    deployment_policy = models.JSONField(default=dict)
    version = models.CharField(max_length=20, default="1.0.0")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["project", "created_at"], name="pipeconf_project_created_idx"),
        ]

    def __str__(self):
        return f"{self.project_id} v{self.version}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise InvalidTransition(
                f"Pipeline configuration {self.config_id} is immutable; regenerate it instead"
            )
        super().save(*args, **kwargs)

    def plan(self) -> PipelinePlan:
        """Rebuild the typed plan from the stored JSON."""
        return PipelinePlan.from_dict(
            {
                "language": self.language,
                "target_platforms": self.target_platforms,
                "stages": self.stages,
                "environments": self.environments,
                "test_policy": self.test_policy,
                "deployment_policy": self.deployment_policy,
            }
        )


class PipelineExecution(models.Model):
    """
    One run of the full pipeline for a specific commit on a branch.

    completed_at is set exactly when status leaves RUNNING, and a terminal
    status is never changed again.
    """

    execution_id = models.CharField(max_length=64, unique=True)
    project = models.ForeignKey(
        "projects.Project",
        to_field="slug",
        on_delete=models.CASCADE,
        related_name="pipeline_executions",
    )
    configuration = models.ForeignKey(
        PipelineConfiguration,
        on_delete=models.PROTECT,
        related_name="executions",
    )
    commit_id = models.CharField(max_length=64)
    branch = models.CharField(max_length=255)
    triggered_by = models.CharField(max_length=255, blank=True, default="")
    environment = models.CharField(max_length=50, default="development")
    parameters = models.JSONField(default=dict, blank=True)
    status = models.CharField(
        max_length=20,
        choices=ExecutionStatus.choices,
        default=ExecutionStatus.RUNNING,
        db_index=True,
    )
    cancel_requested = models.BooleanField(
        default=False,
        help_text="Cancellation takes effect at the next stage boundary.",
    )
    retry_of = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="retries",
    )
    error_message = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    started_at = models.DateTimeField(default=timezone.now)
    claimed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Set by the one runner that executes the stages.",
    )
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["project", "created_at"], name="pipeexec_project_created_idx"),
            models.Index(fields=["status", "created_at"], name="pipeexec_status_created_idx"),
        ]

    def __str__(self):
        return f"Pipeline {self.execution_id} [{self.status}]"

    @property
    def is_running(self) -> bool:
        return self.status == ExecutionStatus.RUNNING

    @property
    def duration_ms(self) -> float:
        if not self.completed_at:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds() * 1000

    def claim(self):
        """Take the stages of a running execution; a second runner is refused."""
        now = timezone.now()
        claimed = PipelineExecution.objects.filter(
            pk=self.pk, status=ExecutionStatus.RUNNING, claimed_at__isnull=True
        ).update(claimed_at=now)
        if not claimed:
            self.refresh_from_db(fields=["status", "claimed_at"])
            state = self.status if not self.is_running else "claimed by another runner"
            raise InvalidTransition(f"Pipeline {self.execution_id} is already {state}")
        self.claimed_at = now

    def _finish(self, status: str, error_message: str = ""):
        if self.status != ExecutionStatus.RUNNING:
            raise InvalidTransition(
                f"Pipeline {self.execution_id} is already {self.status}; cannot move to {status}"
            )
        self.status = status
        self.completed_at = timezone.now()
        self.error_message = error_message
        self.save(update_fields=["status", "completed_at", "error_message"])

    def mark_succeeded(self):
        """Mark pipeline as succeeded."""
        self._finish(ExecutionStatus.SUCCESS)

    def mark_failed(self, error_message: str):
        """Mark pipeline as failed. Permanent."""
        self._finish(ExecutionStatus.FAILED, error_message)

    def mark_cancelled(self, reason: str = ""):
        """Mark pipeline as cancelled."""
        self._finish(ExecutionStatus.CANCELLED, reason)

    def cancellation_requested(self) -> bool:
        """Re-read the cancel flag; it may be set by another process."""
        return (
            PipelineExecution.objects.filter(pk=self.pk)
            .values_list("cancel_requested", flat=True)
            .first()
            or False
        )


class Stage(models.Model):
    """
    One step within a PipelineExecution.

    Stages are created together, all PENDING, when the execution is created,
    and run strictly in position order.
    """

    execution = models.ForeignKey(
        PipelineExecution,
        on_delete=models.CASCADE,
        related_name="stages",
    )
    position = models.PositiveIntegerField()
    name = models.CharField(max_length=100)
    status = models.CharField(
        max_length=20,
        choices=StageStatus.choices,
        default=StageStatus.PENDING,
        db_index=True,
    )
    continue_on_error = models.BooleanField(default=False)
    attempts = models.PositiveIntegerField(default=0)
    output = models.TextField(blank=True, default="")
    error_type = models.CharField(max_length=100, blank=True, default="")
    error = models.TextField(blank=True, default="")
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    duration_ms = models.FloatField(default=0.0)

    class Meta:
        ordering = ["execution", "position"]
        constraints = [
            models.UniqueConstraint(
                fields=["execution", "position"],
                name="unique_stage_position",
            ),
        ]

    def __str__(self):
        return f"{self.execution.execution_id} / {self.name} [{self.status}]"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STAGE_STATUSES

    def mark_running(self):
        """Mark stage as running. Only a pending stage can start."""
        now = timezone.now()
        started = Stage.objects.filter(pk=self.pk, status=StageStatus.PENDING).update(
            status=StageStatus.RUNNING, started_at=now
        )
        if not started:
            self.refresh_from_db(fields=["status"])
            raise InvalidTransition(f"Stage {self.name} is {self.status}, expected pending")
        self.status = StageStatus.RUNNING
        self.started_at = now

    def _complete(self, status: str, **fields):
        self.status = status
        self.completed_at = timezone.now()
        if self.started_at:
            delta = self.completed_at - self.started_at
            self.duration_ms = delta.total_seconds() * 1000
        for name, value in fields.items():
            setattr(self, name, value)
        self.save(update_fields=["status", "completed_at", "duration_ms", *fields.keys()])

    def mark_succeeded(self, output: str = "", attempts: int = 1):
        """Mark stage as succeeded."""
        self._complete(StageStatus.SUCCESS, output=output, attempts=attempts)

    def mark_deferred(self, output: str, reason: str):
        """Mark stage as handed off. It succeeded, but its work has not happened yet."""
        self._complete(StageStatus.SUCCESS, output=output, error=f"Deferred: {reason}")

    def mark_failed(self, error_type: str, error: str, output: str = "", attempts: int = 1):
        """Mark stage as failed."""
        self._complete(
            StageStatus.FAILED,
            error_type=error_type,
            error=error,
            output=output,
            attempts=attempts,
        )

    def mark_skipped(self, reason: str = ""):
        """Mark stage as skipped."""
        self._complete(StageStatus.SKIPPED, error=f"Skipped: {reason}" if reason else "")
