"""
Models for deployments, snapshots, health monitoring and rollbacks.
"""

from django.db import models
from django.utils import timezone

from apps.orchestration.exceptions import InvalidTransition

MAX_LOG_ENTRIES = 1000


class DeploymentStatus(models.TextChoices):
    PENDING_APPROVAL = "pending_approval", "Pending approval"
    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"
    EXECUTING = "executing", "Executing"
    SUCCESS = "success", "Success"
    FAILED = "failed", "Failed"
    ROLLED_BACK = "rolled_back", "Rolled back"


RESOLVED_STATUSES = (
    DeploymentStatus.REJECTED,
    DeploymentStatus.SUCCESS,
    DeploymentStatus.FAILED,
    DeploymentStatus.ROLLED_BACK,
)

# Deployments that may still be live in their environment
ACTIVE_STATUSES = (
    DeploymentStatus.EXECUTING,
    DeploymentStatus.SUCCESS,
    DeploymentStatus.FAILED,
)


class Snapshot(models.Model):
    """
    Restorable state of an environment: deployed commit, config file set and
    a data backup reference. Only verified snapshots are rollback targets.
    """

    snapshot_id = models.CharField(max_length=64, unique=True)
    project = models.ForeignKey(
        "projects.Project",
        to_field="slug",
        on_delete=models.CASCADE,
        related_name="snapshots",
    )
    environment = models.CharField(max_length=50, db_index=True)
    version = models.CharField(max_length=100, blank=True, default="")
    commit_id = models.CharField(max_length=64)
    config_files = models.JSONField(default=list, blank=True)
    data_backup_ref = models.CharField(max_length=255, blank=True, default="")
    verified = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["environment", "verified"], name="snapshot_env_verified_idx"),
        ]

    def __str__(self):
        flag = "verified" if self.verified else "unverified"
        return f"{self.environment}@{self.commit_id[:8]} [{flag}]"

    def mark_verified(self):
        self.verified = True
        self.save(update_fields=["verified"])


class DeploymentRequest(models.Model):
    """A request to deploy a version of a project to an environment."""

    deployment_id = models.CharField(max_length=64, unique=True)
    project = models.ForeignKey(
        "projects.Project",
        to_field="slug",
        on_delete=models.CASCADE,
        related_name="deployments",
    )
    configuration = models.ForeignKey(
        "orchestration.PipelineConfiguration",
        on_delete=models.PROTECT,
        related_name="deployments",
    )
    execution = models.ForeignKey(
        "orchestration.PipelineExecution",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="deployments",
    )
    snapshot = models.ForeignKey(
        Snapshot,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="deployments",
    )
    environment = models.CharField(max_length=50, db_index=True)
    version = models.CharField(max_length=100)
    commit_id = models.CharField(max_length=64, blank=True, default="")
    branch = models.CharField(max_length=255, blank=True, default="")
    stage = models.JSONField(default=dict, blank=True, help_text="Deploy stage template to run.")
    requested_by = models.CharField(max_length=255)
    requested_role = models.CharField(max_length=50)
    reason = models.TextField(blank=True, default="")
    status = models.CharField(
        max_length=20,
        choices=DeploymentStatus.choices,
        db_index=True,
    )
    decided_by = models.CharField(max_length=255, blank=True, default="")
    decided_at = models.DateTimeField(null=True, blank=True)
    decision_reason = models.TextField(blank=True, default="")
    output = models.TextField(blank=True, default="")
    error_message = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["environment", "status"], name="deploy_env_status_idx"),
            models.Index(fields=["project", "created_at"], name="deploy_project_created_idx"),
        ]

    def __str__(self):
        return (
            f"Deployment {self.deployment_id} {self.version} -> {self.environment} [{self.status}]"
        )

    def mark_executing(self):
        """Claim an approved request. Only one caller can move it out of approved."""
        now = timezone.now()
        claimed = DeploymentRequest.objects.filter(
            pk=self.pk, status=DeploymentStatus.APPROVED
        ).update(status=DeploymentStatus.EXECUTING, started_at=now)
        if not claimed:
            self.refresh_from_db(fields=["status"])
            raise InvalidTransition(
                f"Deployment {self.deployment_id} cannot execute from {self.status}"
            )
        self.status = DeploymentStatus.EXECUTING
        self.started_at = now

    def _resolve(self, status: str, **fields):
        if self.status != DeploymentStatus.EXECUTING:
            raise InvalidTransition(
                f"Deployment {self.deployment_id} is not executing ({self.status})"
            )
        self.status = status
        self.completed_at = timezone.now()
        for name, value in fields.items():
            setattr(self, name, value)
        self.save(update_fields=["status", "completed_at", *fields])

    def mark_succeeded(self, output: str = ""):
        self._resolve(DeploymentStatus.SUCCESS, output=output)

    def mark_failed(self, error_message: str, output: str = ""):
        self._resolve(DeploymentStatus.FAILED, error_message=error_message, output=output)

    def mark_rolled_back(self):
        if self.status not in ACTIVE_STATUSES:
            raise InvalidTransition(
                f"Deployment {self.deployment_id} cannot roll back from {self.status}"
            )
        self.status = DeploymentStatus.ROLLED_BACK
        self.completed_at = self.completed_at or timezone.now()
        self.save(update_fields=["status", "completed_at"])

    def log(self, message: str, level: str = "info") -> "DeploymentLogEntry":
        return DeploymentLogEntry.append(self, message, level)


class DeploymentLogEntry(models.Model):
    """Deployment log line. Only the newest MAX_LOG_ENTRIES per deployment are kept."""

    deployment = models.ForeignKey(
        DeploymentRequest,
        on_delete=models.CASCADE,
        related_name="log_entries",
    )
    level = models.CharField(max_length=10, default="info")
    message = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["deployment", "id"]

    def __str__(self):
        return f"[{self.level}] {self.message[:60]}"

    @classmethod
    def append(cls, deployment: DeploymentRequest, message: str, level: str = "info"):
        entry = cls.objects.create(deployment=deployment, message=message, level=level)
        stale = cls.objects.filter(deployment=deployment).order_by("-id")[MAX_LOG_ENTRIES:]
        stale_ids = list(stale.values_list("id", flat=True))
        if stale_ids:
            cls.objects.filter(id__in=stale_ids).delete()
        return entry


class HealthSession(models.Model):
    """Health monitoring state for one deployment."""

    session_id = models.CharField(max_length=64, unique=True)
    deployment = models.ForeignKey(
        DeploymentRequest,
        on_delete=models.CASCADE,
        related_name="health_sessions",
    )
    environment = models.CharField(max_length=50)
    active = models.BooleanField(default=True, db_index=True)
    rollback_recommended = models.BooleanField(default=False)
    recommended_check = models.CharField(max_length=100, blank=True, default="")
    interval_seconds = models.PositiveIntegerField(default=30)
    observations = models.PositiveIntegerField(default=0)
    failed_observations = models.PositiveIntegerField(default=0)
    started_at = models.DateTimeField(default=timezone.now)
    ends_at = models.DateTimeField()
    last_observed_at = models.DateTimeField(null=True, blank=True)
    stopped_at = models.DateTimeField(null=True, blank=True)
    stop_reason = models.CharField(max_length=255, blank=True, default="")

    class Meta:
        ordering = ["-started_at", "-id"]

    def __str__(self):
        return f"Health session {self.session_id} ({self.environment})"

    def recommend_rollback(self, check_name: str) -> bool:
        """Set the flag once. Returns True only on the first call."""
        if self.rollback_recommended:
            return False
        self.rollback_recommended = True
        self.recommended_check = check_name
        self.save(update_fields=["rollback_recommended", "recommended_check"])
        return True

    def stop(self, reason: str = ""):
        self.active = False
        self.stopped_at = timezone.now()
        self.stop_reason = reason
        self.save(update_fields=["active", "stopped_at", "stop_reason"])


class HealthCheckState(models.Model):
    """One health check within a session and its failure counters."""

    session = models.ForeignKey(
        HealthSession,
        on_delete=models.CASCADE,
        related_name="checks",
    )
    name = models.CharField(max_length=100)
    kind = models.CharField(max_length=20)
    target = models.CharField(max_length=500, blank=True, default="")
    threshold = models.PositiveIntegerField(default=3)
    timeout_seconds = models.FloatField(default=30.0)
    options = models.JSONField(default=dict, blank=True)
    last_passed = models.BooleanField(null=True, blank=True)
    last_message = models.TextField(blank=True, default="")
    consecutive_failures = models.PositiveIntegerField(default=0)
    total_failures = models.PositiveIntegerField(default=0)
    checked_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["session", "id"]
        constraints = [
            models.UniqueConstraint(fields=["session", "name"], name="unique_session_check"),
        ]

    def __str__(self):
        return f"{self.name}: {self.consecutive_failures}/{self.threshold}"

    def record(self, passed: bool, message: str = "") -> bool:
        """
        Record one probe outcome. A success resets the consecutive counter.

        Returns True when the counter has reached the threshold.
        """
        self.last_passed = passed
        self.last_message = message
        self.checked_at = timezone.now()
        if passed:
            self.consecutive_failures = 0
        else:
            self.consecutive_failures += 1
            self.total_failures += 1
        self.save(
            update_fields=[
                "last_passed",
                "last_message",
                "checked_at",
                "consecutive_failures",
                "total_failures",
            ]
        )
        return self.consecutive_failures >= self.threshold


class RollbackStatus(models.TextChoices):
    PENDING_APPROVAL = "pending_approval", "Pending approval"
    REJECTED = "rejected", "Rejected"
    IN_PROGRESS = "in_progress", "In progress"
    SUCCESS = "success", "Success"
    FAILED = "failed", "Failed"


class RollbackRecord(models.Model):
    """Outcome of one rollback attempt."""

    rollback_id = models.CharField(max_length=64, unique=True)
    project = models.ForeignKey(
        "projects.Project",
        to_field="slug",
        on_delete=models.CASCADE,
        related_name="rollbacks",
    )
    environment = models.CharField(max_length=50, db_index=True)
    snapshot = models.ForeignKey(Snapshot, on_delete=models.PROTECT, related_name="rollbacks")
    deployment = models.ForeignKey(
        DeploymentRequest,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="rollbacks",
    )
    reason = models.TextField(blank=True, default="")
    actor = models.CharField(max_length=255, blank=True, default="")
    status = models.CharField(
        max_length=20,
        choices=RollbackStatus.choices,
        default=RollbackStatus.IN_PROGRESS,
    )
    approved_by = models.CharField(max_length=255, blank=True, default="")
    decided_at = models.DateTimeField(null=True, blank=True)
    failed_step = models.CharField(max_length=50, blank=True, default="")
    error_message = models.TextField(blank=True, default="")
    output = models.TextField(blank=True, default="")
    health_results = models.JSONField(default=list, blank=True)
    analysis = models.JSONField(
        default=dict,
        blank=True,
        help_text="Failure category, likely cause and recovery options of a failed rollback",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"Rollback {self.rollback_id} ({self.environment}) [{self.status}]"

    def decide(self, status: str, approver: str, error_message: str = ""):
        """Move a pending request to ``status``. Only one decision can win."""
        now = timezone.now()
        fields = {"status": status, "approved_by": approver, "decided_at": now}
        if status == RollbackStatus.REJECTED:
            fields.update(completed_at=now, error_message=error_message)
        decided = RollbackRecord.objects.filter(
            pk=self.pk, status=RollbackStatus.PENDING_APPROVAL
        ).update(**fields)
        if not decided:
            self.refresh_from_db(fields=["status"])
            raise InvalidTransition(f"Rollback {self.rollback_id} is already {self.status}")
        for name, value in fields.items():
            setattr(self, name, value)

    def finish(self, status: str, **fields):
        self.status = status
        self.completed_at = timezone.now()
        for name, value in fields.items():
            setattr(self, name, value)
        self.save(update_fields=["status", "completed_at", *fields])
