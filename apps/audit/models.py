"""Persisted audit trail entries."""

from django.db import models


class AuditEntry(models.Model):
    """One recorded action (pipeline generated, deployment approved, rollback step, ...)."""

    action_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Machine-readable action name (e.g. 'deployment_approved').",
    )
    description = models.TextField(
        help_text="Human-readable description of the action.",
    )
    actor = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Actor that caused the action, when known.",
    )
    context = models.JSONField(
        default=dict,
        blank=True,
        help_text="Identifiers and details attached to the action.",
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name_plural = "audit entries"
        indexes = [
            models.Index(fields=["action_type", "created_at"], name="audit_action_created_idx"),
        ]

    def __str__(self):
        return f"{self.action_type} @ {self.created_at:%Y-%m-%d %H:%M:%S}"
