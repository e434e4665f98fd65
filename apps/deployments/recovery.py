"""
Failure analysis for rollbacks.

A failed rollback is a human-escalation condition. The analysis here
classifies the failure from its message and the step that failed, and lists
recovery options an operator can pick from: alternative verified snapshots
first, then category-specific actions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from apps.deployments.models import RollbackRecord, Snapshot


class FailureCategory(Enum):
    DATABASE = "database"
    FILESYSTEM = "filesystem"
    NETWORK = "network"
    TIMEOUT = "timeout"
    RESOURCES = "resources"
    HEALTH = "health"
    UNKNOWN = "unknown"


# Checked in order; the first category with a matching keyword wins.
CATEGORY_KEYWORDS = [
    (FailureCategory.TIMEOUT, {"timeout", "timed out"}),
    (FailureCategory.DATABASE, {"database", "sql", "migration"}),
    (FailureCategory.FILESYSTEM, {"file", "permission", "no such", "read-only"}),
    (FailureCategory.NETWORK, {"network", "connection", "unreachable", "dns", "refused"}),
    (FailureCategory.RESOURCES, {"memory", "resource", "disk", "space", "oom"}),
]

CATEGORY_DETAILS = {
    FailureCategory.DATABASE: (
        "high",
        "Database connection or query failure during rollback",
        [
            "Restore the database from the snapshot's data backup",
            "Run a database integrity check before retrying",
            "Switch the application to read-only mode while investigating",
        ],
    ),
    FailureCategory.FILESYSTEM: (
        "medium",
        "File system access or permission problem while restoring configuration",
        [
            "Restore the snapshot's configuration files by hand",
            "Check ownership and permissions of the deployment directory",
        ],
    ),
    FailureCategory.NETWORK: (
        "medium",
        "Network connectivity problem during rollback",
        [
            "Retry the rollback once connectivity is restored",
            "Put the environment into maintenance mode until the network recovers",
        ],
    ),
    FailureCategory.TIMEOUT: (
        "medium",
        "A rollback command timed out",
        [
            "Retry the rollback with longer command timeouts",
            "Run the rollback commands one at a time",
        ],
    ),
    FailureCategory.RESOURCES: (
        "high",
        "Not enough memory or disk on the target to complete the rollback",
        [
            "Free memory and disk space on the target, then retry",
            "Clear temporary files and caches before retrying",
        ],
    ),
    FailureCategory.HEALTH: (
        "high",
        "The restored release did not pass its health checks",
        [
            "Inspect the failing health checks and the application logs",
            "Roll forward with a fix instead of rolling back",
        ],
    ),
    FailureCategory.UNKNOWN: (
        "medium",
        "Unclassified failure during rollback",
        [
            "Investigate the rollback output manually",
            "Restore the environment from a full system backup",
        ],
    ),
}

COMMON_OPTIONS = [
    "Open an incident for post-mortem analysis",
    "Notify stakeholders of the failed rollback and the recovery plan",
]


@dataclass
class FailureAnalysis:
    """
    Why a rollback failed and what can be done next.

    Attributes:
        category: Failure category detected from the error.
        severity: "medium" or "high".
        root_cause: Likely cause, in one sentence.
        failed_step: Rollback step that failed ("redeploy" or "health_check").
        alternative_snapshots: Other verified snapshots of the environment.
        recovery_options: Suggested actions, most specific first.
    """

    category: FailureCategory
    severity: str
    root_cause: str
    failed_step: str
    alternative_snapshots: list[dict[str, Any]] = field(default_factory=list)
    recovery_options: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "severity": self.severity,
            "root_cause": self.root_cause,
            "failed_step": self.failed_step,
            "alternative_snapshots": self.alternative_snapshots,
            "recovery_options": self.recovery_options,
        }


def categorize(error: str, step: str) -> FailureCategory:
    text = error.lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(kw in text for kw in keywords):
            return category
    if step == "health_check":
        return FailureCategory.HEALTH
    return FailureCategory.UNKNOWN


def analyze_failure(
    record: RollbackRecord, step: str, error: str, limit: int = 3
) -> FailureAnalysis:
    """Classify a rollback failure and list the ways out of it."""
    category = categorize(error, step)
    severity, root_cause, options = CATEGORY_DETAILS[category]

    alternatives = (
        Snapshot.objects.filter(
            project_id=record.project_id, environment=record.environment, verified=True
        )
        .exclude(pk=record.snapshot_id)
        .order_by("-created_at", "-id")[:limit]
    )
    alternative_snapshots = [
        {"snapshot_id": s.snapshot_id, "version": s.version, "commit_id": s.commit_id}
        for s in alternatives
    ]

    recovery_options = [
        f"Roll back to snapshot {s['snapshot_id']} (version {s['version']})"
        for s in alternative_snapshots
    ]
    recovery_options += options
    recovery_options += COMMON_OPTIONS

    return FailureAnalysis(
        category=category,
        severity=severity,
        root_cause=root_cause,
        failed_step=step,
        alternative_snapshots=alternative_snapshots,
        recovery_options=recovery_options,
    )
