"""
Source-control webhook parsing.

Turns provider payloads (GitHub, GitLab, or the plain
``{commitId, branch, actorName}`` shape) into typed events for the
orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from apps.orchestration.exceptions import InvalidWebhook

NULL_SHA = "0" * 40

GITLAB_EVENT_NAMES = {
    "Push Hook": "push",
    "Tag Push Hook": "tag_push",
    "Merge Request Hook": "pull_request",
    "Release Hook": "release",
}

GITLAB_MR_ACTIONS = {"open": "opened", "update": "synchronize", "reopen": "reopened"}


@dataclass
class PushEvent:
    commit_id: str
    branch: str
    actor: str
    changed_files: list[str] = field(default_factory=list)


@dataclass
class PullRequestEvent:
    action: str
    pr_id: str
    source_branch: str
    target_branch: str
    actor: str
    commit_id: str = ""


@dataclass
class ReleaseEvent:
    action: str
    tag_name: str
    actor: str
    commit_id: str = ""


WebhookEvent = PushEvent | PullRequestEvent | ReleaseEvent


def _strip_ref(ref: str) -> str:
    for prefix in ("refs/heads/", "refs/tags/"):
        if ref.startswith(prefix):
            return ref[len(prefix) :]
    return ref


def _require(value: Any, name: str) -> str:
    if value is None or str(value).strip() == "":
        raise InvalidWebhook(f"Webhook payload is missing '{name}'")
    return str(value)


def detect_event_type(headers: dict[str, str], payload: dict[str, Any]) -> str:
    """Resolve the event name from provider headers, then from the payload."""
    github_event = headers.get("X-GitHub-Event") or headers.get("HTTP_X_GITHUB_EVENT")
    if github_event:
        return github_event
    gitlab_event = headers.get("X-Gitlab-Event") or headers.get("HTTP_X_GITLAB_EVENT")
    if gitlab_event:
        return GITLAB_EVENT_NAMES.get(gitlab_event, gitlab_event)
    if payload.get("object_kind"):
        return {"merge_request": "pull_request"}.get(payload["object_kind"], payload["object_kind"])
    if payload.get("event"):
        return str(payload["event"])
    raise InvalidWebhook("Cannot determine webhook event type")


def _changed_files(payload: dict[str, Any]) -> list[str]:
    if isinstance(payload.get("changedFiles"), list):
        return [str(f) for f in payload["changedFiles"]]
    files: list[str] = []
    for commit in payload.get("commits") or []:
        for key in ("added", "modified", "removed"):
            for path in commit.get(key) or []:
                if path not in files:
                    files.append(path)
    return files


def _parse_push(payload: dict[str, Any]) -> PushEvent:
    commit_id = payload.get("commitId") or payload.get("after") or payload.get("checkout_sha")
    branch = payload.get("branch") or _strip_ref(payload.get("ref", ""))
    actor = (
        payload.get("actorName")
        or (payload.get("pusher") or {}).get("name")
        or payload.get("user_username")
        or payload.get("user_name")
        or "unknown"
    )
    return PushEvent(
        commit_id=_require(commit_id, "commitId"),
        branch=_require(branch, "branch"),
        actor=str(actor),
        changed_files=_changed_files(payload),
    )


def _parse_pull_request(payload: dict[str, Any]) -> PullRequestEvent:
    if "pull_request" in payload:
        pr = payload["pull_request"]
        return PullRequestEvent(
            action=_require(payload.get("action"), "action"),
            pr_id=_require(pr.get("number"), "number"),
            source_branch=_require((pr.get("head") or {}).get("ref"), "head.ref"),
            target_branch=_require((pr.get("base") or {}).get("ref"), "base.ref"),
            actor=str((pr.get("user") or {}).get("login") or "unknown"),
            commit_id=str((pr.get("head") or {}).get("sha") or ""),
        )
    if "object_attributes" in payload:
        attrs = payload["object_attributes"]
        action = attrs.get("action", "")
        return PullRequestEvent(
            action=GITLAB_MR_ACTIONS.get(action, action),
            pr_id=_require(attrs.get("iid"), "iid"),
            source_branch=_require(attrs.get("source_branch"), "source_branch"),
            target_branch=_require(attrs.get("target_branch"), "target_branch"),
            actor=str((payload.get("user") or {}).get("username") or "unknown"),
            commit_id=str((attrs.get("last_commit") or {}).get("id") or ""),
        )
    return PullRequestEvent(
        action=_require(payload.get("action"), "action"),
        pr_id=_require(payload.get("prId"), "prId"),
        source_branch=_require(payload.get("sourceBranch"), "sourceBranch"),
        target_branch=_require(payload.get("targetBranch"), "targetBranch"),
        actor=str(payload.get("actorName") or "unknown"),
        commit_id=str(payload.get("commitId") or ""),
    )


def _parse_release(payload: dict[str, Any]) -> ReleaseEvent:
    if isinstance(payload.get("release"), dict):
        release = payload["release"]
        return ReleaseEvent(
            action=_require(payload.get("action"), "action"),
            tag_name=_require(release.get("tag_name"), "tag_name"),
            actor=str((release.get("author") or {}).get("login") or "unknown"),
            commit_id=str(release.get("target_commitish") or ""),
        )
    if payload.get("object_kind") == "release":
        action = payload.get("action", "")
        return ReleaseEvent(
            action={"create": "published"}.get(action, action),
            tag_name=_require(payload.get("tag"), "tag"),
            actor="unknown",
            commit_id=str((payload.get("commit") or {}).get("id") or ""),
        )
    return ReleaseEvent(
        action=_require(payload.get("action"), "action"),
        tag_name=_require(payload.get("tagName"), "tagName"),
        actor=str(payload.get("actorName") or "unknown"),
        commit_id=str(payload.get("commitId") or ""),
    )


def parse_webhook(event_type: str, payload: dict[str, Any]) -> WebhookEvent | None:
    """
    Parse a webhook payload.

    Returns None for event types the orchestrator does not act on (ping,
    issues, branch deletions, ...). Raises InvalidWebhook for a recognised
    event with missing fields.
    """
    if not isinstance(payload, dict):
        raise InvalidWebhook("Webhook payload must be a JSON object")

    if event_type == "push":
        if payload.get("after") == NULL_SHA or payload.get("deleted") is True:
            return None
        if str(payload.get("ref", "")).startswith("refs/tags/"):
            return None
        return _parse_push(payload)
    if event_type in ("pull_request", "merge_request"):
        return _parse_pull_request(payload)
    if event_type == "release":
        return _parse_release(payload)
    return None
