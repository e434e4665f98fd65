"""GitHub REST API client."""

from __future__ import annotations

import re

from apps.scm.base import Branch, Commit, Issue, PullRequest, SourceControlProvider
from apps.scm.exceptions import ProviderError

SHA_RE = re.compile(r"^[0-9a-f]{40}$")


class GitHubProvider(SourceControlProvider):
    """
    GitHub-style provider.

    Commits are built through the git data API: one blob per file, a tree on
    top of the branch head's tree, a commit, then a fast-forward of the ref.
    """

    name = "github"
    default_api_url = "https://api.github.com"

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["Accept"] = "application/vnd.github+json"
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def get_branch_head(self, repository, branch):
        data = self._request("GET", f"/repos/{repository}/git/ref/heads/{branch}")
        return data["object"]["sha"]

    def create_branch(self, repository, branch, from_ref):
        sha = from_ref if SHA_RE.match(from_ref) else self.get_branch_head(repository, from_ref)
        data = self._request(
            "POST",
            f"/repos/{repository}/git/refs",
            {"ref": f"refs/heads/{branch}", "sha": sha},
        )
        return Branch(name=branch, sha=data["object"]["sha"])

    def create_commit(self, repository, branch, message, files):
        if not files:
            raise ProviderError("A commit needs at least one file")

        head_sha = self.get_branch_head(repository, branch)
        head = self._request("GET", f"/repos/{repository}/git/commits/{head_sha}")

        tree_items = []
        for path, content in files.items():
            blob = self._request(
                "POST",
                f"/repos/{repository}/git/blobs",
                {"content": content, "encoding": "utf-8"},
            )
            tree_items.append({"path": path, "mode": "100644", "type": "blob", "sha": blob["sha"]})

        tree = self._request(
            "POST",
            f"/repos/{repository}/git/trees",
            {"base_tree": head["tree"]["sha"], "tree": tree_items},
        )
        commit = self._request(
            "POST",
            f"/repos/{repository}/git/commits",
            {"message": message, "tree": tree["sha"], "parents": [head_sha]},
        )
        self._request(
            "PATCH",
            f"/repos/{repository}/git/refs/heads/{branch}",
            {"sha": commit["sha"]},
        )
        return Commit(sha=commit["sha"], message=message, url=commit.get("html_url", ""))

    def create_pull_request(self, repository, source_branch, target_branch, title, body=""):
        data = self._request(
            "POST",
            f"/repos/{repository}/pulls",
            {"title": title, "head": source_branch, "base": target_branch, "body": body},
        )
        return PullRequest(
            number=data["number"],
            url=data.get("html_url", ""),
            source_branch=source_branch,
            target_branch=target_branch,
            title=title,
        )

    def create_issue(self, repository, title, body="", labels=None):
        data = self._request(
            "POST",
            f"/repos/{repository}/issues",
            {"title": title, "body": body, "labels": list(labels or [])},
        )
        return self._issue(data)

    def get_issues(self, repository, state="open", labels=None):
        query = {"state": state}
        if labels:
            query["labels"] = ",".join(labels)
        data = self._request("GET", f"/repos/{repository}/issues", query=query)
        # the issues endpoint also lists pull requests
        return [self._issue(item) for item in data if "pull_request" not in item]

    @staticmethod
    def _issue(data: dict) -> Issue:
        return Issue(
            number=data["number"],
            url=data.get("html_url", ""),
            title=data.get("title", ""),
            state=data.get("state", "open"),
            labels=[label["name"] for label in data.get("labels", [])],
        )
