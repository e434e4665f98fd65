"""GitLab REST API (v4) client."""

from __future__ import annotations

import urllib.parse

from apps.scm.base import Branch, Commit, Issue, PullRequest, SourceControlProvider
from apps.scm.exceptions import ProviderError


class GitLabProvider(SourceControlProvider):
    """GitLab-style provider. Pull requests map to merge requests."""

    name = "gitlab"
    default_api_url = "https://gitlab.com/api/v4"

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        if self.token:
            headers["PRIVATE-TOKEN"] = self.token
        return headers

    @staticmethod
    def _project(repository: str) -> str:
        return f"/projects/{urllib.parse.quote(repository, safe='')}"

    def get_branch_head(self, repository, branch):
        data = self._request(
            "GET",
            f"{self._project(repository)}/repository/branches/{urllib.parse.quote(branch, safe='')}",
        )
        return data["commit"]["id"]

    def create_branch(self, repository, branch, from_ref):
        data = self._request(
            "POST",
            f"{self._project(repository)}/repository/branches",
            {"branch": branch, "ref": from_ref},
        )
        return Branch(name=data["name"], sha=data["commit"]["id"])

    def create_commit(self, repository, branch, message, files):
        if not files:
            raise ProviderError("A commit needs at least one file")

        actions = [
            {"action": "create", "file_path": path, "content": content}
            for path, content in files.items()
        ]
        data = self._request(
            "POST",
            f"{self._project(repository)}/repository/commits",
            {"branch": branch, "commit_message": message, "actions": actions},
        )
        return Commit(sha=data["id"], message=message, url=data.get("web_url", ""))

    def create_pull_request(self, repository, source_branch, target_branch, title, body=""):
        data = self._request(
            "POST",
            f"{self._project(repository)}/merge_requests",
            {
                "source_branch": source_branch,
                "target_branch": target_branch,
                "title": title,
                "description": body,
            },
        )
        return PullRequest(
            number=data["iid"],
            url=data.get("web_url", ""),
            source_branch=source_branch,
            target_branch=target_branch,
            title=title,
        )

    def create_issue(self, repository, title, body="", labels=None):
        data = self._request(
            "POST",
            f"{self._project(repository)}/issues",
            {"title": title, "description": body, "labels": ",".join(labels or [])},
        )
        return self._issue(data)

    def get_issues(self, repository, state="open", labels=None):
        # GitLab calls open issues "opened"
        query = {"state": "opened" if state == "open" else state}
        if labels:
            query["labels"] = ",".join(labels)
        data = self._request("GET", f"{self._project(repository)}/issues", query=query)
        return [self._issue(item) for item in data]

    @staticmethod
    def _issue(data: dict) -> Issue:
        state = data.get("state", "opened")
        return Issue(
            number=data["iid"],
            url=data.get("web_url", ""),
            title=data.get("title", ""),
            state="open" if state == "opened" else state,
            labels=list(data.get("labels", [])),
        )
