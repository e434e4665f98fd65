"""
Source control provider interface.

Providers expose the capabilities the orchestration layer needs from a code
host (branches, commits, pull requests and issues), independent of whether
GitHub or GitLab backs the project.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from apps.scm.exceptions import ProviderError, TransientProviderError
from apps.scm.retry import call_with_retry

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}


@dataclass
class Branch:
    name: str
    sha: str


@dataclass
class Commit:
    sha: str
    message: str = ""
    url: str = ""


@dataclass
class PullRequest:
    number: int
    url: str
    source_branch: str
    target_branch: str
    title: str = ""


@dataclass
class Issue:
    number: int
    url: str
    title: str
    state: str = "open"
    labels: list[str] = field(default_factory=list)


class SourceControlProvider(ABC):
    """
    Base class for code host clients.

    Subclasses implement the capability methods on top of ``_request``, which
    issues JSON calls against ``api_url`` and retries transient failures.
    """

    name: str = "base"
    default_api_url: str = ""

    def __init__(
        self,
        token: str = "",
        api_url: str | None = None,
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff_factor: float = 1.0,
    ):
        self.token = token
        self.api_url = (api_url or self.default_api_url).rstrip("/")
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff_factor = backoff_factor

    @abstractmethod
    def get_branch_head(self, repository: str, branch: str) -> str:
        """Return the commit SHA the branch points at."""

    @abstractmethod
    def create_branch(self, repository: str, branch: str, from_ref: str) -> Branch:
        """Create ``branch`` from a branch name or commit SHA."""

    @abstractmethod
    def create_commit(
        self,
        repository: str,
        branch: str,
        message: str,
        files: dict[str, str],
    ) -> Commit:
        """Commit ``files`` (path -> content) on top of ``branch``."""

    @abstractmethod
    def create_pull_request(
        self,
        repository: str,
        source_branch: str,
        target_branch: str,
        title: str,
        body: str = "",
    ) -> PullRequest: ...

    @abstractmethod
    def create_issue(
        self,
        repository: str,
        title: str,
        body: str = "",
        labels: list[str] | None = None,
    ) -> Issue: ...

    @abstractmethod
    def get_issues(
        self,
        repository: str,
        state: str = "open",
        labels: list[str] | None = None,
    ) -> list[Issue]: ...

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "ReleaseOrchestrator/1.0",
        }

    def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
        query: dict[str, Any] | None = None,
    ) -> Any:
        url = f"{self.api_url}{path}"
        if query:
            url = f"{url}?{urllib.parse.urlencode(query)}"

        def send() -> Any:
            return self._send(method, url, payload)

        return call_with_retry(
            send,
            max_attempts=self.max_attempts,
            backoff_factor=self.backoff_factor,
            description=f"{self.name} {method} {path}",
        )

    def _send(self, method: str, url: str, payload: dict[str, Any] | None) -> Any:
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        request = urllib.request.Request(url, data=data, headers=self._headers(), method=method)
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                body = response.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else str(e)
            message = f"{self.name} HTTP error ({e.code}) for {method} {url}: {error_body}"
            if e.code in TRANSIENT_STATUS_CODES:
                raise TransientProviderError(message, status_code=e.code) from e
            raise ProviderError(message, status_code=e.code) from e
        except urllib.error.URLError as e:
            raise TransientProviderError(f"{self.name} connection error: {e.reason}") from e
        except TimeoutError as e:
            raise TransientProviderError(f"{self.name} request timed out: {url}") from e

        if not body:
            return {}
        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise ProviderError(f"{self.name} returned invalid JSON for {method} {url}") from e
