"""Errors raised by source control providers."""

from apps.orchestration.exceptions import OrchestrationError


class ProviderError(OrchestrationError):
    """A provider call failed and will not succeed by retrying."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class TransientProviderError(ProviderError):
    """Network failure, rate limit or 5xx response. Retried with backoff."""

    retryable = True


class ProviderNotConfigured(ProviderError):
    pass
