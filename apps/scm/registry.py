"""Provider lookup by name, configured from settings.SCM_PROVIDERS."""

from django.conf import settings

from apps.scm.base import SourceControlProvider
from apps.scm.exceptions import ProviderNotConfigured
from apps.scm.github import GitHubProvider
from apps.scm.gitlab import GitLabProvider

PROVIDER_REGISTRY: dict[str, type[SourceControlProvider]] = {
    "github": GitHubProvider,
    "gitlab": GitLabProvider,
}


def get_provider(name: str) -> SourceControlProvider:
    """
    Build the provider registered under ``name``.

    Raises:
        ProviderNotConfigured: unknown provider name.
    """
    provider_class = PROVIDER_REGISTRY.get(name)
    if provider_class is None:
        raise ProviderNotConfigured(f"Unknown source control provider: {name!r}")

    config = getattr(settings, "SCM_PROVIDERS", {}).get(name, {})
    return provider_class(
        token=config.get("token", ""),
        api_url=config.get("api_url") or None,
        timeout=config.get("timeout", 30.0),
        max_attempts=getattr(settings, "SCM_MAX_ATTEMPTS", 3),
        backoff_factor=getattr(settings, "SCM_BACKOFF_FACTOR", 1.0),
    )
