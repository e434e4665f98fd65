"""Resolve a deployment policy's health checks against an environment."""

import logging
import urllib.parse
from dataclasses import replace

from apps.orchestration.dtos import DeploymentPolicy, EnvironmentDefinition, HealthCheckSpec

logger = logging.getLogger(__name__)


def resolve_health_checks(
    policy: DeploymentPolicy,
    environment: EnvironmentDefinition | None,
) -> list[HealthCheckSpec]:
    """
    Health checks ready to probe.

    Relative HTTP targets are joined onto the environment's base URL. HTTP
    checks that stay relative (no base URL configured) are dropped.
    """
    base_url = environment.base_url if environment else ""
    resolved = []
    for check in policy.health_checks:
        if check.kind != "http" or urllib.parse.urlparse(check.target).scheme:
            resolved.append(check)
            continue
        if not base_url:
            logger.warning(
                f"Skipping health check '{check.name}': relative target {check.target!r} "
                f"and no base URL for {environment.name if environment else 'environment'}"
            )
            continue
        target = urllib.parse.urljoin(base_url.rstrip("/") + "/", check.target.lstrip("/"))
        resolved.append(replace(check, target=target))
    return resolved
