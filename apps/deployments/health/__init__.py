# Health probe modules
import logging
from typing import Callable

from apps.deployments.health.base import HealthProbe, ProbeResult
from apps.deployments.health.command import CommandProbe
from apps.deployments.health.http import HttpProbe
from apps.deployments.health.system import CPUProbe, MemoryProbe
from apps.orchestration.dtos import HealthCheckSpec

__all__ = [
    "HealthProbe",
    "ProbeResult",
    "HttpProbe",
    "CommandProbe",
    "CPUProbe",
    "MemoryProbe",
    "PROBE_REGISTRY",
    "build_probe",
    "run_check",
]

logger = logging.getLogger(__name__)

# Registry of available probes, keyed by HealthCheckSpec.kind
PROBE_REGISTRY: dict[str, type[HealthProbe]] = {
    "http": HttpProbe,
    "command": CommandProbe,
    "cpu": CPUProbe,
    "memory": MemoryProbe,
}


def build_probe(spec: HealthCheckSpec) -> HealthProbe:
    """
    Instantiate the probe for a health check.

    Raises:
        ValueError: unknown probe kind.
    """
    probe_class = PROBE_REGISTRY.get(spec.kind)
    if probe_class is None:
        raise ValueError(f"Unknown health check kind: {spec.kind!r}")
    return probe_class(
        name=spec.name,
        target=spec.target,
        timeout=spec.timeout_seconds,
        options=spec.options,
    )


def run_check(
    spec: HealthCheckSpec,
    probe_factory: Callable[[HealthCheckSpec], HealthProbe] = build_probe,
) -> ProbeResult:
    """Probe a health check once. A check whose probe cannot be built fails."""
    try:
        probe = probe_factory(spec)
    except ValueError as e:
        logger.warning(f"Health check '{spec.name}' cannot be probed: {e}")
        return ProbeResult(passed=False, message=str(e), probe_name=spec.name)
    return probe.run()
