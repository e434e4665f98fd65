"""
Base probe classes and result types for deployment health checks.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    """
    Outcome of one probe run.

    Attributes:
        passed: Whether the check is healthy.
        message: Human-readable description of the result.
        metrics: Measured values (e.g., {"status_code": 200}).
        probe_name: Name of the check that produced this result.
        duration_ms: Wall time of the probe.
    """

    passed: bool
    message: str
    metrics: dict[str, Any] = field(default_factory=dict)
    probe_name: str = ""
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.probe_name,
            "passed": self.passed,
            "message": self.message,
            "metrics": self.metrics,
            "duration_ms": self.duration_ms,
        }


class HealthProbe(ABC):
    """
    Abstract base class for health probes.

    Subclasses implement ``probe()``; ``run()`` times it and turns any
    exception into a failed result.
    """

    kind: str = "base"

    def __init__(
        self,
        name: str,
        target: str = "",
        timeout: float = 30.0,
        options: dict[str, Any] | None = None,
    ) -> None:
        self.name = name
        self.target = target
        self.timeout = timeout
        self.options = options or {}

    @abstractmethod
    def probe(self) -> ProbeResult: ...

    def run(self) -> ProbeResult:
        start = time.perf_counter()
        try:
            result = self.probe()
        except Exception as exc:
            logger.warning("Health probe '%s' raised", self.name, exc_info=True)
            result = self._fail(f"Probe error: {exc}")
        result.probe_name = self.name
        result.duration_ms = (time.perf_counter() - start) * 1000
        return result

    def _ok(self, message: str, metrics: dict[str, Any] | None = None) -> ProbeResult:
        return ProbeResult(passed=True, message=message, metrics=metrics or {}, probe_name=self.name)

    def _fail(self, message: str, metrics: dict[str, Any] | None = None) -> ProbeResult:
        return ProbeResult(passed=False, message=message, metrics=metrics or {}, probe_name=self.name)
