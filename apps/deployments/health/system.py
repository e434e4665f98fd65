"""
Host resource probes (psutil).

Useful when the deployment target is the machine running the workers, e.g.
single-host staging environments.
"""

import psutil

from apps.deployments.health.base import HealthProbe, ProbeResult


class CPUProbe(HealthProbe):
    """Healthy while average CPU usage stays below ``options["max_percent"]`` (90)."""

    kind = "cpu"

    def probe(self) -> ProbeResult:
        samples = int(self.options.get("samples", 3))
        interval = float(self.options.get("sample_interval", 0.5))
        limit = float(self.options.get("max_percent", 90.0))

        readings = [psutil.cpu_percent(interval=interval) for _ in range(samples)]
        avg = sum(readings) / len(readings)
        metrics = {"cpu_percent": round(avg, 1), "cpu_max": max(readings), "samples": samples}
        message = f"CPU usage: {avg:.1f}% (limit {limit:g}%)"
        if avg < limit:
            return self._ok(message, metrics)
        return self._fail(message, metrics)


class MemoryProbe(HealthProbe):
    """Healthy while virtual memory usage stays below ``options["max_percent"]`` (90)."""

    kind = "memory"

    def probe(self) -> ProbeResult:
        limit = float(self.options.get("max_percent", 90.0))
        memory = psutil.virtual_memory()
        metrics = {
            "memory_percent": memory.percent,
            "memory_available_mb": round(memory.available / (1024 * 1024), 1),
        }
        message = f"Memory usage: {memory.percent:.1f}% (limit {limit:g}%)"
        if memory.percent < limit:
            return self._ok(message, metrics)
        return self._fail(message, metrics)
