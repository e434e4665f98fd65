"""Shell command probe."""

import subprocess

from apps.deployments.health.base import HealthProbe, ProbeResult


class CommandProbe(HealthProbe):
    """Healthy when the target command exits 0 within the timeout."""

    kind = "command"

    def probe(self) -> ProbeResult:
        try:
            completed = subprocess.run(
                self.target,
                shell=True,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return self._fail(f"'{self.target}' timed out after {self.timeout:g}s")

        output = (completed.stdout + completed.stderr).strip()[-500:]
        metrics = {"exit_code": completed.returncode}
        if completed.returncode == 0:
            return self._ok(output or f"'{self.target}' succeeded", metrics)
        return self._fail(
            f"'{self.target}' exited with code {completed.returncode}: {output}", metrics
        )
