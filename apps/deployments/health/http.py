"""HTTP endpoint probe."""

import urllib.error
import urllib.request

from apps.deployments.health.base import HealthProbe, ProbeResult


class HttpProbe(HealthProbe):
    """
    GET the target URL. Healthy when the response status is in
    ``options["expected_status"]`` (default: any 2xx).
    """

    kind = "http"

    def probe(self) -> ProbeResult:
        expected = self.options.get("expected_status")
        request = urllib.request.Request(
            self.target,
            headers={"User-Agent": "ReleaseOrchestrator-HealthCheck/1.0"},
            method=self.options.get("method", "GET"),
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                status_code = response.getcode()
        except urllib.error.HTTPError as e:
            status_code = e.code
        except urllib.error.URLError as e:
            return self._fail(f"{self.target} unreachable: {e.reason}")
        except TimeoutError:
            return self._fail(f"{self.target} timed out after {self.timeout:g}s")

        metrics = {"status_code": status_code}
        healthy = status_code in expected if expected else 200 <= status_code < 300
        if healthy:
            return self._ok(f"{self.target} returned {status_code}", metrics)
        return self._fail(f"{self.target} returned {status_code}", metrics)
