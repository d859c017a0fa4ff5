"""Rate limiting utilities for API calls."""

from __future__ import annotations

import threading
import time

from kubernetes.client.exceptions import ApiException

from .. import metrics

# Overridden per cluster by K8S_RATE_LIMIT_PER_SECOND, see OperatorConfig
DEFAULT_RATE_LIMIT_PER_SECOND = 10.0


class RateLimiter:
    """Minimum-interval limiter shared by all calls against one cluster."""

    def __init__(self, rate_per_second: float = DEFAULT_RATE_LIMIT_PER_SECOND):
        self.min_interval = 1.0 / rate_per_second if rate_per_second > 0 else 0.0
        self._last_call_time = 0.0
        self._lock = threading.Lock()

    def wait(self) -> None:
        """Block until the next call is allowed."""
        with self._lock:
            current_time = time.monotonic()
            time_since_last_call = current_time - self._last_call_time
            if time_since_last_call < self.min_interval:
                time.sleep(self.min_interval - time_since_last_call)
            self._last_call_time = time.monotonic()


def is_rate_limit_error(e: BaseException) -> bool:
    """Check if an API exception is a rate limit error."""
    if not isinstance(e, ApiException):
        return False
    # Kubernetes API rate limit errors typically return 429 or 503
    return e.status == 429 or (e.status == 503 and "rate limit" in str(e).lower())


def record_rate_limit_error(e: BaseException, cluster: str) -> bool:
    """Count a rate limit response against the given cluster.

    Returns:
        True if the error was a rate limit error
    """
    if is_rate_limit_error(e):
        metrics.rate_limit_hits_total.labels(cluster=cluster).inc()
        return True
    return False
