"""Operator configuration read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass

from .utils.rate_limit import DEFAULT_RATE_LIMIT_PER_SECOND


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class OperatorConfig:
    """Runtime settings for the operator.

    Environment Variables:
        TARGET_CLUSTER_KUBECONFIG: Path to the kubeconfig of the target cluster (required)
        METRICS_PORT: Port serving /metrics, /healthz and /readyz (default: 8080)
        K8S_REQUEST_TIMEOUT_SECONDS: Timeout applied to every API call (default: 30)
        K8S_RATE_LIMIT_PER_SECOND: Maximum API calls per second and cluster (default: 10)
        MAX_WORKERS: kopf thread pool size for sync handlers (default: 4)
        MIN_RETRY_DELAY_SECONDS / MAX_RETRY_DELAY_SECONDS: Retry backoff bounds (default: 1 / 60)
        WATCH_TIMEOUT_SECONDS: Server-side timeout of target cluster watches (default: 300)
        ENABLE_TARGET_WATCHES: Watch derived objects in the target cluster (default: true)
    """

    target_kubeconfig: str
    metrics_port: int = 8080
    request_timeout: float = 30.0
    rate_limit_per_second: float = DEFAULT_RATE_LIMIT_PER_SECOND
    max_workers: int = 4
    min_retry_delay: float = 1.0
    max_retry_delay: float = 60.0
    watch_timeout: int = 300
    enable_target_watches: bool = True

    @classmethod
    def from_env(cls) -> OperatorConfig:
        """Build the configuration from environment variables.

        Raises:
            ValueError: If a required variable is missing or a value is invalid
        """
        target_kubeconfig = os.getenv("TARGET_CLUSTER_KUBECONFIG", "")
        if not target_kubeconfig:
            raise ValueError("TARGET_CLUSTER_KUBECONFIG is required")

        config = cls(
            target_kubeconfig=target_kubeconfig,
            metrics_port=int(os.getenv("METRICS_PORT", "8080")),
            request_timeout=float(os.getenv("K8S_REQUEST_TIMEOUT_SECONDS", "30")),
            rate_limit_per_second=float(
                os.getenv("K8S_RATE_LIMIT_PER_SECOND", str(DEFAULT_RATE_LIMIT_PER_SECOND))
            ),
            max_workers=int(os.getenv("MAX_WORKERS", "4")),
            min_retry_delay=float(os.getenv("MIN_RETRY_DELAY_SECONDS", "1")),
            max_retry_delay=float(os.getenv("MAX_RETRY_DELAY_SECONDS", "60")),
            watch_timeout=int(os.getenv("WATCH_TIMEOUT_SECONDS", "300")),
            enable_target_watches=_env_bool("ENABLE_TARGET_WATCHES", True),
        )
        if config.min_retry_delay <= 0 or config.max_retry_delay < config.min_retry_delay:
            raise ValueError("retry delays must satisfy 0 < MIN_RETRY_DELAY_SECONDS <= MAX_RETRY_DELAY_SECONDS")
        return config

    def retry_delay(self, retry: int) -> float:
        """Exponential backoff delay for the given retry count: 1s, 2s, 4s ... capped."""
        return min(self.min_retry_delay * (2 ** max(retry, 0)), self.max_retry_delay)
