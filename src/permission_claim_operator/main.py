"""Main entry point for the Permission Claim Operator.

Run with ``kopf run -m permission_claim_operator.main``.
"""

from __future__ import annotations

import logging
from typing import Any

import kopf
from kubernetes import client

from . import handlers  # noqa: F401
from . import health
from . import logging as structured_logging
from .builders import load_base_kubeconfig
from .clients import ClusterClient, load_control_api_client, load_target_api_client
from .config import OperatorConfig
from .constants import (
    KIND_CLUSTER_ROLE,
    KIND_CLUSTER_ROLE_BINDING,
    KIND_PERMISSION_CLAIM,
    KIND_ROLE,
    KIND_ROLE_BINDING,
    KIND_SERVICE_ACCOUNT,
)
from .ownership import AnnotationStrategy, OwnerReferenceStrategy
from .reconciler import ClaimReconciler
from .registry import KindRegistry
from .tracing import initialize_tracing
from .utils.rate_limit import RateLimiter
from .watchers import ClaimEnqueuer, start_target_watchers, stop_target_watchers

logger = logging.getLogger(__name__)

# Derived kinds living in the target cluster, watched to re-enqueue their owners
TARGET_WATCH_KINDS = [
    KIND_SERVICE_ACCOUNT,
    KIND_ROLE,
    KIND_CLUSTER_ROLE,
    KIND_ROLE_BINDING,
    KIND_CLUSTER_ROLE_BINDING,
]

HEALTH_SERVER_JOIN_TIMEOUT = 5.0


def wire(
    memo: kopf.Memo,
    config: OperatorConfig,
    control_api: client.ApiClient | None = None,
    target_api: client.ApiClient | None = None,
) -> kopf.Memo:
    """Build the shared components and store them in ``memo``.

    The API clients are loaded from the environment when not given.
    """
    registry = KindRegistry.default()
    base_kubeconfig = load_base_kubeconfig(config.target_kubeconfig)

    control = ClusterClient(
        "control",
        control_api or load_control_api_client(),
        registry,
        request_timeout=config.request_timeout,
        rate_limiter=RateLimiter(config.rate_limit_per_second),
    )
    target = ClusterClient(
        "target",
        target_api or load_target_api_client(config.target_kubeconfig),
        registry,
        request_timeout=config.request_timeout,
        rate_limiter=RateLimiter(config.rate_limit_per_second),
    )
    target_ownership = AnnotationStrategy()
    secret_ownership = OwnerReferenceStrategy(registry, KIND_PERMISSION_CLAIM)

    memo.config = config
    memo.registry = registry
    memo.control = control
    memo.target = target
    memo.target_ownership = target_ownership
    memo.secret_ownership = secret_ownership
    memo.enqueuer = ClaimEnqueuer(control)
    memo.reconciler = ClaimReconciler(
        control,
        target,
        registry,
        base_kubeconfig,
        target_ownership=target_ownership,
        control_ownership=secret_ownership,
    )
    memo.watchers = []
    return memo


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **_: Any) -> None:
    """Configure the operator."""
    # Set up structured JSON logging
    structured_logging.setup_structured_logging()
    initialize_tracing()

    config = OperatorConfig.from_env()

    # Use AnnotationsProgressStorage to avoid conflicts with status updates
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage()
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage()

    settings.posting.level = logging.WARNING
    settings.networking.request_timeout = config.request_timeout
    settings.execution.max_workers = config.max_workers

    memo.health_server, memo.health_thread = health.start_health_server(config.metrics_port)

    wire(memo, config)
    if config.enable_target_watches:
        memo.watchers = start_target_watchers(
            memo.target,
            TARGET_WATCH_KINDS,
            memo.enqueuer,
            ownership=memo.target_ownership,
            timeout_seconds=config.watch_timeout,
        )
    health.mark_ready()
    logger.info(
        f"Operator started: target cluster from {config.target_kubeconfig}, "
        f"{len(memo.watchers)} target watches, metrics on port {config.metrics_port}"
    )


@kopf.on.cleanup()
def shutdown(memo: kopf.Memo, **_: Any) -> None:
    """Stop background threads on operator exit."""
    health.mark_not_ready()
    stop_target_watchers(memo.get("watchers") or [])
    server = memo.get("health_server")
    if server is not None:
        server.shutdown()
    thread = memo.get("health_thread")
    if thread is not None:
        thread.join(timeout=HEALTH_SERVER_JOIN_TIMEOUT)
