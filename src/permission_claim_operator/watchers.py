"""Routing of derived object events back to the owning claim.

kopf only watches the control cluster. Objects in the target cluster are
watched by one daemon thread per kind; each event is mapped to the owning
claim, which is then enqueued by stamping a trigger annotation on it. The
annotation change makes kopf run the claim's update handler through its own
per-object queue, so reconciles of one claim never overlap.
"""

from __future__ import annotations

import logging
import random
import threading
from typing import Any

from kubernetes import watch
from kubernetes.client.exceptions import ApiException

from . import metrics
from .clients import ClusterClient
from .constants import ANNOTATION_RECONCILE_TRIGGER, KIND_PERMISSION_CLAIM
from .models import ClaimIdentity
from .ownership import AnnotationStrategy, OwnershipStrategy

logger = logging.getLogger(__name__)


def trigger_value(kind: str, obj: dict[str, Any]) -> str:
    """Annotation value identifying the object version that caused a reconcile."""
    meta = obj.get("metadata") or {}
    name = meta.get("name", "")
    if meta.get("namespace"):
        name = f"{meta['namespace']}/{name}"
    return f"{kind}/{name}@{meta.get('resourceVersion', '')}"


class ClaimEnqueuer:
    """Requests a reconcile of a claim from outside of kopf's own watch."""

    def __init__(self, control: ClusterClient, annotation_key: str = ANNOTATION_RECONCILE_TRIGGER):
        self.control = control
        self.annotation_key = annotation_key

    def enqueue(self, identity: ClaimIdentity, source_kind: str, trigger: str) -> bool:
        """Enqueue ``identity``; returns False if the claim no longer exists.

        A vanished owner is an orphaned derived object, which is logged and
        otherwise ignored.
        """
        body = {"metadata": {"annotations": {self.annotation_key: trigger}}}
        try:
            self.control.patch(KIND_PERMISSION_CLAIM, identity.name, identity.namespace, body)
        except ApiException as e:
            if e.status != 404:
                metrics.owner_events_total.labels(kind=source_kind, result="error").inc()
                raise
            logger.info(f"Owner {KIND_PERMISSION_CLAIM} {identity} of {trigger} no longer exists, skipping orphan")
            metrics.owner_events_total.labels(kind=source_kind, result="orphaned").inc()
            return False
        metrics.owner_events_total.labels(kind=source_kind, result="enqueued").inc()
        return True


class TargetClusterWatcher(threading.Thread):
    """Watches one derived kind in the target cluster and enqueues owning claims."""

    def __init__(
        self,
        cluster: ClusterClient,
        kind: str,
        enqueuer: ClaimEnqueuer,
        ownership: OwnershipStrategy | None = None,
        timeout_seconds: int = 300,
        max_backoff: float = 30.0,
    ):
        super().__init__(name=f"watch-{kind}", daemon=True)
        self.cluster = cluster
        self.kind = kind
        self.enqueuer = enqueuer
        self.ownership = ownership or AnnotationStrategy()
        self.timeout_seconds = timeout_seconds
        self.max_backoff = max_backoff
        self._stop_event = threading.Event()
        self._active_watch: watch.Watch | None = None
        self._lock = threading.Lock()

    @property
    def label_selector(self) -> str | None:
        return getattr(self.ownership, "label_selector", None)

    def stop(self) -> None:
        """Ask the thread to exit and interrupt the running stream."""
        self._stop_event.set()
        with self._lock:
            if self._active_watch is not None:
                self._active_watch.stop()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def handle_event(self, event_type: str, obj: dict[str, Any]) -> bool:
        """Map one watch event to its owner and enqueue it.

        Returns:
            True if a claim was enqueued
        """
        owner = self.ownership.owner_of(obj)
        if owner is None:
            metrics.owner_events_total.labels(kind=self.kind, result="unowned").inc()
            return False
        trigger = trigger_value(self.kind, obj)
        logger.debug(f"{event_type} {trigger} enqueues {KIND_PERMISSION_CLAIM} {owner}")
        return self.enqueuer.enqueue(owner, self.kind, trigger)

    def run(self) -> None:
        resource_version = None
        backoff = 1.0
        while not self.stopped:
            watcher = watch.Watch()
            with self._lock:
                self._active_watch = watcher
            try:
                list_fn, args = self.cluster.list_function(self.kind)
                if self.label_selector:
                    args["label_selector"] = self.label_selector
                if resource_version:
                    args["resource_version"] = resource_version
                for event in watcher.stream(list_fn, timeout_seconds=self.timeout_seconds, **args):
                    if self.stopped:
                        break
                    obj = self.cluster.to_dict(event.get("object"))
                    resource_version = (obj.get("metadata") or {}).get("resourceVersion") or resource_version
                    self.handle_event(str(event.get("type", "")), obj)
                backoff = 1.0
            except ApiException as e:
                if e.status == 410:
                    # Compacted past our resourceVersion; start over with a fresh list
                    logger.info(f"Watch on {self.kind} expired, re-listing")
                    resource_version = None
                    continue
                logger.exception(f"Watch on {self.kind} in cluster {self.cluster.name} failed")
                metrics.watch_errors_total.labels(kind=self.kind).inc()
                self._stop_event.wait(backoff * (0.5 + random.random()))
                backoff = min(backoff * 2, self.max_backoff)
            except Exception:
                logger.exception(f"Unexpected error watching {self.kind}")
                metrics.watch_errors_total.labels(kind=self.kind).inc()
                self._stop_event.wait(backoff * (0.5 + random.random()))
                backoff = min(backoff * 2, self.max_backoff)
            finally:
                watcher.stop()
        logger.info(f"Watch on {self.kind} stopped")


def start_target_watchers(
    cluster: ClusterClient,
    kinds: list[str],
    enqueuer: ClaimEnqueuer,
    ownership: OwnershipStrategy | None = None,
    timeout_seconds: int = 300,
) -> list[TargetClusterWatcher]:
    """Start one watcher thread per kind."""
    watchers = []
    for kind in kinds:
        watcher = TargetClusterWatcher(cluster, kind, enqueuer, ownership, timeout_seconds=timeout_seconds)
        watcher.start()
        watchers.append(watcher)
    return watchers


def stop_target_watchers(watchers: list[TargetClusterWatcher], timeout: float = 5.0) -> None:
    """Stop watcher threads and wait briefly for them to exit."""
    for watcher in watchers:
        watcher.stop()
    for watcher in watchers:
        watcher.join(timeout=timeout)
