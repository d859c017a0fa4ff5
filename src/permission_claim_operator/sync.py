"""Generic create-or-update of one derived object."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from kubernetes.client.exceptions import ApiException

from . import metrics
from .clients import ClusterClient
from .models import Claim
from .ownership import OwnershipConflictError, OwnershipStrategy, ensure_owned
from .utils.errors import ReconcileStepError, is_conflict

logger = logging.getLogger(__name__)


class SyncAction(str, Enum):
    """What a sync did to the live object."""

    CREATED = "created"
    UPDATED = "updated"
    RECREATED = "recreated"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class SyncPolicy:
    """Which top-level fields of a kind are compared against the desired object.

    ``mutable`` fields are overwritten in place. A difference in an ``immutable``
    field (for example a binding's ``roleRef``) forces delete and recreate.
    """

    mutable: tuple[str, ...] = ()
    immutable: tuple[str, ...] = ()


@dataclass
class SyncResult:
    obj: dict[str, Any]
    action: SyncAction

    @property
    def changed(self) -> bool:
        return self.action is not SyncAction.UNCHANGED


def normalize(value: Any) -> Any:
    """Drop null and empty members so that API defaults do not count as drift."""
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            item = normalize(item)
            if item in (None, "", [], {}):
                continue
            result[key] = item
        return result
    if isinstance(value, list):
        return [normalize(item) for item in value]
    return value


def differing_fields(existing: dict[str, Any], desired: dict[str, Any], fields: tuple[str, ...]) -> list[str]:
    """Names of ``fields`` whose normalized values differ."""
    # Wrapping in a dict makes a missing field equal to an empty one
    return [f for f in fields if normalize({f: existing.get(f)}) != normalize({f: desired.get(f)})]


class ResourceSynchronizer:
    """Converges one object in one cluster towards its desired state."""

    def __init__(self, cluster: ClusterClient, ownership: OwnershipStrategy):
        self.cluster = cluster
        self.ownership = ownership

    def sync(self, claim: Claim, desired: dict[str, Any], policy: SyncPolicy) -> SyncResult:
        """Create ``desired`` if missing, otherwise correct drifted payload fields.

        An existing object is only touched when it is owned by ``claim``.

        Raises:
            ReconcileStepError: On any API failure other than the benign cases,
                or when the name is taken by an object of another owner
        """
        kind = desired["kind"]
        desired = self.ownership.set_owner(claim, copy.deepcopy(desired))
        meta = desired["metadata"]
        name, namespace = meta["name"], meta.get("namespace")

        try:
            existing = self.cluster.get(kind, name, namespace)
        except ApiException as e:
            raise ReconcileStepError(kind, "getting", e) from e

        if existing is None:
            return self._create(claim, kind, desired)

        self._check_owner(claim, kind, existing)

        if differing_fields(existing, desired, policy.immutable):
            return self._recreate(claim, kind, existing, desired)

        updated = self.ownership.set_owner(claim, copy.deepcopy(existing))
        restamp = updated.get("metadata") != existing.get("metadata")
        drifted = differing_fields(existing, desired, policy.mutable)
        if not drifted and not restamp:
            return SyncResult(existing, SyncAction.UNCHANGED)

        if drifted:
            logger.info(f"{kind} {name} drifted from its claim in fields {drifted}, updating")
            metrics.drift_detected_total.labels(kind=claim.body.get("kind", ""), resource_type=kind).inc()
        else:
            logger.info(f"{kind} {name} lost its ownership marks, restoring them")
        for field in policy.mutable:
            if field in desired:
                updated[field] = copy.deepcopy(desired[field])
            else:
                updated.pop(field, None)
        try:
            result = self.cluster.replace(kind, updated)
        except ApiException as e:
            # A 409 here is a stale resourceVersion; the next reconcile re-reads and retries
            raise ReconcileStepError(kind, "updating", e) from e
        metrics.resource_operations_total.labels(kind=kind, operation="update").inc()
        return SyncResult(result, SyncAction.UPDATED)

    def _check_owner(self, claim: Claim, kind: str, existing: dict[str, Any]) -> None:
        try:
            ensure_owned(self.ownership, claim, kind, existing)
        except OwnershipConflictError as e:
            logger.warning(f"Not taking over {kind} for {claim.identity}: {e}")
            raise ReconcileStepError(kind, "taking over", e) from e

    def _create(self, claim: Claim, kind: str, desired: dict[str, Any]) -> SyncResult:
        meta = desired["metadata"]
        try:
            created = self.cluster.create(kind, desired)
        except ApiException as e:
            if not is_conflict(e):
                raise ReconcileStepError(kind, "creating", e) from e
            # Created concurrently by another actor
            logger.info(f"{kind} {meta['name']} already exists")
            try:
                existing = self.cluster.get(kind, meta["name"], meta.get("namespace"))
            except ApiException as get_error:
                raise ReconcileStepError(kind, "getting", get_error) from get_error
            if existing is not None:
                self._check_owner(claim, kind, existing)
            return SyncResult(existing or desired, SyncAction.UNCHANGED)
        metrics.resource_operations_total.labels(kind=kind, operation="create").inc()
        return SyncResult(created, SyncAction.CREATED)

    def _recreate(self, claim: Claim, kind: str, existing: dict[str, Any], desired: dict[str, Any]) -> SyncResult:
        meta = existing.get("metadata") or {}
        logger.info(f"{kind} {meta.get('name')} has an immutable field out of sync, recreating")
        try:
            self.cluster.delete(kind, meta.get("name", ""), meta.get("namespace"))
        except ApiException as e:
            raise ReconcileStepError(kind, "deleting", e) from e
        metrics.resource_operations_total.labels(kind=kind, operation="delete").inc()
        result = self._create(claim, kind, desired)
        return SyncResult(result.obj, SyncAction.RECREATED)
