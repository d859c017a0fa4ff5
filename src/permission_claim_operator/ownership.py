"""Ownership strategies linking derived objects back to their claim.

A derived object in the control cluster carries a regular ``ownerReferences``
entry, which the garbage collector follows on deletion. Objects in the target
cluster cannot reference an owner living in another cluster, so the owner's
identity is recorded in an annotation instead.
"""

from __future__ import annotations

from typing import Any, Protocol

from .constants import ANNOTATION_OWNER, CONTROLLER_NAME, LABEL_MANAGED_BY
from .models import Claim, ClaimIdentity
from .registry import KindRegistry


class OwnershipConflictError(Exception):
    """A derived object name is taken by an object the claim does not own."""

    def __init__(self, kind: str, name: str, owner: ClaimIdentity | None):
        self.kind = kind
        self.name = name
        self.owner = owner
        held_by = f"owned by {owner}" if owner else "not managed by this operator"
        super().__init__(f"{kind} {name} already exists and is {held_by}")


class OwnershipStrategy(Protocol):
    """Records and recovers the owning claim of a derived object."""

    def set_owner(self, owner: Claim, obj: dict[str, Any]) -> dict[str, Any]:
        """Tag ``obj`` (in place) as owned by ``owner`` and return it."""
        ...

    def owner_of(self, obj: dict[str, Any]) -> ClaimIdentity | None:
        """Return the identity of the owning claim, or None if ``obj`` is not owned."""
        ...


class OwnerReferenceStrategy:
    """Structural owner reference, usable when owner and child share a cluster."""

    def __init__(self, registry: KindRegistry, owner_kind: str):
        self.registry = registry
        self.owner_kind = owner_kind

    def set_owner(self, owner: Claim, obj: dict[str, Any]) -> dict[str, Any]:
        info = self.registry.lookup(self.owner_kind)
        meta = obj.setdefault("metadata", {})
        if meta.get("namespace") and meta["namespace"] != owner.namespace:
            raise ValueError(
                f"cross-namespace owner references are not allowed: "
                f"{owner.identity} cannot own an object in {meta['namespace']}"
            )
        refs = [
            ref for ref in meta.get("ownerReferences") or []
            if not ref.get("controller")
        ]
        refs.append({
            "apiVersion": info.api_version,
            "kind": info.kind,
            "name": owner.name,
            "uid": owner.uid,
            "controller": True,
            "blockOwnerDeletion": True,
        })
        meta["ownerReferences"] = refs
        return obj

    def owner_of(self, obj: dict[str, Any]) -> ClaimIdentity | None:
        meta = obj.get("metadata") or {}
        namespace = meta.get("namespace")
        if not namespace:
            return None
        info = self.registry.lookup(self.owner_kind)
        for ref in meta.get("ownerReferences") or []:
            if not ref.get("controller"):
                continue
            if ref.get("kind") != info.kind:
                continue
            group = (ref.get("apiVersion") or "").rpartition("/")[0]
            if group != info.group:
                continue
            return ClaimIdentity(namespace, ref.get("name", ""))
        return None


class AnnotationStrategy:
    """Owner identity stored as ``<namespace>/<name>`` in an annotation.

    The managed-by label lets target cluster watches select only objects
    created by this operator.
    """

    def __init__(self, annotation_key: str = ANNOTATION_OWNER, label_key: str = LABEL_MANAGED_BY):
        self.annotation_key = annotation_key
        self.label_key = label_key

    @property
    def label_selector(self) -> str:
        return f"{self.label_key}={CONTROLLER_NAME}"

    def set_owner(self, owner: Claim, obj: dict[str, Any]) -> dict[str, Any]:
        meta = obj.setdefault("metadata", {})
        meta.setdefault("annotations", {})[self.annotation_key] = str(owner.identity)
        meta.setdefault("labels", {})[self.label_key] = CONTROLLER_NAME
        return obj

    def owner_of(self, obj: dict[str, Any]) -> ClaimIdentity | None:
        annotations = (obj.get("metadata") or {}).get("annotations") or {}
        value = annotations.get(self.annotation_key)
        if not value:
            return None
        return ClaimIdentity.parse(value)


def ensure_owned(strategy: OwnershipStrategy, owner: Claim, kind: str, obj: dict[str, Any]) -> None:
    """Check that the live object ``obj`` belongs to ``owner``.

    Raises:
        OwnershipConflictError: If ``obj`` has another owner or none at all
    """
    current = strategy.owner_of(obj)
    if current != owner.identity:
        raise OwnershipConflictError(kind, (obj.get("metadata") or {}).get("name", ""), current)
