"""Builders for the RBAC objects derived from a PermissionClaim."""

from __future__ import annotations

import copy
from typing import Any, NamedTuple

from ..constants import (
    KIND_CLUSTER_ROLE,
    KIND_CLUSTER_ROLE_BINDING,
    KIND_ROLE,
    KIND_ROLE_BINDING,
    KIND_SERVICE_ACCOUNT,
)
from ..models import Claim
from ..registry import KindRegistry


class ObjectRef(NamedTuple):
    """Kind, name and (optional) namespace of a derived object."""

    kind: str
    name: str
    namespace: str | None = None


def _metadata(claim: Claim, namespaced: bool) -> dict[str, Any]:
    meta: dict[str, Any] = {"name": claim.name}
    if namespaced:
        meta["namespace"] = claim.spec.namespace
    return meta


def build_service_account(claim: Claim, registry: KindRegistry) -> dict[str, Any]:
    """ServiceAccount in the claim's target namespace."""
    return registry.stamp(KIND_SERVICE_ACCOUNT, {"metadata": _metadata(claim, namespaced=True)})


def build_role(claim: Claim, registry: KindRegistry) -> dict[str, Any]:
    """Role carrying ``spec.rules`` verbatim."""
    return registry.stamp(KIND_ROLE, {
        "metadata": _metadata(claim, namespaced=True),
        "rules": copy.deepcopy(claim.spec.rules),
    })


def build_cluster_role(claim: Claim, registry: KindRegistry) -> dict[str, Any]:
    """ClusterRole carrying ``spec.clusterRules`` verbatim."""
    return registry.stamp(KIND_CLUSTER_ROLE, {
        "metadata": _metadata(claim, namespaced=False),
        "rules": copy.deepcopy(claim.spec.cluster_rules),
    })


def _role_ref(registry: KindRegistry, role: dict[str, Any]) -> dict[str, Any]:
    info = registry.for_object(role)
    return {"apiGroup": info.group, "kind": info.kind, "name": role["metadata"]["name"]}


def _service_account_subject(registry: KindRegistry, service_account: dict[str, Any]) -> dict[str, Any]:
    info = registry.for_object(service_account)
    meta = service_account["metadata"]
    return {
        "apiGroup": info.group,
        "kind": info.kind,
        "name": meta["name"],
        "namespace": meta["namespace"],
    }


def build_role_binding(
    claim: Claim,
    registry: KindRegistry,
    role: dict[str, Any],
    service_account: dict[str, Any],
) -> dict[str, Any]:
    """RoleBinding granting ``role`` to ``service_account``.

    The role reference and subject identities are resolved through the registry
    from the objects themselves, not hardcoded.
    """
    return registry.stamp(KIND_ROLE_BINDING, {
        "metadata": _metadata(claim, namespaced=True),
        "roleRef": _role_ref(registry, role),
        "subjects": [_service_account_subject(registry, service_account)],
    })


def build_cluster_role_binding(
    claim: Claim,
    registry: KindRegistry,
    cluster_role: dict[str, Any],
    service_account: dict[str, Any],
) -> dict[str, Any]:
    """ClusterRoleBinding granting ``cluster_role`` to ``service_account``."""
    return registry.stamp(KIND_CLUSTER_ROLE_BINDING, {
        "metadata": _metadata(claim, namespaced=False),
        "roleRef": _role_ref(registry, cluster_role),
        "subjects": [_service_account_subject(registry, service_account)],
    })


def target_object_refs(claim: Claim) -> list[ObjectRef]:
    """Every derived object living in the target cluster, in deletion order.

    Bindings go first so that no binding outlives the role or subject it grants.
    Namespaced objects are skipped when the claim never had a target namespace.
    """
    namespace = claim.spec.namespace or None
    refs = [
        ObjectRef(KIND_ROLE_BINDING, claim.name, namespace),
        ObjectRef(KIND_CLUSTER_ROLE_BINDING, claim.name),
        ObjectRef(KIND_ROLE, claim.name, namespace),
        ObjectRef(KIND_CLUSTER_ROLE, claim.name),
        ObjectRef(KIND_SERVICE_ACCOUNT, claim.name, namespace),
    ]
    namespaced = {KIND_ROLE_BINDING, KIND_ROLE, KIND_SERVICE_ACCOUNT}
    return [ref for ref in refs if ref.kind not in namespaced or ref.namespace]
