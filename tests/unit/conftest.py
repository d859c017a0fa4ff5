"""Shared fixtures: an in-memory cluster implementing the ClusterClient surface."""

from __future__ import annotations

import base64
import copy
import itertools
from collections import Counter
from typing import Any
from unittest.mock import patch

import pytest
from kubernetes.client.exceptions import ApiException

from permission_claim_operator.constants import (
    ANNOTATION_SERVICE_ACCOUNT_NAME,
    KIND_PERMISSION_CLAIM,
    KIND_SECRET,
    KIND_SERVICE_ACCOUNT,
    SECRET_TYPE_SERVICE_ACCOUNT_TOKEN,
)
from permission_claim_operator.reconciler import ClaimReconciler
from permission_claim_operator.registry import KindRegistry

BASE_KUBECONFIG = {
    "apiVersion": "v1",
    "kind": "Config",
    "clusters": [{"name": "target", "cluster": {"server": "https://target.example:6443"}}],
    "contexts": [{"name": "target", "context": {"cluster": "target", "user": "admin"}}],
    "current-context": "target",
    "users": [{"name": "admin", "user": {"client-certificate-data": "Y2VydA==", "client-key-data": "a2V5"}}],
}

WRITE_OPERATIONS = ("create", "replace", "patch", "patch_status", "delete")


def merge_patch(target: Any, patch_body: Any) -> Any:
    """RFC 7386 JSON merge patch."""
    if not isinstance(patch_body, dict):
        return copy.deepcopy(patch_body)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch_body.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = merge_patch(result.get(key), value)
    return result


class FakeCluster:
    """In-memory stand-in for ``ClusterClient``.

    Every write bumps a global resourceVersion and is counted in ``writes``.
    ``fail_next(operation, kind, status)`` makes the next matching call raise.
    """

    _versions = itertools.count(1)
    _uids = itertools.count(1)

    def __init__(self, name: str, registry: KindRegistry):
        self.name = name
        self.registry = registry
        self.objects: dict[tuple[str, str | None, str], dict[str, Any]] = {}
        self.writes: Counter = Counter()
        self.calls: list[tuple[str, str, str | None, str | None]] = []
        self._failures: list[tuple[str, str, int]] = []

    # Test helpers

    def fail_next(self, operation: str, kind: str, status: int = 500) -> None:
        self._failures.append((operation, kind, status))

    @property
    def write_count(self) -> int:
        return sum(self.writes.values())

    def reset_counters(self) -> None:
        self.writes.clear()
        self.calls.clear()

    def put(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Store an object directly, bypassing counters."""
        obj = copy.deepcopy(obj)
        meta = obj.setdefault("metadata", {})
        meta.setdefault("uid", f"uid-{next(self._uids)}")
        meta["resourceVersion"] = str(next(self._versions))
        self.objects[self._key(obj["kind"], meta.get("namespace"), meta["name"])] = obj
        return copy.deepcopy(obj)

    def peek(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any] | None:
        obj = self.objects.get(self._key(kind, namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def names(self, kind: str) -> list[str]:
        return sorted(key[2] for key in self.objects if key[0] == kind)

    # ClusterClient surface

    def to_dict(self, obj: Any) -> dict[str, Any]:
        return obj or {}

    def get(self, kind: str, name: str, namespace: str | None = None) -> dict[str, Any] | None:
        self._before("get", kind, name, namespace)
        return self.peek(kind, name, namespace)

    def list(self, kind, namespace=None, label_selector=None, field_selector=None):
        self._before("list", kind, None, namespace)
        items = []
        for (item_kind, item_ns, _), obj in self.objects.items():
            if item_kind != kind or (namespace and item_ns != namespace):
                continue
            if label_selector and not self._match_labels(obj, label_selector):
                continue
            if field_selector and not self._match_fields(obj, field_selector):
                continue
            items.append(copy.deepcopy(obj))
        return items

    def create(self, kind: str, body: dict[str, Any]) -> dict[str, Any]:
        meta = body.get("metadata", {})
        self._before("create", kind, meta.get("name"), meta.get("namespace"))
        if self._key(kind, meta.get("namespace"), meta["name"]) in self.objects:
            raise ApiException(status=409, reason="AlreadyExists")
        self.writes[("create", kind)] += 1
        return self.put(body)

    def replace(self, kind: str, body: dict[str, Any]) -> dict[str, Any]:
        meta = body.get("metadata", {})
        self._before("replace", kind, meta.get("name"), meta.get("namespace"))
        current = self._require(kind, meta["name"], meta.get("namespace"))
        if meta.get("resourceVersion") and meta["resourceVersion"] != current["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")
        self.writes[("replace", kind)] += 1
        return self.put(body)

    def patch(self, kind: str, name: str, namespace: str | None, body: dict[str, Any]) -> dict[str, Any]:
        self._before("patch", kind, name, namespace)
        current = self._require(kind, name, namespace)
        wanted_rv = (body.get("metadata") or {}).get("resourceVersion")
        if wanted_rv and wanted_rv != current["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")
        self.writes[("patch", kind)] += 1
        updated = merge_patch(current, body)
        meta = updated["metadata"]
        if meta.get("deletionTimestamp") and not meta.get("finalizers"):
            # Last finalizer gone: the object is physically removed
            del self.objects[self._key(kind, namespace, name)]
            return updated
        return self.put(updated)

    def patch_status(self, kind: str, name: str, namespace: str | None, body: dict[str, Any]) -> dict[str, Any]:
        self._before("patch_status", kind, name, namespace)
        current = self._require(kind, name, namespace)
        self.writes[("patch_status", kind)] += 1
        current["status"] = merge_patch(current.get("status"), body.get("status") or {})
        return self.put(current)

    def delete(self, kind: str, name: str, namespace: str | None = None) -> bool:
        self._before("delete", kind, name, namespace)
        key = self._key(kind, namespace, name)
        if key not in self.objects:
            return False
        self.writes[("delete", kind)] += 1
        del self.objects[key]
        return True

    def list_function(self, kind, namespace=None):
        return self.list, {"kind": kind}

    # Internals

    def _key(self, kind: str, namespace: str | None, name: str) -> tuple[str, str | None, str]:
        info = self.registry.lookup(kind)
        return (kind, namespace if info.namespaced else None, name)

    def _before(self, operation: str, kind: str, name: str | None, namespace: str | None) -> None:
        self.calls.append((operation, kind, name, namespace))
        for idx, (op, failing_kind, status) in enumerate(self._failures):
            if op == operation and failing_kind == kind:
                del self._failures[idx]
                raise ApiException(status=status, reason="Injected")

    def _require(self, kind: str, name: str, namespace: str | None) -> dict[str, Any]:
        obj = self.objects.get(self._key(kind, namespace, name))
        if obj is None:
            raise ApiException(status=404, reason="NotFound")
        return copy.deepcopy(obj)

    @staticmethod
    def _match_labels(obj: dict[str, Any], selector: str) -> bool:
        labels = (obj.get("metadata") or {}).get("labels") or {}
        for clause in selector.split(","):
            key, _, value = clause.partition("=")
            if labels.get(key) != value:
                return False
        return True

    @staticmethod
    def _match_fields(obj: dict[str, Any], selector: str) -> bool:
        for clause in selector.split(","):
            key, _, value = clause.partition("=")
            if key == "type" and obj.get("type") != value:
                return False
        return True


def claim_body(
    name: str = "demo",
    namespace: str = "team-a",
    target_namespace: str = "team-a",
    rules: list[dict[str, Any]] | None = None,
    cluster_rules: list[dict[str, Any]] | None = None,
    secret_name: str = "demo-kubeconfig",
) -> dict[str, Any]:
    return {
        "apiVersion": "permissions.thetechnick.ninja/v1alpha1",
        "kind": KIND_PERMISSION_CLAIM,
        "metadata": {"name": name, "namespace": namespace, "generation": 1},
        "spec": {
            "namespace": target_namespace,
            "secretName": secret_name,
            "rules": rules if rules is not None else [{"apiGroups": [""], "verbs": ["get", "list"], "resources": ["pods"]}],
            "clusterRules": cluster_rules or [],
        },
    }


def issue_token(
    cluster: FakeCluster,
    service_account: str,
    namespace: str,
    token: str = "issued-token",
    linked: bool = True,
) -> dict[str, Any]:
    """Simulate the token controller: create a token Secret for a ServiceAccount."""
    secret_name = f"{service_account}-token-abcde"
    secret = cluster.put({
        "apiVersion": "v1",
        "kind": KIND_SECRET,
        "type": SECRET_TYPE_SERVICE_ACCOUNT_TOKEN,
        "metadata": {
            "name": secret_name,
            "namespace": namespace,
            "annotations": {ANNOTATION_SERVICE_ACCOUNT_NAME: service_account},
        },
        "data": {"token": base64.b64encode(token.encode()).decode()} if token else {},
    })
    if linked:
        sa = cluster.peek(KIND_SERVICE_ACCOUNT, service_account, namespace)
        if sa is not None:
            sa["secrets"] = [{"name": secret_name}]
            cluster.put(sa)
    return secret


@pytest.fixture(autouse=True)
def mock_kopf_event():
    """Events are posted through kopf's queue, which only exists inside a running operator."""
    with patch("permission_claim_operator.utils.events.kopf.event") as mock_event:
        yield mock_event


@pytest.fixture
def registry() -> KindRegistry:
    return KindRegistry.default()


@pytest.fixture
def control(registry: KindRegistry) -> FakeCluster:
    return FakeCluster("control", registry)


@pytest.fixture
def target(registry: KindRegistry) -> FakeCluster:
    return FakeCluster("target", registry)


@pytest.fixture
def base_kubeconfig() -> dict[str, Any]:
    return copy.deepcopy(BASE_KUBECONFIG)


@pytest.fixture
def reconciler(control, target, registry, base_kubeconfig) -> ClaimReconciler:
    return ClaimReconciler(control, target, registry, base_kubeconfig)
