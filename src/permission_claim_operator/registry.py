"""Registry mapping resource kinds to their API identity."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from .constants import (
    API_GROUP,
    API_VERSION,
    KIND_CLUSTER_ROLE,
    KIND_CLUSTER_ROLE_BINDING,
    KIND_PERMISSION_CLAIM,
    KIND_ROLE,
    KIND_ROLE_BINDING,
    KIND_SECRET,
    KIND_SERVICE_ACCOUNT,
    PLURAL_PERMISSION_CLAIM,
    RBAC_API_GROUP,
)


class UnknownKindError(LookupError):
    """The kind has not been registered."""


@dataclass(frozen=True)
class KindInfo:
    """API identity of one resource kind."""

    kind: str
    group: str
    version: str
    plural: str
    namespaced: bool = True
    custom: bool = False

    @property
    def api_version(self) -> str:
        """apiVersion as written in manifests (core group has no prefix)."""
        return f"{self.group}/{self.version}" if self.group else self.version


class KindRegistry:
    """Explicit kind registry, built once at startup and passed to every component."""

    def __init__(self, kinds: Iterable[KindInfo] = ()):
        self._kinds: dict[str, KindInfo] = {}
        for info in kinds:
            self.register(info)

    def register(self, info: KindInfo) -> None:
        """Register (or replace) the identity of a kind."""
        self._kinds[info.kind] = info

    def lookup(self, kind: str) -> KindInfo:
        """Resolve a kind name.

        Raises:
            UnknownKindError: If the kind is not registered
        """
        try:
            return self._kinds[kind]
        except KeyError:
            raise UnknownKindError(f"kind {kind!r} is not registered") from None

    def for_object(self, obj: dict[str, Any]) -> KindInfo:
        """Resolve the identity of a manifest from its ``kind`` field."""
        return self.lookup(obj["kind"])

    def stamp(self, kind: str, obj: dict[str, Any]) -> dict[str, Any]:
        """Return ``obj`` with ``apiVersion`` and ``kind`` set from the registry."""
        info = self.lookup(kind)
        return {"apiVersion": info.api_version, "kind": info.kind, **obj}

    @classmethod
    def default(cls) -> KindRegistry:
        """Registry with the claim kind and every kind the operator derives from it."""
        return cls([
            KindInfo(KIND_PERMISSION_CLAIM, API_GROUP, API_VERSION, PLURAL_PERMISSION_CLAIM, custom=True),
            KindInfo(KIND_SERVICE_ACCOUNT, "", "v1", "serviceaccounts"),
            KindInfo(KIND_SECRET, "", "v1", "secrets"),
            KindInfo(KIND_ROLE, RBAC_API_GROUP, "v1", "roles"),
            KindInfo(KIND_CLUSTER_ROLE, RBAC_API_GROUP, "v1", "clusterroles", namespaced=False),
            KindInfo(KIND_ROLE_BINDING, RBAC_API_GROUP, "v1", "rolebindings"),
            KindInfo(KIND_CLUSTER_ROLE_BINDING, RBAC_API_GROUP, "v1", "clusterrolebindings", namespaced=False),
        ])
