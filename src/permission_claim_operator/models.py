"""PermissionClaim model parsed from the custom resource body."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, NamedTuple

from .constants import PHASE_PENDING


class InvalidClaimError(ValueError):
    """The claim spec cannot be reconciled until it is fixed."""


class ClaimIdentity(NamedTuple):
    """Namespace and name of a PermissionClaim in the control cluster."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> ClaimIdentity | None:
        """Parse ``namespace/name``; returns None for malformed values."""
        namespace, sep, name = (value or "").strip().partition("/")
        if not sep or not namespace or not name or "/" in name:
            return None
        return cls(namespace, name)


@dataclass
class ClaimSpec:
    """Desired permissions declared by a claim."""

    namespace: str
    secret_name: str
    rules: list[dict[str, Any]] = field(default_factory=list)
    cluster_rules: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, spec: dict[str, Any]) -> ClaimSpec:
        return cls(
            namespace=spec.get("namespace") or "",
            secret_name=spec.get("secretName") or "",
            rules=copy.deepcopy(spec.get("rules") or []),
            cluster_rules=copy.deepcopy(spec.get("clusterRules") or []),
        )

    def validate(self) -> None:
        """Check required fields.

        Raises:
            InvalidClaimError: If a required field is missing
        """
        if not self.namespace:
            raise InvalidClaimError("spec.namespace is required")
        if not self.secret_name:
            raise InvalidClaimError("spec.secretName is required")
        for field_name, rules in (("rules", self.rules), ("clusterRules", self.cluster_rules)):
            for idx, rule in enumerate(rules):
                if not isinstance(rule, dict) or not rule.get("verbs"):
                    raise InvalidClaimError(f"spec.{field_name}[{idx}].verbs is required")


@dataclass
class Claim:
    """A PermissionClaim as loaded at the start of one reconcile.

    ``status`` is the working copy mutated by the reconcile steps; ``stored_status``
    is what the API server returned, used to skip no-op status writes.
    """

    body: dict[str, Any]
    spec: ClaimSpec
    status: dict[str, Any]
    stored_status: dict[str, Any]

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> Claim:
        status = copy.deepcopy(body.get("status") or {})
        return cls(
            body=body,
            spec=ClaimSpec.from_dict(body.get("spec") or {}),
            status=status,
            stored_status=copy.deepcopy(status),
        )

    @property
    def metadata(self) -> dict[str, Any]:
        return self.body.setdefault("metadata", {})

    @property
    def identity(self) -> ClaimIdentity:
        return ClaimIdentity(self.metadata.get("namespace", ""), self.metadata.get("name", ""))

    @property
    def name(self) -> str:
        return self.identity.name

    @property
    def namespace(self) -> str:
        return self.identity.namespace

    @property
    def uid(self) -> str:
        return self.metadata.get("uid", "")

    @property
    def generation(self) -> int | None:
        return self.metadata.get("generation")

    @property
    def resource_version(self) -> str | None:
        return self.metadata.get("resourceVersion")

    @property
    def finalizers(self) -> list[str]:
        return list(self.metadata.get("finalizers") or [])

    @property
    def deleting(self) -> bool:
        return bool(self.metadata.get("deletionTimestamp"))

    @property
    def phase(self) -> str:
        return self.status.get("phase") or PHASE_PENDING

    @property
    def conditions(self) -> list[dict[str, Any]]:
        return self.status.setdefault("conditions", [])

    @property
    def status_changed(self) -> bool:
        return self.status != self.stored_status

    def refresh_metadata(self, body: dict[str, Any]) -> None:
        """Adopt metadata (resourceVersion, finalizers) from a write response."""
        self.body["metadata"] = copy.deepcopy(body.get("metadata") or {})
