"""Reconciliation of one PermissionClaim across the control and target clusters."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any

from kubernetes.client.exceptions import ApiException

from . import metrics
from .builders import (
    ObjectRef,
    build_cluster_role,
    build_cluster_role_binding,
    build_kubeconfig_secret,
    build_role,
    build_role_binding,
    build_service_account,
    render_kubeconfig,
    synthesize_kubeconfig,
)
from .clients import ClusterClient
from .constants import (
    ANNOTATION_SERVICE_ACCOUNT_NAME,
    KIND_PERMISSION_CLAIM,
    KIND_SECRET,
    PHASE_BOUND,
    PHASE_PENDING,
    SECRET_TYPE_SERVICE_ACCOUNT_TOKEN,
    SERVICE_ACCOUNT_TOKEN_KEY,
)
from .finalizers import FinalizerManager
from .models import Claim, ClaimIdentity
from .ownership import (
    AnnotationStrategy,
    OwnerReferenceStrategy,
    OwnershipConflictError,
    OwnershipStrategy,
    ensure_owned,
)
from .registry import KindRegistry
from .sync import ResourceSynchronizer, SyncAction, SyncPolicy, SyncResult
from .tracing import trace_span
from .utils.conditions import set_bound_condition, set_waiting_for_token_condition
from .utils.errors import ReconcileStepError
from .utils.events import (
    emit_cleanup_completed,
    emit_kubeconfig_created,
    emit_resource_created,
    emit_resource_updated,
)
from .utils.secrets import decode_secret_value

logger = logging.getLogger(__name__)

ROLE_POLICY = SyncPolicy(mutable=("rules",))
BINDING_POLICY = SyncPolicy(mutable=("subjects",), immutable=("roleRef",))
SERVICE_ACCOUNT_POLICY = SyncPolicy()
# The kubeconfig Secret is created once and never rewritten
KUBECONFIG_SECRET_POLICY = SyncPolicy()


@dataclass
class ReconcileOutcome:
    """What one reconcile invocation did, for logging and tests."""

    identity: ClaimIdentity
    phase: str = PHASE_PENDING
    actions: dict[str, SyncAction] = field(default_factory=dict)
    deleted: list[ObjectRef] = field(default_factory=list)
    deleting: bool = False
    finalizer_added: bool = False
    status_written: bool = False

    @property
    def changed(self) -> bool:
        """True if any object was written."""
        return (
            self.finalizer_added
            or self.status_written
            or bool(self.deleted)
            or any(action is not SyncAction.UNCHANGED for action in self.actions.values())
        )


def find_service_account_token(cluster: ClusterClient, service_account: dict[str, Any]) -> str | None:
    """Return the bearer token issued for ``service_account``, or None if not issued yet.

    Secrets referenced from the ServiceAccount's ``secrets`` field are checked
    first. Clusters that no longer link token Secrets automatically are covered
    by listing token Secrets annotated with the ServiceAccount's name.

    Raises:
        ReconcileStepError: If a Secret cannot be read or decoded
    """
    meta = service_account.get("metadata") or {}
    name, namespace = meta.get("name", ""), meta.get("namespace")

    candidates = []
    try:
        for ref in service_account.get("secrets") or []:
            secret = cluster.get(KIND_SECRET, ref.get("name", ""), namespace)
            if secret is not None:
                candidates.append(secret)
        if not candidates:
            listed = cluster.list(
                KIND_SECRET,
                namespace,
                field_selector=f"type={SECRET_TYPE_SERVICE_ACCOUNT_TOKEN}",
            )
            candidates = [
                secret for secret in listed
                if ((secret.get("metadata") or {}).get("annotations") or {}).get(ANNOTATION_SERVICE_ACCOUNT_NAME) == name
            ]
    except ApiException as e:
        raise ReconcileStepError(KIND_SECRET, "looking up token of", e) from e

    for secret in candidates:
        if secret.get("type") != SECRET_TYPE_SERVICE_ACCOUNT_TOKEN:
            continue
        try:
            token = decode_secret_value(secret, SERVICE_ACCOUNT_TOKEN_KEY)
        except ValueError as e:
            raise ReconcileStepError(KIND_SECRET, "decoding", e) from e
        # The token controller fills the data asynchronously
        if token:
            return token
    return None


class ClaimReconciler:
    """Drives the derived objects of a claim towards the claim's spec.

    Steps run in dependency order: Role, ClusterRole, ServiceAccount, RoleBinding,
    ClusterRoleBinding and finally the kubeconfig Secret. The first failing step
    aborts the invocation; the next invocation starts over from the top.
    """

    def __init__(
        self,
        control: ClusterClient,
        target: ClusterClient,
        registry: KindRegistry,
        base_kubeconfig: dict[str, Any],
        target_ownership: OwnershipStrategy | None = None,
        control_ownership: OwnershipStrategy | None = None,
    ):
        self.control = control
        self.target = target
        self.registry = registry
        self.base_kubeconfig = base_kubeconfig
        self.target_ownership = target_ownership or AnnotationStrategy()
        self.control_ownership = control_ownership or OwnerReferenceStrategy(registry, KIND_PERMISSION_CLAIM)
        self.target_sync = ResourceSynchronizer(target, self.target_ownership)
        self.control_sync = ResourceSynchronizer(control, self.control_ownership)
        self.finalizers = FinalizerManager(control, target, self.target_ownership)

    def load(self, identity: ClaimIdentity) -> Claim | None:
        """Read the claim from the control cluster; None if it does not exist."""
        try:
            body = self.control.get(KIND_PERMISSION_CLAIM, identity.name, identity.namespace)
        except ApiException as e:
            raise ReconcileStepError(KIND_PERMISSION_CLAIM, "getting", e) from e
        if body is None:
            return None
        return Claim.from_body(body)

    def reconcile(self, identity: ClaimIdentity) -> ReconcileOutcome | None:
        """Run one reconcile invocation for the claim ``identity``.

        Returns:
            The outcome, or None if the claim no longer exists

        Raises:
            InvalidClaimError: If the claim spec is incomplete
            ReconcileStepError: If a step failed and the invocation must be retried
        """
        claim = self.load(identity)
        if claim is None:
            logger.info(f"{KIND_PERMISSION_CLAIM} {identity} not found, nothing to reconcile")
            return None

        outcome = ReconcileOutcome(identity, phase=claim.phase)
        with trace_span("reconcile_claim", kind=KIND_PERMISSION_CLAIM, attributes={"claim": str(identity)}):
            if claim.deleting:
                return self._reconcile_deletion(claim, outcome)

            claim.spec.validate()
            outcome.finalizer_added = self.finalizers.ensure(claim)

            self._sync_target(claim, outcome, build_role(claim, self.registry), ROLE_POLICY)
            self._sync_target(claim, outcome, build_cluster_role(claim, self.registry), ROLE_POLICY)
            desired_sa = build_service_account(claim, self.registry)
            service_account = self._sync_target(claim, outcome, desired_sa, SERVICE_ACCOUNT_POLICY).obj
            self._sync_target(
                claim, outcome,
                build_role_binding(claim, self.registry, build_role(claim, self.registry), desired_sa),
                BINDING_POLICY,
            )
            self._sync_target(
                claim, outcome,
                build_cluster_role_binding(claim, self.registry, build_cluster_role(claim, self.registry), desired_sa),
                BINDING_POLICY,
            )
            self._sync_kubeconfig_secret(claim, outcome, service_account)

            outcome.phase = claim.phase
            outcome.status_written = self._persist_status(claim)
        return outcome

    def _reconcile_deletion(self, claim: Claim, outcome: ReconcileOutcome) -> ReconcileOutcome:
        outcome.deleting = True
        with trace_span("delete_target_objects", kind=KIND_PERMISSION_CLAIM):
            outcome.deleted = self.finalizers.handle_deletion(claim)
        logger.info(
            f"Cleaned up {KIND_PERMISSION_CLAIM} {claim.identity}: "
            f"deleted {', '.join(f'{ref.kind}/{ref.name}' for ref in outcome.deleted) or 'nothing'}"
        )
        emit_cleanup_completed(claim.body)
        return outcome

    def _sync_target(
        self,
        claim: Claim,
        outcome: ReconcileOutcome,
        desired: dict[str, Any],
        policy: SyncPolicy,
    ) -> SyncResult:
        kind = desired["kind"]
        with trace_span(f"sync_{kind.lower()}", kind=kind):
            result = self.target_sync.sync(claim, desired, policy)
        self._record(claim, outcome, kind, desired["metadata"]["name"], result)
        return result

    def _record(self, claim: Claim, outcome: ReconcileOutcome, kind: str, name: str, result: SyncResult) -> None:
        outcome.actions[kind] = result.action
        if result.action is SyncAction.CREATED:
            emit_resource_created(claim.body, kind, name)
        elif result.changed:
            emit_resource_updated(claim.body, kind, name)

    def _sync_kubeconfig_secret(
        self,
        claim: Claim,
        outcome: ReconcileOutcome,
        service_account: dict[str, Any],
    ) -> None:
        secret_name = claim.spec.secret_name
        try:
            existing = self.control.get(KIND_SECRET, secret_name, claim.namespace)
        except ApiException as e:
            raise ReconcileStepError(KIND_SECRET, "getting", e) from e

        if existing is not None:
            try:
                ensure_owned(self.control_ownership, claim, KIND_SECRET, existing)
            except OwnershipConflictError as e:
                logger.warning(f"Not using Secret {secret_name} for {KIND_PERMISSION_CLAIM} {claim.identity}: {e}")
                raise ReconcileStepError(KIND_SECRET, "taking over", e) from e
            outcome.actions[KIND_SECRET] = SyncAction.UNCHANGED
            self._mark_bound(claim)
            return

        token = find_service_account_token(self.target, service_account)
        if token is None:
            sa_name = (service_account.get("metadata") or {}).get("name", claim.name)
            logger.info(f"No token issued yet for ServiceAccount {sa_name} of {KIND_PERMISSION_CLAIM} {claim.identity}")
            set_waiting_for_token_condition(claim.conditions, sa_name, claim.generation)
            claim.status["phase"] = PHASE_PENDING
            return

        kubeconfig = render_kubeconfig(synthesize_kubeconfig(self.base_kubeconfig, token))
        desired = build_kubeconfig_secret(claim, self.registry, kubeconfig)
        with trace_span("sync_kubeconfig_secret", kind=KIND_SECRET):
            result = self.control_sync.sync(claim, desired, KUBECONFIG_SECRET_POLICY)
        outcome.actions[KIND_SECRET] = result.action
        if result.action is SyncAction.CREATED:
            emit_kubeconfig_created(claim.body, secret_name)
        self._mark_bound(claim)

    def _mark_bound(self, claim: Claim) -> None:
        set_bound_condition(claim.conditions, claim.spec.secret_name, claim.generation)
        claim.status["phase"] = PHASE_BOUND

    def _persist_status(self, claim: Claim) -> bool:
        """Write the status subresource if it changed; returns True if written."""
        if not claim.status_changed:
            return False
        try:
            result = self.control.patch_status(
                KIND_PERMISSION_CLAIM, claim.name, claim.namespace, {"status": claim.status},
            )
        except ApiException as e:
            raise ReconcileStepError(KIND_PERMISSION_CLAIM, "updating status of", e) from e
        claim.refresh_metadata(result)
        claim.stored_status = copy.deepcopy(claim.status)
        metrics.resource_status_total.labels(kind=KIND_PERMISSION_CLAIM, status=claim.phase.lower()).inc()
        return True
