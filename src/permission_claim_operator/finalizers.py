"""Cleanup finalizer and deletion protocol for PermissionClaims."""

from __future__ import annotations

import logging

from kubernetes.client.exceptions import ApiException

from . import metrics
from .builders.rbac import ObjectRef, target_object_refs
from .clients import ClusterClient
from .constants import FINALIZER, KIND_PERMISSION_CLAIM
from .models import Claim
from .ownership import AnnotationStrategy, OwnershipStrategy
from .utils.errors import ReconcileStepError, is_not_found

logger = logging.getLogger(__name__)


class FinalizerManager:
    """Guards claims with a finalizer until their target cluster objects are gone.

    The finalizer is persisted before the first derived object is created, so a
    deletion request can always be intercepted. It is released only after every
    target cluster object owned by the claim was deleted (or was already absent).
    Objects of the same name that belong to someone else are left alone.
    """

    def __init__(
        self,
        control: ClusterClient,
        target: ClusterClient,
        ownership: OwnershipStrategy | None = None,
        finalizer: str = FINALIZER,
        claim_kind: str = KIND_PERMISSION_CLAIM,
    ):
        self.control = control
        self.target = target
        self.ownership = ownership or AnnotationStrategy()
        self.finalizer = finalizer
        self.claim_kind = claim_kind

    def ensure(self, claim: Claim) -> bool:
        """Add and persist the finalizer if missing.

        Returns:
            True if the claim was written
        """
        if claim.deleting or self.finalizer in claim.finalizers:
            return False
        self._write_finalizers(claim, claim.finalizers + [self.finalizer], "adding finalizer to")
        logger.info(f"Added finalizer {self.finalizer} to {self.claim_kind} {claim.identity}")
        return True

    def handle_deletion(self, claim: Claim) -> list[ObjectRef]:
        """Delete every target cluster object of ``claim``, then release the finalizer.

        Returns:
            The objects that were actually deleted (absent and foreign ones are skipped)

        Raises:
            ReconcileStepError: If any deletion fails; the finalizer is kept
        """
        deleted = []
        for ref in target_object_refs(claim):
            try:
                existing = self.target.get(ref.kind, ref.name, ref.namespace)
            except ApiException as e:
                raise ReconcileStepError(ref.kind, "getting", e) from e
            if existing is None:
                continue
            if self.ownership.owner_of(existing) != claim.identity:
                logger.warning(f"Leaving {ref.kind} {ref.name} in place, it is not owned by {claim.identity}")
                continue
            try:
                if self.target.delete(ref.kind, ref.name, ref.namespace):
                    deleted.append(ref)
                    metrics.resource_operations_total.labels(kind=ref.kind, operation="delete").inc()
            except ApiException as e:
                raise ReconcileStepError(ref.kind, "deleting", e) from e

        if self.finalizer in claim.finalizers:
            remaining = [f for f in claim.finalizers if f != self.finalizer]
            try:
                self._write_finalizers(claim, remaining, "removing finalizer from")
            except ReconcileStepError as e:
                if not is_not_found(e.cause):
                    raise
                # Already removed by someone else and physically deleted
            logger.info(f"Released finalizer {self.finalizer} of {self.claim_kind} {claim.identity}")
        return deleted

    def _write_finalizers(self, claim: Claim, finalizers: list[str], operation: str) -> None:
        body = {
            "metadata": {
                "finalizers": finalizers,
                # Precondition: fails with 409 if the claim changed since it was read
                "resourceVersion": claim.resource_version,
            }
        }
        try:
            result = self.control.patch(self.claim_kind, claim.name, claim.namespace, body)
        except ApiException as e:
            raise ReconcileStepError(self.claim_kind, operation, e) from e
        claim.refresh_metadata(result)
