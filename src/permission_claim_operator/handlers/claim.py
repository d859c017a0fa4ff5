"""Handlers for the PermissionClaim CRD and the kubeconfig Secrets it owns."""

from __future__ import annotations

from typing import Any

import kopf

from ..config import OperatorConfig
from ..constants import (
    API_GROUP,
    API_VERSION,
    CONTROLLER_NAME,
    KIND_PERMISSION_CLAIM,
    KIND_SECRET,
    LABEL_MANAGED_BY,
    PLURAL_PERMISSION_CLAIM,
)
from ..models import ClaimIdentity, InvalidClaimError
from ..reconciler import ClaimReconciler, ReconcileOutcome
from ..utils.context import with_correlation_id
from ..utils.errors import ReconcileStepError
from ..watchers import trigger_value
from .base import BaseHandler


class ClaimHandler(BaseHandler):
    """Handler for PermissionClaim resources."""

    def __init__(self):
        super().__init__(KIND_PERMISSION_CLAIM)

    def reconcile(
        self,
        body: dict[str, Any],
        reconciler: ClaimReconciler,
        config: OperatorConfig,
        retry: int = 0,
    ) -> ReconcileOutcome | None:
        """Run one reconcile of the claim and translate failures for kopf.

        Invalid specs become permanent errors, failed steps temporary errors
        with an exponential delay. Anything else propagates unchanged.
        """
        meta = body.get("metadata") or {}
        identity = ClaimIdentity(meta.get("namespace", ""), meta.get("name", ""))
        try:
            outcome = self.reconcile_with_metrics(body, lambda: reconciler.reconcile(identity))
        except InvalidClaimError as e:
            self.handle_validation_error(meta, e)
        except ReconcileStepError as e:
            self.handle_retryable_error(meta, e, config.retry_delay(retry))

        if outcome is None:
            self.log_info(meta, "Claim no longer exists", event="skipped", reason="NotFound")
        elif outcome.deleting:
            self.log_info(
                meta,
                "Target cluster objects removed, finalizer released",
                event="deletion",
                reason="CleanupCompleted",
                deleted=[f"{ref.kind}/{ref.name}" for ref in outcome.deleted],
            )
        elif outcome.changed:
            self.log_info(
                meta,
                f"Reconciled, phase {outcome.phase}",
                event="reconciled",
                reason="Reconciled",
                phase=outcome.phase,
                actions={kind: action.value for kind, action in outcome.actions.items()},
            )
        return outcome

    def enqueue_owner(self, event: dict[str, Any], memo: kopf.Memo) -> bool:
        """Enqueue the claim owning a kubeconfig Secret that changed."""
        if event.get("type") is None:
            # Initial listing, the claims are resumed on their own
            return False
        body = event.get("object") or {}
        owner = memo.secret_ownership.owner_of(body)
        if owner is None:
            return False
        return memo.enqueuer.enqueue(owner, KIND_SECRET, trigger_value(KIND_SECRET, body))


# Global handler instance
_handler = ClaimHandler()


@kopf.on.create(API_GROUP, API_VERSION, PLURAL_PERMISSION_CLAIM)
@kopf.on.update(API_GROUP, API_VERSION, PLURAL_PERMISSION_CLAIM)
@kopf.on.resume(API_GROUP, API_VERSION, PLURAL_PERMISSION_CLAIM)
def handle_claim(
    body: kopf.Body,
    memo: kopf.Memo,
    retry: int,
    **kwargs: Any,
) -> None:
    """Handle PermissionClaim reconciliation."""
    with with_correlation_id():
        _handler.reconcile(body, memo.reconciler, memo.config, retry)


# optional=True: the claim is guarded by our own finalizer, not kopf's
@kopf.on.delete(API_GROUP, API_VERSION, PLURAL_PERMISSION_CLAIM, optional=True)
def handle_claim_delete(
    body: kopf.Body,
    memo: kopf.Memo,
    retry: int,
    **kwargs: Any,
) -> None:
    """Handle PermissionClaim deletion."""
    with with_correlation_id():
        _handler.reconcile(body, memo.reconciler, memo.config, retry)


@kopf.on.event("", "v1", "secrets", labels={LABEL_MANAGED_BY: CONTROLLER_NAME})
def handle_kubeconfig_secret_event(
    event: dict[str, Any],
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Re-reconcile the owning claim when its kubeconfig Secret changes."""
    with with_correlation_id():
        _handler.enqueue_owner(event, memo)
