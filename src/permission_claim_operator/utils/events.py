"""Utilities for emitting Kubernetes events."""

from __future__ import annotations

from typing import Any

import kopf

from ..constants import (
    EVENT_REASON_CLEANUP_COMPLETED,
    EVENT_REASON_KUBECONFIG_CREATED,
    EVENT_REASON_RECONCILE_FAILED,
    EVENT_REASON_RECONCILE_STARTED,
    EVENT_REASON_RESOURCE_CREATED,
    EVENT_REASON_RESOURCE_UPDATED,
)


def emit_event(
    body: dict[str, Any],
    reason: str,
    message: str,
    type_: str = "Normal",
) -> None:
    """Emit a Kubernetes event.

    Args:
        body: Body of the involved object (apiVersion, kind and metadata are used)
        reason: Event reason
        message: Event message
        type_: Event type (Normal or Warning)
    """
    kopf.event(
        body,
        reason=reason,
        message=message,
        type=type_,
    )


def emit_reconcile_started(body: dict[str, Any]) -> None:
    """Emit reconcile started event."""
    emit_event(body, EVENT_REASON_RECONCILE_STARTED, "Reconciliation started")


def emit_reconcile_failed(body: dict[str, Any], message: str) -> None:
    """Emit reconcile failed event."""
    emit_event(body, EVENT_REASON_RECONCILE_FAILED, message, type_="Warning")


def emit_resource_created(body: dict[str, Any], kind: str, name: str) -> None:
    """Emit derived resource created event."""
    emit_event(body, EVENT_REASON_RESOURCE_CREATED, f"{kind} {name} created")


def emit_resource_updated(body: dict[str, Any], kind: str, name: str) -> None:
    """Emit derived resource updated event."""
    emit_event(body, EVENT_REASON_RESOURCE_UPDATED, f"{kind} {name} updated to match the claim")


def emit_kubeconfig_created(body: dict[str, Any], secret_name: str) -> None:
    """Emit kubeconfig Secret created event."""
    emit_event(body, EVENT_REASON_KUBECONFIG_CREATED, f"Kubeconfig Secret {secret_name} created")


def emit_cleanup_completed(body: dict[str, Any]) -> None:
    """Emit cleanup completed event."""
    emit_event(body, EVENT_REASON_CLEANUP_COMPLETED, "Target cluster resources removed")
