"""Utilities for managing Kubernetes conditions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ..constants import (
    COND_BOUND,
    REASON_PERMISSIONS_ESTABLISHED,
    REASON_WAITING_FOR_TOKEN,
)


def update_condition(
    conditions: list[dict[str, Any]],
    condition_type: str,
    status: str,
    reason: str,
    message: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Update or add a condition to the conditions list.

    Args:
        conditions: List of existing conditions
        condition_type: Type of condition
        status: Status of condition ("True", "False", "Unknown")
        reason: Reason for the condition
        message: Human-readable message
        observed_generation: Generation when condition was observed

    Returns:
        Updated list of conditions
    """
    now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

    existing_idx = None
    for idx, cond in enumerate(conditions):
        if cond.get("type") == condition_type:
            existing_idx = idx
            break

    new_condition = {
        "type": condition_type,
        "status": status,
        "reason": reason,
        "message": message,
        "lastTransitionTime": now,
    }

    if observed_generation is not None:
        new_condition["observedGeneration"] = observed_generation

    if existing_idx is not None:
        existing = conditions[existing_idx]
        # Only update lastTransitionTime if status changed
        if existing.get("status") == status:
            new_condition["lastTransitionTime"] = existing.get("lastTransitionTime", now)
        conditions[existing_idx] = new_condition
    else:
        conditions.append(new_condition)

    return conditions


def set_bound_condition(
    conditions: list[dict[str, Any]],
    secret_name: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Set the Bound condition once the kubeconfig Secret exists."""
    return update_condition(
        conditions,
        COND_BOUND,
        "True",
        REASON_PERMISSIONS_ESTABLISHED,
        f"Kubeconfig stored in Secret {secret_name}",
        observed_generation,
    )


def set_waiting_for_token_condition(
    conditions: list[dict[str, Any]],
    service_account: str,
    observed_generation: int | None = None,
) -> list[dict[str, Any]]:
    """Record that the ServiceAccount token has not been issued yet."""
    return update_condition(
        conditions,
        COND_BOUND,
        "False",
        REASON_WAITING_FOR_TOKEN,
        f"Waiting for a token to be issued for ServiceAccount {service_account}",
        observed_generation,
    )
