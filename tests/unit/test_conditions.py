"""Tests for condition utilities."""

from __future__ import annotations

from permission_claim_operator.constants import (
    COND_BOUND,
    REASON_PERMISSIONS_ESTABLISHED,
    REASON_WAITING_FOR_TOKEN,
)
from permission_claim_operator.utils.conditions import (
    set_bound_condition,
    set_waiting_for_token_condition,
    update_condition,
)


class TestConditions:
    """Test cases for condition utilities."""

    def test_update_condition_new(self) -> None:
        """Test adding a new condition."""
        conditions: list = []
        result = update_condition(conditions, "Bound", "True", "Reason", "Message", observed_generation=2)

        assert len(result) == 1
        assert result[0]["type"] == "Bound"
        assert result[0]["status"] == "True"
        assert result[0]["reason"] == "Reason"
        assert result[0]["message"] == "Message"
        assert result[0]["observedGeneration"] == 2
        assert "lastTransitionTime" in result[0]

    def test_update_condition_keeps_transition_time(self) -> None:
        """Test that lastTransitionTime only moves when the status changes."""
        conditions = [{
            "type": "Bound",
            "status": "True",
            "reason": "Old",
            "message": "Old",
            "lastTransitionTime": "2024-01-01T00:00:00Z",
        }]

        result = update_condition(conditions, "Bound", "True", "New", "New")

        assert len(result) == 1
        assert result[0]["reason"] == "New"
        assert result[0]["lastTransitionTime"] == "2024-01-01T00:00:00Z"

    def test_update_condition_status_change(self) -> None:
        conditions = [{"type": "Bound", "status": "False", "lastTransitionTime": "2024-01-01T00:00:00Z"}]

        result = update_condition(conditions, "Bound", "True", "R", "M")

        assert result[0]["lastTransitionTime"] != "2024-01-01T00:00:00Z"

    def test_other_conditions_untouched(self) -> None:
        conditions = [{"type": "Other", "status": "True"}]

        update_condition(conditions, "Bound", "True", "R", "M")

        assert [c["type"] for c in conditions] == ["Other", "Bound"]

    def test_set_bound_condition(self) -> None:
        result = set_bound_condition([], "demo-kubeconfig", observed_generation=1)

        assert result[0]["type"] == COND_BOUND
        assert result[0]["status"] == "True"
        assert result[0]["reason"] == REASON_PERMISSIONS_ESTABLISHED
        assert "demo-kubeconfig" in result[0]["message"]

    def test_waiting_then_bound_share_one_condition(self) -> None:
        conditions = set_waiting_for_token_condition([], "demo")
        assert conditions[0]["reason"] == REASON_WAITING_FOR_TOKEN
        assert conditions[0]["status"] == "False"

        set_bound_condition(conditions, "demo-kubeconfig")

        assert len(conditions) == 1
        assert conditions[0]["status"] == "True"
