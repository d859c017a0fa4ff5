"""Tests for Prometheus metrics."""

from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from permission_claim_operator import metrics


class TestMetricsExist:
    """Test that all expected metrics are defined with the operator prefix."""

    @pytest.mark.parametrize("metric,name", [
        (metrics.reconcile_total, "permission_claim_operator_reconcile"),
        (metrics.reconcile_duration_seconds, "permission_claim_operator_reconcile_duration_seconds"),
        (metrics.error_total, "permission_claim_operator_error"),
        (metrics.resource_status_total, "permission_claim_operator_resource_status"),
        (metrics.resource_operations_total, "permission_claim_operator_resource_operations"),
        (metrics.drift_detected_total, "permission_claim_operator_drift_detected"),
        (metrics.owner_events_total, "permission_claim_operator_owner_events"),
        (metrics.api_call_total, "permission_claim_operator_api_call"),
        (metrics.api_call_duration_seconds, "permission_claim_operator_api_call_duration_seconds"),
        (metrics.rate_limit_hits_total, "permission_claim_operator_rate_limit_hits"),
        (metrics.watch_errors_total, "permission_claim_operator_watch_errors"),
    ])
    def test_metric_name(self, metric, name):
        # Prometheus counters don't include "_total" in their _name attribute
        assert metric._name == name


class TestMetricsLabels:
    def test_reconcile_total_labels(self):
        assert metrics.reconcile_total._labelnames == ("kind", "result")

    def test_resource_operations_labels(self):
        assert metrics.resource_operations_total._labelnames == ("kind", "operation")

    def test_api_call_total_labels(self):
        assert metrics.api_call_total._labelnames == ("cluster", "operation", "result")

    def test_owner_events_labels(self):
        assert metrics.owner_events_total._labelnames == ("kind", "result")


class TestMetricsUsage:
    def test_counter_increment(self):
        labels = {"kind": "Role", "operation": "create"}
        before = REGISTRY.get_sample_value("permission_claim_operator_resource_operations_total", labels) or 0.0

        metrics.resource_operations_total.labels(**labels).inc()

        assert REGISTRY.get_sample_value("permission_claim_operator_resource_operations_total", labels) == before + 1

    def test_histogram_observe(self):
        labels = {"kind": "PermissionClaim"}
        before = REGISTRY.get_sample_value("permission_claim_operator_reconcile_duration_seconds_count", labels) or 0.0

        metrics.reconcile_duration_seconds.labels(**labels).observe(0.3)

        assert REGISTRY.get_sample_value(
            "permission_claim_operator_reconcile_duration_seconds_count", labels,
        ) == before + 1
