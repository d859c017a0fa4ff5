"""Prometheus metrics for the Permission Claim Operator."""

from prometheus_client import Counter, Histogram

# Reconciliation metrics
reconcile_total = Counter(
    "permission_claim_operator_reconcile_total",
    "Total number of reconciliations",
    ["kind", "result"],
)

reconcile_duration_seconds = Histogram(
    "permission_claim_operator_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    ["kind"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
)

error_total = Counter(
    "permission_claim_operator_error_total",
    "Total number of reconciliation errors",
    ["kind", "error_type"],
)

resource_status_total = Counter(
    "permission_claim_operator_resource_status_total",
    "Claim status observed at the end of a reconciliation",
    ["kind", "status"],
)

# Derived resource metrics
resource_operations_total = Counter(
    "permission_claim_operator_resource_operations_total",
    "Total number of writes to derived resources",
    ["kind", "operation"],
)

# Configuration drift detection metrics
drift_detected_total = Counter(
    "permission_claim_operator_drift_detected_total",
    "Total number of configuration drift detections",
    ["kind", "resource_type"],
)

# Owner tracking metrics
owner_events_total = Counter(
    "permission_claim_operator_owner_events_total",
    "Derived object events mapped back to their owning claim",
    ["kind", "result"],
)

# API call metrics
api_call_total = Counter(
    "permission_claim_operator_api_call_total",
    "Total number of API calls",
    ["cluster", "operation", "result"],
)

api_call_duration_seconds = Histogram(
    "permission_claim_operator_api_call_duration_seconds",
    "Duration of API calls in seconds",
    ["cluster", "operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
)

rate_limit_hits_total = Counter(
    "permission_claim_operator_rate_limit_hits_total",
    "Total number of rate limit hits",
    ["cluster"],
)

# Target cluster watch metrics
watch_errors_total = Counter(
    "permission_claim_operator_watch_errors_total",
    "Total number of failed target cluster watch streams",
    ["kind"],
)
