"""Prometheus metrics for the Lumigo Operator."""

from prometheus_client import Counter, Histogram

# Reconciliation metrics
reconcile_total = Counter(
    "lumigo_operator_reconcile_total",
    "Total number of reconciliations",
    ["kind", "result"],
)

reconcile_duration_seconds = Histogram(
    "lumigo_operator_reconcile_duration_seconds",
    "Duration of reconciliations in seconds",
    ["kind"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

resource_status_total = Counter(
    "lumigo_operator_resource_status_total",
    "Resource status outcomes of reconciliations",
    ["kind", "status"],
)

error_total = Counter(
    "lumigo_operator_error_total",
    "Total number of errors by type",
    ["kind", "error_type"],
)

# Injection metrics
injection_operations_total = Counter(
    "lumigo_operator_injection_operations_total",
    "Total number of workload injection operations",
    ["operation", "result"],
)

conflict_retries_total = Counter(
    "lumigo_operator_conflict_retries_total",
    "Optimistic concurrency conflicts retried",
    ["kind"],
)

# API call metrics
api_call_total = Counter(
    "lumigo_operator_api_call_total",
    "Total number of API calls",
    ["api_type", "operation", "result"],
)

api_call_duration_seconds = Histogram(
    "lumigo_operator_api_call_duration_seconds",
    "Duration of API calls in seconds",
    ["api_type", "operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
)

rate_limit_hits_total = Counter(
    "lumigo_operator_rate_limit_hits_total",
    "Total number of rate limit hits",
    ["api_type"],
)
