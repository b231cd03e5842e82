"""Prometheus metrics for the NSX subnet operator."""

from prometheus_client import Counter, Histogram, Gauge, Info

# Reconciliation metrics
RECONCILE_TOTAL = Counter(
    "nsx_subnet_operator_reconcile_total",
    "Total number of reconciliations",
    ["resource", "operation", "status"],
)

RECONCILE_DURATION = Histogram(
    "nsx_subnet_operator_reconcile_duration_seconds",
    "Time spent in reconciliation",
    ["resource", "operation"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

RECONCILE_IN_PROGRESS = Gauge(
    "nsx_subnet_operator_reconcile_in_progress",
    "Number of reconciliations currently in progress",
    ["resource"],
)

# NSX API metrics
NSX_API_CALLS = Counter(
    "nsx_subnet_operator_nsx_api_calls_total",
    "Total number of NSX API calls",
    ["method", "operation", "status"],
)

NSX_API_DURATION = Histogram(
    "nsx_subnet_operator_nsx_api_duration_seconds",
    "Time spent in NSX API calls",
    ["method", "operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

NSX_API_RETRIES = Counter(
    "nsx_subnet_operator_nsx_api_retries_total",
    "Total number of NSX API call retries",
    ["operation"],
)

RATE_LIMIT_WAIT_SECONDS = Histogram(
    "nsx_subnet_operator_rate_limit_wait_seconds",
    "Time spent waiting for rate limit slot",
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

# Waiter metrics
REALIZATION_WAIT_SECONDS = Histogram(
    "nsx_subnet_operator_realization_wait_seconds",
    "Time spent waiting for NSX to realize a subnet",
    ["status"],
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

IP_RELEASE_WAIT_SECONDS = Histogram(
    "nsx_subnet_operator_ip_release_wait_seconds",
    "Time spent waiting for a subnet IP pool to drain",
    ["status"],
    buckets=(1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0),
)

# Cache metrics
CACHED_SUBNETS = Gauge(
    "nsx_subnet_operator_cached_subnets",
    "Number of NSX subnets held in the operator cache",
)

STORE_RESYNC_RUNS = Counter(
    "nsx_subnet_operator_store_resync_runs_total",
    "Total number of subnet cache reloads",
    ["status"],
)

# Garbage collection metrics - NSX subnets whose owner CR is gone
GC_RUNS = Counter(
    "nsx_subnet_operator_gc_runs_total",
    "Total number of subnet garbage collection runs",
    ["status"],
)

GC_DELETED_SUBNETS = Counter(
    "nsx_subnet_operator_gc_deleted_subnets_total",
    "Total number of orphaned NSX subnets deleted by garbage collection",
    ["resource"],
)

GC_DURATION = Histogram(
    "nsx_subnet_operator_gc_duration_seconds",
    "Time spent in subnet garbage collection",
    buckets=(1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

# Operator info
OPERATOR_INFO = Info(
    "nsx_subnet_operator",
    "Information about the NSX subnet operator",
)


def set_operator_info(version: str, cluster: str) -> None:
    """Set operator info labels."""
    OPERATOR_INFO.info({"version": version, "cluster": cluster})


def init_metrics() -> None:
    """Initialize all metrics with zero values.

    Prometheus metrics with labels don't appear until used.
    This ensures all metrics are visible immediately at startup.
    """
    operations = {
        "Subnet": ["update", "delete"],
        "SubnetSet": ["update", "delete", "allocate"],
    }
    statuses = ["success", "error"]

    # Initialize reconciliation metrics
    for resource, resource_operations in operations.items():
        RECONCILE_IN_PROGRESS.labels(resource=resource).set(0)
        for operation in resource_operations:
            RECONCILE_DURATION.labels(resource=resource, operation=operation)
            for status in statuses:
                RECONCILE_TOTAL.labels(
                    resource=resource, operation=operation, status=status
                )

    for status in ("realized", "timeout"):
        REALIZATION_WAIT_SECONDS.labels(status=status)
    for status in ("released", "timeout"):
        IP_RELEASE_WAIT_SECONDS.labels(status=status)
    # Initialize cache and GC metrics
    for status in statuses:
        STORE_RESYNC_RUNS.labels(status=status)
        GC_RUNS.labels(status=status)
    for resource in operations:
        GC_DELETED_SUBNETS.labels(resource=resource)
