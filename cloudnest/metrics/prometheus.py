"""
Prometheus metrics for application monitoring.

This module defines all Prometheus metrics used throughout the application:
- API request metrics (requests, duration, in-progress)
- Upload admission metrics (decisions by outcome)
- Quota metrics (usage, limit, warnings)
- Storage backend metrics (health state, probe duration)
- Folder tree metrics (cascade sizes)
"""
from prometheus_client import Counter, Gauge, Histogram


# ============================================================================
# API Metrics
# ============================================================================

api_requests_total = Counter(
    "api_requests_total",
    "Total number of API requests",
    ["method", "endpoint", "status"],
)

api_request_duration_seconds = Histogram(
    "api_request_duration_seconds",
    "API request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

api_requests_in_progress = Gauge(
    "api_requests_in_progress",
    "Number of API requests currently being processed",
    ["method", "endpoint"],
)


# ============================================================================
# Admission Metrics
# ============================================================================

admission_decisions_total = Counter(
    "admission_decisions_total",
    "Upload admission decisions",
    ["outcome"],  # outcome: admitted, quota_exceeded, no_backend_available
)

dedup_candidates_total = Counter(
    "dedup_candidates_total",
    "Admissions that found an existing object with the same content hash",
)


# ============================================================================
# Quota Metrics
# ============================================================================

quota_used_bytes = Gauge(
    "quota_used_bytes",
    "Storage bytes counted against an owner's quota",
    ["owner_id"],
)

quota_limit_bytes = Gauge(
    "quota_limit_bytes",
    "Storage quota allocated to an owner",
    ["owner_id"],
)

quota_warnings_total = Counter(
    "quota_warnings_total",
    "Number of quota-warning events emitted",
)


# ============================================================================
# Storage Backend Metrics
# ============================================================================

backend_healthy = Gauge(
    "storage_backend_healthy",
    "1 if the backend is reported healthy, 0 otherwise",
    ["backend_id", "kind"],
)

backend_probe_duration_seconds = Histogram(
    "storage_backend_probe_duration_seconds",
    "Duration of backend health probes",
    ["kind"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10],
)

backend_probes_total = Counter(
    "storage_backend_probes_total",
    "Backend health probes by outcome",
    ["kind", "outcome"],  # outcome: success, failure, timeout
)

backend_health_transitions_total = Counter(
    "storage_backend_health_transitions_total",
    "Backend health state transitions",
    ["to_state"],
)


# ============================================================================
# Folder Tree Metrics
# ============================================================================

folder_cascade_size = Histogram(
    "folder_cascade_size",
    "Entities touched by one cascading folder operation",
    ["operation"],  # operation: soft_delete, path_rewrite
    buckets=[1, 2, 5, 10, 25, 50, 100, 250, 500, 1000],
)


# ============================================================================
# System Metrics (Application Level)
# ============================================================================

app_info = Gauge(
    "app_info",
    "Application information",
    ["version", "environment"],
)

app_uptime_seconds = Gauge(
    "app_uptime_seconds",
    "Application uptime in seconds",
)


# ============================================================================
# Helper Functions
# ============================================================================

def record_api_request(method: str, endpoint: str, status_code: int, duration: float):
    """Record API request metrics."""
    api_requests_total.labels(method=method, endpoint=endpoint, status=status_code).inc()
    api_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration)


def record_admission(outcome: str, dedup_candidate: bool = False):
    """Record an admission decision."""
    admission_decisions_total.labels(outcome=outcome).inc()
    if dedup_candidate:
        dedup_candidates_total.inc()


def update_quota_metrics(owner_id: str, used_bytes: int, limit_bytes: int):
    """Update quota usage metrics."""
    quota_used_bytes.labels(owner_id=owner_id).set(used_bytes)
    quota_limit_bytes.labels(owner_id=owner_id).set(limit_bytes)


def record_probe(kind: str, outcome: str, duration_seconds: float):
    """Record a backend health probe."""
    backend_probes_total.labels(kind=kind, outcome=outcome).inc()
    backend_probe_duration_seconds.labels(kind=kind).observe(duration_seconds)


def update_backend_health(backend_id: str, kind: str, healthy: bool):
    """Update the backend health gauge."""
    backend_healthy.labels(backend_id=backend_id, kind=kind).set(1 if healthy else 0)


def record_health_transition(to_state: str):
    """Record a backend health state transition."""
    backend_health_transitions_total.labels(to_state=to_state).inc()


def record_folder_cascade(operation: str, size: int):
    """Record how many entities a cascading folder operation touched."""
    folder_cascade_size.labels(operation=operation).observe(size)
