"""
Metrics module for application monitoring.

This module provides Prometheus metrics collection and helper functions.
"""
from cloudnest.metrics.prometheus import (
    # API Metrics
    api_requests_total,
    api_request_duration_seconds,
    api_requests_in_progress,

    # Admission Metrics
    admission_decisions_total,
    dedup_candidates_total,

    # Quota Metrics
    quota_used_bytes,
    quota_limit_bytes,
    quota_warnings_total,

    # Storage Backend Metrics
    backend_healthy,
    backend_probe_duration_seconds,
    backend_probes_total,
    backend_health_transitions_total,

    # Folder Tree Metrics
    folder_cascade_size,

    # System Metrics
    app_info,
    app_uptime_seconds,

    # Helper Functions
    record_api_request,
    record_admission,
    update_quota_metrics,
    record_probe,
    update_backend_health,
    record_health_transition,
    record_folder_cascade,
)

__all__ = [
    # API Metrics
    "api_requests_total",
    "api_request_duration_seconds",
    "api_requests_in_progress",

    # Admission Metrics
    "admission_decisions_total",
    "dedup_candidates_total",

    # Quota Metrics
    "quota_used_bytes",
    "quota_limit_bytes",
    "quota_warnings_total",

    # Storage Backend Metrics
    "backend_healthy",
    "backend_probe_duration_seconds",
    "backend_probes_total",
    "backend_health_transitions_total",

    # Folder Tree Metrics
    "folder_cascade_size",

    # System Metrics
    "app_info",
    "app_uptime_seconds",

    # Helper Functions
    "record_api_request",
    "record_admission",
    "update_quota_metrics",
    "record_probe",
    "update_backend_health",
    "record_health_transition",
    "record_folder_cascade",
]
