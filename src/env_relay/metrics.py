"""
Prometheus metrics for the env relay application.

This module defines the metrics collected while receiving webhooks, syncing
files into Azure DevOps secure files and triggering pipelines.
"""

from prometheus_client import Counter, Histogram, Gauge
import time


# Webhook reception metrics
webhooks_received_total = Counter(
    "env_relay_webhooks_received_total",
    "Total number of authenticated webhooks received",
    ["event_type"],  # event_type = push|ping|etc
)

webhook_rejections_total = Counter(
    "env_relay_webhook_rejections_total",
    "Total number of webhooks rejected before dispatch",
    ["reason"],  # reason = unauthorized|malformed
)

# Per-file sync metrics
files_processed_total = Counter(
    "env_relay_files_processed_total",
    "Total number of changed files processed",
    ["project", "outcome"],  # outcome = synced|triggered|failed
)

stage_duration_seconds = Histogram(
    "env_relay_stage_duration_seconds",
    "Time spent in each file sync stage",
    ["stage"],  # stage = fetch|replace|match|grant|trigger
)

stage_errors_total = Counter(
    "env_relay_stage_errors_total",
    "Total number of file sync stage errors",
    ["stage", "error_type"],
)

pipelines_triggered_total = Counter(
    "env_relay_pipelines_triggered_total",
    "Total number of Azure DevOps pipeline runs started",
    ["project"],
)

# Azure DevOps API interaction metrics
azure_api_calls_total = Counter(
    "env_relay_azure_api_calls_total",
    "Total number of Azure DevOps API calls",
    ["method", "status_code"],
)

# Health check metrics
health_check_status = Gauge(
    "env_relay_health_check_status",
    "Health check status (1 = healthy, 0 = unhealthy)",
    ["service"],  # service = github|azure
)


class MetricsContext:
    """Context manager for timing operations and handling errors with metrics."""

    def __init__(self, histogram, error_counter, labels=None, error_labels=None):
        self.histogram = histogram
        self.error_counter = error_counter
        self.labels = labels or []
        self.error_labels = error_labels or []
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            duration = time.time() - self.start_time
            self.histogram.labels(*self.labels).observe(duration)

        if exc_type is not None:
            error_type = exc_type.__name__
            self.error_counter.labels(*self.error_labels, error_type).inc()

        return False  # Don't suppress exceptions


def track_stage(stage: str):
    """Context manager for tracking file sync stage metrics."""
    return MetricsContext(
        stage_duration_seconds,
        stage_errors_total,
        labels=[stage],
        error_labels=[stage],
    )
