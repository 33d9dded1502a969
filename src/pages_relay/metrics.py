"""
Prometheus metrics for the pages relay application.

This module defines the metrics collected throughout the application to
monitor webhook reception, pipeline runs, individual stages, environment
image builds and commit status reporting.
"""

from prometheus_client import Counter, Histogram, Gauge, Info
import time


# Webhook reception metrics
webhooks_received_total = Counter(
    "pages_relay_webhooks_received_total",
    "Total number of webhooks received",
    ["source", "event_type"],  # source = github|gitlab, event_type = push|Push Hook|etc
)

webhooks_ignored_total = Counter(
    "pages_relay_webhooks_ignored_total",
    "Total number of push webhooks that did not trigger a run",
    ["source", "reason"],  # reason = branch|deleted
)

# Pipeline run metrics
pipeline_runs_total = Counter(
    "pages_relay_pipeline_runs_total",
    "Total number of finished pipeline runs",
    ["status", "failure"],  # failure = BuildFailure|... or none
)

pipeline_run_duration_seconds = Histogram(
    "pages_relay_pipeline_run_duration_seconds",
    "Time spent on a whole pipeline run",
)

pipeline_runs_in_progress = Gauge(
    "pages_relay_pipeline_runs_in_progress",
    "Number of pipeline runs currently executing",
)

stage_duration_seconds = Histogram(
    "pages_relay_stage_duration_seconds",
    "Time spent per pipeline stage",
    ["kind"],
)

stage_failures_total = Counter(
    "pages_relay_stage_failures_total",
    "Total number of failed pipeline stages",
    ["kind", "error_type"],
)

# Execution environment metrics
environment_builds_total = Counter(
    "pages_relay_environment_builds_total",
    "Environment image resolutions",
    ["result"],  # result = built|reused|failed
)

# Commit status reporting metrics
status_reports_total = Counter(
    "pages_relay_status_reports_total",
    "Total number of commit statuses posted",
    ["forge", "state"],
)

status_report_errors_total = Counter(
    "pages_relay_status_report_errors_total",
    "Total number of commit status posting errors",
    ["forge", "error_type"],
)

# Health check metrics
health_check_status = Gauge(
    "pages_relay_health_check_status",
    "Health check status (1 = healthy, 0 = unhealthy)",
    ["service"],  # service = workspace|destination|environment
)

# Application info
app_info = Info("pages_relay_app", "Pages relay application information")


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


def track_stage(kind: str):
    """Context manager for tracking stage duration and failures."""
    return MetricsContext(
        stage_duration_seconds,
        stage_failures_total,
        labels=[kind],
        error_labels=[kind],
    )
