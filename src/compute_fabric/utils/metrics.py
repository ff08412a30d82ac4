"""Prometheus metrics export utilities.

Collectors for scheduling and settlement activity plus API latency, all on the
default registry so ``/metrics`` exposes them together.
"""

from __future__ import annotations

from typing import Tuple

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# --- Scheduling Metrics ---

JOBS_SUBMITTED_TOTAL = Counter(
    "fabric_jobs_submitted_total",
    "Jobs accepted into the queue",
)

JOBS_ASSIGNED_TOTAL = Counter(
    "fabric_jobs_assigned_total",
    "Jobs handed to a provider",
    ["source"],  # source: tick, pull
)

JOBS_REQUEUED_TOTAL = Counter(
    "fabric_jobs_requeued_total",
    "Assigned jobs returned to the queue after a failed hand-off",
)

JOBS_FINISHED_TOTAL = Counter(
    "fabric_jobs_finished_total",
    "Jobs reaching a terminal state",
    ["status"],
)

JOB_QUEUE_DEPTH = Gauge(
    "fabric_job_queue_depth",
    "Number of queued jobs observed at the last tick",
)

TICK_DURATION = Histogram(
    "fabric_scheduler_tick_seconds",
    "Duration of one matching pass",
)

# --- Settlement Metrics ---

PAYMENTS_TOTAL = Counter(
    "fabric_payments_total",
    "Charge attempts by outcome",
    ["status", "mode"],  # mode: live, simulated
)

CHARGED_AMOUNT = Counter(
    "fabric_charged_amount",
    "Accumulated amount of successful charges",
)

# --- API Metrics ---

API_REQUEST_LATENCY = Histogram(
    "fabric_api_request_latency_seconds",
    "API request latency in seconds",
    ["method", "status_code"],
)


def render_latest() -> Tuple[bytes, str]:
    """Return the exposition payload and its content type."""
    return generate_latest(), CONTENT_TYPE_LATEST


__all__ = [
    "API_REQUEST_LATENCY",
    "CHARGED_AMOUNT",
    "JOBS_ASSIGNED_TOTAL",
    "JOBS_FINISHED_TOTAL",
    "JOBS_REQUEUED_TOTAL",
    "JOBS_SUBMITTED_TOTAL",
    "JOB_QUEUE_DEPTH",
    "PAYMENTS_TOTAL",
    "TICK_DURATION",
    "render_latest",
]
