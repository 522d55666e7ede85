"""Prometheus metrics for dead-letter monitoring.

This module provides Prometheus metrics for observing failure handling:
- Retry decisions by queue and failure kind
- Retry delay distribution
- Dead-letter routing counts and publish failures
- Reprocess/purge operations
- Dead-letter queue depth (refreshed by statistics calls)

All metrics use the shared REGISTRY from infra/metrics/prometheus.py.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

from deadletter_service.infra.metrics.prometheus import REGISTRY

# ============================================================================
# Retry Metrics
# ============================================================================

dlq_retry_attempts_total = Counter(
    "messaging_dlq_retry_attempts_total",
    "Total number of scheduled message retries, by source queue and failure kind.",
    ["queue", "failure_kind"],
    registry=REGISTRY,
)

dlq_retry_delay_seconds = Histogram(
    "messaging_dlq_retry_delay_seconds",
    "Distribution of retry delays in seconds.",
    ["queue"],
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
    registry=REGISTRY,
)

# ============================================================================
# Dead-letter Routing Metrics
# ============================================================================

dlq_routed_total = Counter(
    "messaging_dlq_routed_total",
    "Total number of messages written to a dead-letter queue, by failure kind.",
    ["queue", "failure_kind", "backend"],
    registry=REGISTRY,
)

dlq_publish_failures_total = Counter(
    "messaging_dlq_publish_failures_total",
    "Total number of dead-letter writes that failed on the broker.",
    ["queue", "backend"],
    registry=REGISTRY,
)

dlq_attempts_at_routing = Histogram(
    "messaging_dlq_attempts_at_routing",
    "Attempt count reported when a message was dead-lettered.",
    ["queue"],
    buckets=(1, 2, 3, 5, 8, 13, 20),
    registry=REGISTRY,
)

# ============================================================================
# Operations Metrics
# ============================================================================

dlq_operations_total = Counter(
    "messaging_dlq_operations_total",
    "Administrative operations on dead-letter queues. "
    "Outcome is one of: done, not_found, error.",
    ["operation", "outcome"],
    registry=REGISTRY,
)

dlq_queue_depth = Gauge(
    "messaging_dlq_queue_depth",
    "Messages currently in a dead-letter queue, as of the last statistics call.",
    ["queue"],
    registry=REGISTRY,
)

dlq_notifications_total = Counter(
    "messaging_dlq_notifications_total",
    "Admin notifications by channel and outcome (sent, failed, rate_limited).",
    ["channel", "outcome"],
    registry=REGISTRY,
)


# ============================================================================
# Helper Functions
# ============================================================================


def record_retry(queue: str, failure_kind: str, delay_seconds: float) -> None:
    """Record a scheduled retry and its delay."""
    dlq_retry_attempts_total.labels(queue=queue, failure_kind=failure_kind).inc()
    dlq_retry_delay_seconds.labels(queue=queue).observe(delay_seconds)


def record_dead_letter(
    queue: str,
    failure_kind: str,
    backend: str,
    attempt_count: int,
) -> None:
    """Record a message written to a dead-letter queue."""
    dlq_routed_total.labels(queue=queue, failure_kind=failure_kind, backend=backend).inc()
    dlq_attempts_at_routing.labels(queue=queue).observe(attempt_count)


def record_publish_failure(queue: str, backend: str) -> None:
    dlq_publish_failures_total.labels(queue=queue, backend=backend).inc()


def record_operation(operation: str, outcome: str) -> None:
    dlq_operations_total.labels(operation=operation, outcome=outcome).inc()


def record_queue_depth(queue: str, depth: int) -> None:
    dlq_queue_depth.labels(queue=queue).set(depth)


def record_notification(channel: str, outcome: str) -> None:
    dlq_notifications_total.labels(channel=channel, outcome=outcome).inc()


__all__ = [
    "dlq_attempts_at_routing",
    "dlq_notifications_total",
    "dlq_operations_total",
    "dlq_publish_failures_total",
    "dlq_queue_depth",
    "dlq_retry_attempts_total",
    "dlq_retry_delay_seconds",
    "dlq_routed_total",
    "record_dead_letter",
    "record_notification",
    "record_operation",
    "record_publish_failure",
    "record_queue_depth",
    "record_retry",
]
