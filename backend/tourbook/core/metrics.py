"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_attempts = Counter(
    'tour_booking_attempts_total',
    'Book/unbook attempts by outcome',
    ['operation', 'outcome']  # book/unbook; success, full, already_booked, ...
)

booking_latency = Histogram(
    'tour_booking_latency_seconds',
    'Book/unbook latency including retries',
    ['operation'],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

booking_retries = Counter(
    'tour_booking_retry_attempts_total',
    'Booking transaction retries due to conflicts',
    ['reason']  # stale_version, serialization, deadlock, lock_timeout, locked
)

tour_status_transitions = Counter(
    'tour_status_transitions_total',
    'Tour status changes',
    ['from_status', 'to_status']
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)


def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_booking_attempt(operation: str, outcome: str):
    """Record a book/unbook outcome."""
    booking_attempts.labels(operation=operation, outcome=outcome).inc()


def record_retry(reason: str):
    booking_retries.labels(reason=reason).inc()


def record_status_transition(from_status: str, to_status: str):
    if from_status != to_status:
        tour_status_transitions.labels(from_status=from_status, to_status=to_status).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
