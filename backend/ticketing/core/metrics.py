"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Reservation metrics
transaction_attempts = Counter(
    'transaction_attempts_total',
    'Total registration (transaction creation) attempts',
    ['outcome']  # created, insufficient_seats, already_registered, not_found, invalid_promotion, conflict
)

reservation_latency = Histogram(
    'reservation_latency_seconds',
    'Latency of the reserve-seats/points/insert unit',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

# Lifecycle metrics
transaction_transitions = Counter(
    'transaction_transitions_total',
    'Lifecycle transitions applied',
    ['status', 'trigger']  # status: target status; trigger: user, organizer, scheduler
)

ledger_conflicts = Counter(
    'ledger_conflicts_total',
    'Conditional ledger writes that lost the race',
    ['resource']  # seats, points, promotion
)

# Scheduler metrics
sweep_runs = Counter(
    'sweep_runs_total',
    'Scheduled sweep executions',
    ['job', 'result']  # result: ok, error, skipped
)

sweep_rows_processed = Counter(
    'sweep_rows_processed_total',
    'Rows successfully processed by scheduled sweeps',
    ['job']
)

sweep_row_failures = Counter(
    'sweep_row_failures_total',
    'Rows that failed inside a scheduled sweep',
    ['job']
)

sweep_duration = Histogram(
    'sweep_duration_seconds',
    'Scheduled sweep duration',
    ['job'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 120.0]
)

redis_lock_errors = Counter(
    'redis_lock_errors_total',
    'Redis errors while acquiring or releasing sweep locks'
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_transaction_attempt(outcome: str):
    """Record a create_transaction outcome."""
    transaction_attempts.labels(outcome=outcome).inc()


def record_transition(status: str, trigger: str):
    transaction_transitions.labels(status=status, trigger=trigger).inc()


def record_ledger_conflict(resource: str):
    ledger_conflicts.labels(resource=resource).inc()


def record_sweep_run(job: str, result: str):
    """Record one sweep execution. Result: ok, error, skipped"""
    sweep_runs.labels(job=job, result=result).inc()


def record_sweep_rows(job: str, processed: int, failed: int = 0):
    if processed:
        sweep_rows_processed.labels(job=job).inc(processed)
    if failed:
        sweep_row_failures.labels(job=job).inc(failed)
