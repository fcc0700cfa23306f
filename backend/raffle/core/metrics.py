"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Ticket transaction metrics
ticket_transactions = Counter(
    'ticket_transactions_total',
    'Ticket create/update/delete transactions',
    ['operation', 'status']  # create/update/delete, success/warning/error/info
)

ticket_transaction_latency = Histogram(
    'ticket_transaction_latency_seconds',
    'Ticket transaction latency',
    ['operation'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

# Limit counter metrics
limit_mutations = Counter(
    'limit_mutations_total',
    'Sold-count mutations on number limits',
    ['operation', 'path', 'result']  # increment/decrement, rpc/conditional/direct, ok/contention/error
)

compensations = Counter(
    'limit_compensations_total',
    'Compensating decrements issued after a failed ticket transaction',
    ['result']  # ok, failed
)

availability_checks = Counter(
    'availability_checks_total',
    'Availability checks',
    ['result']  # available, unavailable, unconstrained, cancelled, invalid, error
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set/invalidate, hit/miss/error
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


def record_ticket_transaction(operation: str, status: str):
    """Record a finished ticket transaction. Status: success, warning, error, info"""
    ticket_transactions.labels(operation=operation, status=status).inc()


def record_limit_mutation(operation: str, path: str, result: str):
    """Record a counter mutation attempt. Result: ok, contention, error"""
    limit_mutations.labels(operation=operation, path=path, result=result).inc()


def record_compensation(ok: bool):
    compensations.labels(result="ok" if ok else "failed").inc()


def record_availability(result: str):
    availability_checks.labels(result=result).inc()


def record_cache_operation(operation: str, result: str):
    cache_operations.labels(operation=operation, result=result).inc()
