"""Prometheus metrics for monitoring"""
from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry
import time
from functools import wraps
from typing import Callable

registry = CollectorRegistry()

request_count = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status'],
    registry=registry
)

request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=registry
)

dispense_outcomes = Counter(
    'dispense_outcomes_total',
    'Dispense requests by outcome',
    ['outcome'],
    registry=registry
)

dispensed_liters = Counter(
    'dispensed_liters_total',
    'Liters of fuel recorded as dispensed',
    ['fuel_type'],
    registry=registry
)

ledger_operations = Counter(
    'ledger_operations_total',
    'Quota ledger operations',
    ['operation', 'status'],
    registry=registry
)

ledger_duration = Histogram(
    'ledger_operation_duration_seconds',
    'Quota ledger operation duration in seconds',
    ['operation'],
    registry=registry
)

ledger_cas_retries = Counter(
    'ledger_cas_retries_total',
    'Version compare-and-swap misses that were retried',
    registry=registry
)

cache_hits = Counter(
    'cache_hits_total',
    'Total cache hits',
    ['cache'],
    registry=registry
)

cache_misses = Counter(
    'cache_misses_total',
    'Total cache misses',
    ['cache'],
    registry=registry
)

notification_deliveries = Counter(
    'notification_deliveries_total',
    'Transaction notification delivery attempts',
    ['status'],
    registry=registry
)

notification_duration = Histogram(
    'notification_delivery_duration_seconds',
    'Notification delivery duration in seconds',
    ['status'],
    registry=registry
)

analytics_transactions = Gauge(
    'analytics_transactions_indexed',
    'Transactions currently folded into the analytics aggregates',
    registry=registry
)

redis_connected = Gauge(
    'redis_connected',
    'Redis connection status (1=connected, 0=disconnected)',
    registry=registry
)

db_connected = Gauge(
    'db_connected',
    'Database connection status (1=connected, 0=disconnected)',
    registry=registry
)


def track_ledger_operation(operation: str):
    """Decorator to track quota ledger operation metrics"""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                ledger_operations.labels(operation=operation, status=type(e).__name__).inc()
                raise
            finally:
                ledger_duration.labels(operation=operation).observe(time.time() - start_time)
            ledger_operations.labels(operation=operation, status='success').inc()
            return result
        return wrapper
    return decorator


def get_metrics_text() -> str:
    """Generate Prometheus metrics in text format"""
    from prometheus_client import generate_latest
    return generate_latest(registry).decode('utf-8')
