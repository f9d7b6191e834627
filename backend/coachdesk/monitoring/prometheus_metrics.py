"""
Prometheus metrics for the booking core.

Service timings come from the @measure_operation decorator; the domain
counters below track reservation, webhook and slot-lock outcomes.
"""

from threading import Lock
from time import monotonic
from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Custom registry so tests and multiple app instances don't collide with the default one
REGISTRY = CollectorRegistry()

http_request_duration_seconds = Histogram(
    "coachdesk_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

service_operation_duration_seconds = Histogram(
    "coachdesk_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "coachdesk_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "coachdesk_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

reservations_total = Counter(
    "coachdesk_reservations_total",
    "Reservation attempts by outcome",
    ["path", "outcome"],  # path: paid | friend_code; outcome: reserved | conflict | invalid | error
    registry=REGISTRY,
)

payment_webhooks_total = Counter(
    "coachdesk_payment_webhooks_total",
    "Payment provider webhook deliveries by event type and result",
    ["event_type", "result"],
    registry=REGISTRY,
)

slot_lock_total = Counter(
    "coachdesk_slot_lock_total",
    "Slot mutex operations",
    ["action", "result"],
    registry=REGISTRY,
)

notifications_total = Counter(
    "coachdesk_notifications_total",
    "Notification deliveries by event type and status",
    ["event_type", "status"],
    registry=REGISTRY,
)

rate_limit_decisions_total = Counter(
    "coachdesk_rate_limit_decisions_total",
    "Rate limiter decisions by bucket",
    ["bucket", "action"],
    registry=REGISTRY,
)

background_jobs_total = Counter(
    "coachdesk_background_jobs_total",
    "Background job executions by type and result",
    ["type", "result"],  # result: succeeded | retry | dead
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    _cache_lock: Lock = Lock()
    _cache_payload: Optional[bytes] = None
    _cache_ts: Optional[float] = None
    _cache_ttl_seconds: float = 1.0

    @staticmethod
    def record_http_request(method: str, endpoint: str, duration: float, status_code: int) -> None:
        labels = {"method": method, "endpoint": endpoint, "status_code": str(status_code)}
        http_request_duration_seconds.labels(**labels).observe(duration)
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'ReservationService')
            operation: Operation/method name (e.g., 'reserve')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_reservation(path: str, outcome: str) -> None:
        reservations_total.labels(path=path, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_payment_webhook(event_type: str, result: str) -> None:
        payment_webhooks_total.labels(event_type=event_type, result=result).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_slot_lock(action: str, result: str) -> None:
        slot_lock_total.labels(action=action, result=result).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_rate_limit_decision(bucket: str, action: str) -> None:
        rate_limit_decisions_total.labels(bucket=bucket, action=action).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_background_job(job_type: str, result: str) -> None:
        background_jobs_total.labels(type=job_type, result=result).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_notification_outcome(event_type: str, status: str) -> None:
        notifications_total.labels(event_type=event_type, status=status).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def get_metrics() -> bytes:
        """
        Generate Prometheus metrics in exposition format.

        Returns:
            Metrics data in Prometheus text format
        """
        now = monotonic()
        with PrometheusMetrics._cache_lock:
            payload = PrometheusMetrics._cache_payload
            ts = PrometheusMetrics._cache_ts
            if payload is None or ts is None or (now - ts) > PrometheusMetrics._cache_ttl_seconds:
                PrometheusMetrics._cache_payload = cast(bytes, generate_latest(REGISTRY))
                PrometheusMetrics._cache_ts = now
                payload = PrometheusMetrics._cache_payload
        return cast(bytes, payload)

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)

    @staticmethod
    def _invalidate_cache() -> None:
        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_ts = None
            PrometheusMetrics._cache_payload = None


# Singleton instance
prometheus_metrics = PrometheusMetrics()
