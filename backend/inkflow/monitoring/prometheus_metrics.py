"""
Prometheus metrics for the InkFlow reservation engine.

Service timings come from ``@BaseService.measure_operation``; domain counters
are bumped by the services that own each event.
"""

from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "inkflow_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "inkflow_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "inkflow_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

bookings_created_total = Counter(
    "inkflow_bookings_created_total",
    "Bookings created",
    ["kind"],
    registry=REGISTRY,
)

booking_transitions_total = Counter(
    "inkflow_booking_transitions_total",
    "Booking lifecycle transition attempts",
    ["to_status", "result"],  # result: applied | <failure kind>
    registry=REGISTRY,
)

payments_settled_total = Counter(
    "inkflow_payments_settled_total",
    "Payments settled",
    ["kind", "method"],
    registry=REGISTRY,
)

webhook_events_total = Counter(
    "inkflow_webhook_events_total",
    "Gateway webhook events by outcome",
    ["event_type", "result"],
    registry=REGISTRY,
)

notifications_total = Counter(
    "inkflow_notifications_total",
    "Transactional notification outcomes",
    ["template", "outcome"],  # sent | retry | failed | skipped
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

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
            operation: Operation/method name (e.g., 'create')
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

    @staticmethod
    def inc_booking_created(kind: str) -> None:
        bookings_created_total.labels(kind=kind).inc()

    @staticmethod
    def inc_booking_transition(to_status: str, result: str) -> None:
        booking_transitions_total.labels(to_status=to_status, result=result).inc()

    @staticmethod
    def inc_payment_settled(kind: str, method: str) -> None:
        payments_settled_total.labels(kind=kind, method=method).inc()

    @staticmethod
    def inc_webhook_event(event_type: str, result: str) -> None:
        webhook_events_total.labels(event_type=event_type, result=result).inc()

    @staticmethod
    def inc_notification(template: str, outcome: str) -> None:
        notifications_total.labels(template=template, outcome=outcome).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Generate Prometheus metrics in exposition format."""
        return cast(bytes, generate_latest(REGISTRY))

    @staticmethod
    def get_content_type() -> str:
        """Get the content type for Prometheus metrics."""
        return cast(str, CONTENT_TYPE_LATEST)


# Singleton instance
prometheus_metrics = PrometheusMetrics()
