"""
Prometheus metrics collection for the integration gateway

This module provides metrics instrumentation for the transformation
engine, the router and the file event source, plus the per-endpoint
operational counters that the connector registry reads back.
"""
import os
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    CollectorRegistry,
    generate_latest,
)

from src.observability.logger import get_logger

logger = get_logger(__name__)


# Global registry for metrics
REGISTRY = CollectorRegistry()


# =======================
# TRANSFORMATION METRICS
# =======================

records_processed_total = Counter(
    name="gateway_records_processed_total",
    documentation="Total number of records seen by the transformation engine",
    labelnames=["source_id", "status"],  # status: received, filtered, transformed, failed
    registry=REGISTRY,
)

processing_duration_seconds = Histogram(
    name="gateway_processing_duration_seconds",
    documentation="Time spent transforming one input payload in seconds",
    labelnames=["source_id"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
    registry=REGISTRY,
)

batches_processed_total = Counter(
    name="gateway_batches_processed_total",
    documentation="Total number of payloads processed by the transformation engine",
    labelnames=["source_id", "status"],  # status: success, failure
    registry=REGISTRY,
)

validation_failures_total = Counter(
    name="gateway_validation_failures_total",
    documentation="Total number of validation rule failures",
    labelnames=["source_id", "rule_type", "field_name"],
    registry=REGISTRY,
)

# =======================
# ROUTING METRICS
# =======================

deliveries_total = Counter(
    name="gateway_deliveries_total",
    documentation="Total number of delivery attempts per target type",
    labelnames=["source_id", "target_type", "status"],  # status: success, failure
    registry=REGISTRY,
)

delivery_duration_seconds = Histogram(
    name="gateway_delivery_duration_seconds",
    documentation="Time spent delivering one record to one target",
    labelnames=["target_type"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0],
    registry=REGISTRY,
)

retries_total = Counter(
    name="gateway_retries_total",
    documentation="Total number of retry attempts",
    labelnames=["source_id", "status"],  # status: scheduled, success, failure
    registry=REGISTRY,
)

dead_letters_total = Counter(
    name="gateway_dead_letters_total",
    documentation="Total number of messages moved to the dead-letter store",
    labelnames=["source_id"],
    registry=REGISTRY,
)

retry_queue_size = Gauge(
    name="gateway_retry_queue_size",
    documentation="Current number of live retry contexts",
    registry=REGISTRY,
)

# =======================
# FILE SOURCE METRICS
# =======================

file_jobs_total = Counter(
    name="gateway_file_jobs_total",
    documentation="Total number of file processing jobs by outcome",
    labelnames=["source_id", "status"],  # status: completed, retried, failed
    registry=REGISTRY,
)

active_file_jobs = Gauge(
    name="gateway_active_file_jobs",
    documentation="Number of file jobs currently processing",
    labelnames=["source_id"],
    registry=REGISTRY,
)

file_bytes_read_total = Counter(
    name="gateway_file_bytes_read_total",
    documentation="Total number of bytes read from watched files",
    labelnames=["source_id"],
    registry=REGISTRY,
)

# =======================
# ERROR METRICS
# =======================

errors_total = Counter(
    name="gateway_errors_total",
    documentation="Total number of errors",
    labelnames=["source_id", "error_type", "component"],
    registry=REGISTRY,
)

events_dropped_total = Counter(
    name="gateway_events_dropped_total",
    documentation="Domain events dropped because the event channel was full",
    labelnames=["event_name"],
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """
    Generate Prometheus metrics in text format

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest(REGISTRY)


def start_metrics_server(port: Optional[int] = None) -> None:
    """
    Start HTTP server for Prometheus metrics

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 8000)
    """
    # Lazy import: the HTTP server binds a port, keep that out of import time
    from prometheus_client import start_http_server

    metrics_port = port or int(os.getenv("METRICS_PORT", "8000"))
    start_http_server(metrics_port, registry=REGISTRY)


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """
    Increment a counter metric

    Args:
        counter: Prometheus Counter metric
        value: Amount to increment (default: 1.0)
        **labels: Label values for the metric
    """
    if value <= 0:
        return
    counter.labels(**labels).inc(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    """Set a gauge metric value"""
    if labels:
        gauge.labels(**labels).set(value)
    else:
        gauge.set(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    """Observe a value in a histogram metric"""
    histogram.labels(**labels).observe(value)


def record_processing_result(
    source_id: str,
    received: int,
    filtered: int,
    transformed: int,
    failed: int,
    duration_seconds: float,
    success: bool,
) -> None:
    """
    Record the counters of one transformation engine call.

    Args:
        source_id: Endpoint that produced the payload
        received: Records decoded from the payload
        filtered: Records dropped by filters
        transformed: Records that passed the transform stage
        failed: Records that failed transform or validation
        duration_seconds: Processing duration in seconds
        success: Whether the call as a whole succeeded
    """
    increment_counter(records_processed_total, received, source_id=source_id, status="received")
    increment_counter(records_processed_total, filtered, source_id=source_id, status="filtered")
    increment_counter(records_processed_total, transformed, source_id=source_id, status="transformed")
    increment_counter(records_processed_total, failed, source_id=source_id, status="failed")
    observe_histogram(processing_duration_seconds, duration_seconds, source_id=source_id)
    increment_counter(
        batches_processed_total, 1,
        source_id=source_id, status="success" if success else "failure",
    )


def record_validation_failure(source_id: str, rule_type: str, field_name: str) -> None:
    """Record a validation failure."""
    increment_counter(validation_failures_total, 1, source_id=source_id, rule_type=rule_type, field_name=field_name)


# =======================
# ENDPOINT METRICS RECORDER
# =======================

@dataclass
class EndpointCounters:
    """Running totals for one integration endpoint."""

    messages_received: int = 0
    messages_processed: int = 0
    messages_failed: int = 0
    bytes_processed: int = 0
    average_processing_time_ms: float = 0.0
    connection_attempts: int = 0
    successful_connections: int = 0
    last_processed_at: datetime | None = None
    last_error_message: str | None = None
    last_error_at: datetime | None = None

    @property
    def error_rate(self) -> float:
        """Failed messages as a percentage of received messages."""
        if self.messages_received == 0:
            return 0.0
        return self.messages_failed / self.messages_received * 100

    def as_dict(self) -> dict:
        return {
            "messages_received": self.messages_received,
            "messages_processed": self.messages_processed,
            "messages_failed": self.messages_failed,
            "bytes_processed": self.bytes_processed,
            "average_processing_time_ms": round(self.average_processing_time_ms, 3),
            "error_rate": round(self.error_rate, 3),
            "connection_attempts": self.connection_attempts,
            "successful_connections": self.successful_connections,
            "last_processed_at": self.last_processed_at.isoformat() if self.last_processed_at else None,
            "last_error_message": self.last_error_message,
        }


class EndpointMetricsRecorder:
    """
    Operational surface consumed by the connector registry.

    Every method is fire-and-forget: failures are logged and swallowed so
    that metrics never break the pipeline. Counter updates happen under a
    lock, so parallel file jobs never lose increments.
    """

    def __init__(self) -> None:
        self._counters: dict[str, EndpointCounters] = {}
        self._lock = threading.Lock()

    def _get(self, endpoint_id: str) -> EndpointCounters:
        counters = self._counters.get(endpoint_id)
        if counters is None:
            counters = self._counters[endpoint_id] = EndpointCounters()
        return counters

    def record_message(self, endpoint_id: str, size: int, duration_ms: float) -> None:
        """Count one successfully processed message."""
        try:
            with self._lock:
                counters = self._get(endpoint_id)
                processed = counters.messages_processed
                counters.messages_received += 1
                counters.messages_processed += 1
                counters.bytes_processed += max(size, 0)
                counters.average_processing_time_ms = (
                    (counters.average_processing_time_ms * processed + duration_ms) / (processed + 1)
                )
                counters.last_processed_at = datetime.now(timezone.utc)
        except Exception as e:  # noqa: BLE001
            logger.error(f"Failed to record message metrics for {endpoint_id}: {e}")

    def record_error(self, endpoint_id: str, message: str, duration_ms: float = 0.0) -> None:
        """Count one failed message and remember the last error."""
        try:
            with self._lock:
                counters = self._get(endpoint_id)
                counters.messages_received += 1
                counters.messages_failed += 1
                counters.last_error_message = message
                counters.last_error_at = datetime.now(timezone.utc)
            increment_counter(errors_total, 1, source_id=endpoint_id, error_type="message", component="endpoint")
        except Exception as e:  # noqa: BLE001
            logger.error(f"Failed to record error metrics for {endpoint_id}: {e}")

    def record_connection_attempt(self, endpoint_id: str, success: bool) -> None:
        """Count one connection attempt."""
        try:
            with self._lock:
                counters = self._get(endpoint_id)
                counters.connection_attempts += 1
                if success:
                    counters.successful_connections += 1
        except Exception as e:  # noqa: BLE001
            logger.error(f"Failed to record connection attempt for {endpoint_id}: {e}")

    def snapshot(self, endpoint_id: str) -> EndpointCounters:
        """Copy of the current counters for one endpoint."""
        with self._lock:
            counters = self._get(endpoint_id)
            return EndpointCounters(**counters.__dict__)
