"""Prometheus metrics instrumentation for the ACM gateway."""

from prometheus_client import Counter, Gauge, Histogram
from prometheus_fastapi_instrumentator import Instrumentator, metrics

# MLLP connections gauge
mllp_connections = Gauge(
    "acm_mllp_connections_active",
    "Number of active MLLP client connections",
)

# Frames received counter
frames_received = Counter(
    "acm_frames_received_total",
    "Total number of complete MLLP frames received",
)

# Message outcome counter
messages_processed = Counter(
    "acm_messages_processed_total",
    "Total number of HL7 messages by processing outcome",
    ["outcome"],
)

# Message processing histogram
message_processing_time = Histogram(
    "acm_message_processing_seconds",
    "Time spent decoding, enriching and persisting one message",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Registry size gauge
codetags_loaded = Gauge(
    "acm_codetags_loaded",
    "Number of code tags in the active in-memory registry index",
)


def setup_metrics(app) -> Instrumentator:
    """Set up Prometheus metrics instrumentation for FastAPI app."""
    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/health", "/health/live", "/health/ready", "/metrics"],
        inprogress_name="http_requests_inprogress",
        inprogress_labels=True,
    )

    instrumentator.add(
        metrics.default(
            metric_namespace="",
            metric_subsystem="",
            latency_highr_buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )
    )

    instrumentator.instrument(app)

    return instrumentator


def expose_metrics(app, instrumentator: Instrumentator) -> None:
    """Expose the /metrics endpoint."""
    instrumentator.expose(app, include_in_schema=False, should_gzip=True)


# Helper functions for updating custom metrics


def increment_mllp_connections() -> None:
    """Increment active MLLP connections count."""
    mllp_connections.inc()


def decrement_mllp_connections() -> None:
    """Decrement active MLLP connections count."""
    mllp_connections.dec()


def record_frame() -> None:
    """Count one complete frame."""
    frames_received.inc()


def observe_message(outcome: str, duration: float) -> None:
    """Record the outcome and duration of one processed message."""
    messages_processed.labels(outcome=outcome).inc()
    message_processing_time.observe(duration)


def set_codetags_loaded(count: int) -> None:
    """Set the size of the active code tag index."""
    codetags_loaded.set(count)
