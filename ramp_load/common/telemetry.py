"""
OpenTelemetry export of live load-test metrics.

While a run is in progress the engine reports request counts, request latency
and the number of active virtual users to an OpenTelemetry Collector over OTLP
gRPC. Every record_* helper is a no-op until setup_telemetry() has been called,
so the engine can call them unconditionally.
"""

import os
from typing import Dict, Optional

from opentelemetry import trace, metrics
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.metrics.view import View, ExplicitBucketHistogramAggregation
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.resources import Resource

from ramp_load.common.logger import get_logger

logger = get_logger(__name__)

DEFAULT_OTLP_ENDPOINT = "http://localhost:4317"
DEFAULT_SAMPLE_RATE = 0.1
EXPORT_INTERVAL_MS = 5000
# Request latency histogram buckets, in milliseconds
LATENCY_BUCKETS_MS = (5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000)

_tracer_provider: Optional[TracerProvider] = None
_tracer: Optional[trace.Tracer] = None
_meter_provider: Optional[MeterProvider] = None

# Instruments keyed by metric name; empty until setup_telemetry()
_instruments: Dict[str, object] = {}


def _get_trace_sample_rate() -> float:
    """Trace sampling ratio from OTEL_SAMPLE_RATE, clamped to [0, 1]."""
    raw_value = os.getenv("OTEL_SAMPLE_RATE", str(DEFAULT_SAMPLE_RATE))
    try:
        rate = float(raw_value)
    except ValueError:
        logger.warning(f"Ignoring OTEL_SAMPLE_RATE='{raw_value}', using {DEFAULT_SAMPLE_RATE}")
        return DEFAULT_SAMPLE_RATE

    if not 0.0 <= rate <= 1.0:
        logger.warning(f"OTEL_SAMPLE_RATE={rate} is outside [0, 1], clamping")
        rate = max(0.0, min(1.0, rate))
    return rate


def _build_tracer_provider(resource: Resource, endpoint: str, sample_rate: float) -> TracerProvider:
    provider = TracerProvider(resource=resource, sampler=TraceIdRatioBased(sample_rate))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True)))
    return provider


def _build_meter_provider(resource: Resource, endpoint: str) -> MeterProvider:
    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=endpoint, insecure=True),
        export_interval_millis=EXPORT_INTERVAL_MS,
    )
    latency_view = View(
        instrument_name="http_req_duration",
        aggregation=ExplicitBucketHistogramAggregation(boundaries=LATENCY_BUCKETS_MS),
    )
    return MeterProvider(resource=resource, metric_readers=[reader], views=[latency_view])


def _create_instruments(meter: metrics.Meter) -> Dict[str, object]:
    return {
        "http_reqs": meter.create_counter(
            name="http_reqs",
            description="HTTP requests issued by virtual users",
            unit="1",
        ),
        "http_req_failed": meter.create_counter(
            name="http_req_failed",
            description="Requests that hit a network error or returned a status outside 2xx/3xx",
            unit="1",
        ),
        "http_req_duration": meter.create_histogram(
            name="http_req_duration",
            description="Request latency",
            unit="ms",
        ),
        "vus": meter.create_up_down_counter(
            name="vus",
            description="Active virtual users",
            unit="1",
        ),
    }


def setup_telemetry(service_name: str, otlp_endpoint: str = DEFAULT_OTLP_ENDPOINT) -> trace.Tracer:
    """
    Start exporting traces and metrics over OTLP gRPC.

    ``OTEL_EXPORTER_OTLP_ENDPOINT`` overrides ``otlp_endpoint`` when set.

    Args:
        service_name: Reported as ``service.name`` (e.g. "ramp-load").
        otlp_endpoint: Collector endpoint.

    Returns:
        The run tracer, or a NoOpTracer if the providers could not be built.
    """
    global _tracer_provider, _tracer, _meter_provider, _instruments

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or otlp_endpoint
    try:
        resource = Resource.create({"service.name": service_name, "service.version": "0.1.0"})
        sample_rate = _get_trace_sample_rate()

        _tracer_provider = _build_tracer_provider(resource, endpoint, sample_rate)
        trace.set_tracer_provider(_tracer_provider)
        _tracer = _tracer_provider.get_tracer(__name__)

        _meter_provider = _build_meter_provider(resource, endpoint)
        metrics.set_meter_provider(_meter_provider)
        _instruments = _create_instruments(_meter_provider.get_meter(__name__))
    except Exception as e:
        logger.error(f"Telemetry disabled, setup failed: {e}", exc_info=True)
        return trace.NoOpTracer()

    logger.info(f"Exporting telemetry for '{service_name}' to {endpoint} (trace sample rate {sample_rate})")
    return _tracer


def shutdown_telemetry() -> None:
    """Flush pending telemetry and stop the exporters."""
    global _tracer_provider, _tracer, _meter_provider, _instruments

    _instruments = {}
    if _meter_provider is not None:
        _meter_provider.shutdown()
    if _tracer_provider is not None:
        _tracer_provider.shutdown()
    _tracer_provider = None
    _tracer = None
    _meter_provider = None


def get_tracer() -> trace.Tracer:
    """Tracer for run spans; the global (possibly no-op) tracer before setup."""
    return _tracer if _tracer is not None else trace.get_tracer(__name__)


def record_request(status_code: int, network_error: bool, latency_ms: float, failed: bool) -> None:
    """
    Record one completed request.

    Args:
        status_code: HTTP status (0 for network errors).
        network_error: Whether the request failed before a response arrived.
        latency_ms: Request latency in milliseconds.
        failed: Whether the request counts towards http_req_failed.
    """
    if not _instruments:
        return
    attrs = {"status": str(status_code), "network_error": network_error}
    _instruments["http_reqs"].add(1, attrs)
    if failed:
        _instruments["http_req_failed"].add(1, attrs)
    _instruments["http_req_duration"].record(latency_ms, attrs)


def record_vu_change(delta: int) -> None:
    """Add ``delta`` (negative on ramp-down) to the active VU gauge."""
    if not _instruments:
        return
    _instruments["vus"].add(delta)
