"""OpenTelemetry tracing and metrics for the service."""

import logging
import time

from fastapi import Request
from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from .config import Config

logger = logging.getLogger(__name__)

TRACER_NAME = "car_rental"

_providers_installed = False


def setup_telemetry(config: Config):
    """Install the global tracer and meter providers once per process."""
    global _providers_installed
    if _providers_installed:
        return
    resource = Resource.create({
        "service.name": config.SERVICE_NAME,
        "service.version": config.SERVICE_VERSION,
    })

    trace_provider = TracerProvider(resource=resource)
    metric_readers = []
    if config.TELEMETRY_CONSOLE:
        trace_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        metric_readers.append(
            PeriodicExportingMetricReader(ConsoleMetricExporter(), export_interval_millis=60000)
        )
    trace.set_tracer_provider(trace_provider)
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=metric_readers))
    _providers_installed = True
    logger.info(f"Telemetry initialised (console export: {config.TELEMETRY_CONSOLE})")


# Proxies resolve against whichever providers are installed.
tracer = trace.get_tracer(TRACER_NAME)
meter = metrics.get_meter(TRACER_NAME)

request_counter = meter.create_counter("carrental_requests_total", description="Total requests", unit="1")
rental_counter = meter.create_counter("carrental_bookings_total", description="Total rentals", unit="1")
latency_histogram = meter.create_histogram("carrental_request_duration_ms", description="Request duration", unit="ms")


async def metrics_middleware(request: Request, call_next):
    """Count requests and record their latency."""
    start_time = time.time()
    response = await call_next(request)
    duration_ms = (time.time() - start_time) * 1000

    request_counter.add(1, {"endpoint": request.url.path, "method": request.method})
    latency_histogram.record(duration_ms, {"endpoint": request.url.path})

    return response
