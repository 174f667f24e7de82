"""OpenTelemetry initialization for taskloop.

Spans are created throughout the package with ``trace.get_tracer(__name__)``
and are no-ops until init_telemetry() installs a tracer provider.
"""

import logging
import os
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor, SpanExporter

from .. import __version__

_provider: Optional[TracerProvider] = None


def init_telemetry(
    service_name: Optional[str] = None,
    otlp_endpoint: Optional[str] = None,
    exporter: Optional[SpanExporter] = None,
) -> TracerProvider:
    """Install a global tracer provider.

    Args:
        service_name: Service name for traces (default: OTEL_SERVICE_NAME or "taskloop")
        otlp_endpoint: OTLP collector endpoint (default: OTEL_EXPORTER_OTLP_ENDPOINT
            or http://localhost:4317)
        exporter: Export spans here synchronously instead of batching to OTLP

    Returns:
        The active TracerProvider (the existing one if already initialized)
    """
    global _provider
    if _provider is not None:
        return _provider

    service_name = service_name or os.getenv("OTEL_SERVICE_NAME", "taskloop")

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": __version__,
            "deployment.environment": os.getenv("DEPLOYMENT_ENV", "development"),
        }
    )
    provider = TracerProvider(resource=resource)

    if exporter is not None:
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        target = type(exporter).__name__
    else:
        otlp_endpoint = otlp_endpoint or os.getenv(
            "OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317"
        )
        # Short schedule delay so turn spans show up while a session is running
        provider.add_span_processor(
            BatchSpanProcessor(
                OTLPSpanExporter(endpoint=otlp_endpoint, insecure=True),
                max_queue_size=2048,
                schedule_delay_millis=1000,
                max_export_batch_size=512,
            )
        )
        target = otlp_endpoint

    trace.set_tracer_provider(provider)
    _provider = provider
    logging.info("[taskloop.tracing] OpenTelemetry initialized: service=%s, export=%s", service_name, target)
    return provider


def shutdown_telemetry() -> None:
    """Flush pending spans and shut the provider down."""
    global _provider
    if _provider is None:
        return

    _provider.shutdown()
    _provider = None
    logging.info("[taskloop.tracing] OpenTelemetry shutdown complete")


__all__ = ["init_telemetry", "shutdown_telemetry"]
