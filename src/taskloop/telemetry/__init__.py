"""Telemetry module - OpenTelemetry tracing for parsing, compaction and turns.

- init_telemetry: Install a tracer provider (OTLP or a given exporter)
- shutdown_telemetry: Flush and shut down
"""

from .tracing import init_telemetry, shutdown_telemetry

__all__ = [
    "init_telemetry",
    "shutdown_telemetry",
]
