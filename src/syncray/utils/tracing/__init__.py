"""
Distributed tracing using OpenTelemetry.

Spans cover table reconciliation, duplicate analysis, change application
and per-table orchestration. Until ``initialize_tracing`` is called the
global no-op provider is used, so instrumented code costs nothing.
"""

from .context import add_span_event, trace_operation
from .tracer import get_tracer, initialize_tracing, shutdown_tracing

__all__ = [
    "initialize_tracing",
    "get_tracer",
    "shutdown_tracing",
    "trace_operation",
    "add_span_event",
]
