"""Observability helpers."""

from .tracing import configure_tracing, get_tracer, shutdown_tracing

__all__ = ["configure_tracing", "get_tracer", "shutdown_tracing"]
