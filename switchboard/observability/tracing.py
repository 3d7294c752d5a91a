"""OpenTelemetry tracing for runs, tool calls and handoffs."""

import logging
import sys
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

logger = logging.getLogger(__name__)

TRACER_NAME = "switchboard"

_provider: Optional[TracerProvider] = None


def configure_tracing(disabled: bool = True, service_name: str = TRACER_NAME) -> Optional[TracerProvider]:
    """Install a tracer provider that exports spans to stderr.

    Does nothing when ``disabled``. Safe to call more than once.
    """
    global _provider
    if disabled or _provider is not None:
        return _provider

    resource = Resource.create({SERVICE_NAME: service_name})
    _provider = TracerProvider(resource=resource)
    _provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter(out=sys.stderr)))
    trace.set_tracer_provider(_provider)
    logger.debug("Tracing enabled for service %s", service_name)
    return _provider


def get_tracer(disabled: bool = False) -> trace.Tracer:
    if disabled:
        return trace.NoOpTracer()
    return trace.get_tracer(TRACER_NAME)


def shutdown_tracing() -> None:
    """Flush and drop the provider installed by ``configure_tracing``."""
    global _provider
    if _provider is not None:
        _provider.shutdown()
        _provider = None
