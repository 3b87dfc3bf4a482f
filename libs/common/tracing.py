"""Distributed tracing configuration for the search service.

Wraps OpenTelemetry setup for an OTLP collector. Also provides a small
context manager for scoped spans used around searches and candidate-source
calls.

Spans are created through the global tracer provider, so when tracing is not
configured they are cheap no-ops.
"""

import os
from typing import Optional
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.resources import Resource
from opentelemetry.trace import Status, StatusCode
import structlog

logger = structlog.get_logger("tracing")


def configure_tracing(
    service_name: str,
    otlp_endpoint: str = "http://localhost:4318/v1/traces"
) -> Optional[trace.Tracer]:
    """Configure distributed tracing for a service.

    Parameters
    - service_name: Logical service identifier used in trace resources
    - otlp_endpoint: Collector endpoint for exporting spans

    Returns
    - A tracer instance for ad-hoc span creation, or ``None`` on failure
    """

    try:
        tracer_provider = TracerProvider(
            resource=Resource.create({
                "service.name": service_name,
                "service.version": "0.1.0",
                "deployment.environment": os.getenv("SEARCH_ENV", "local")
            })
        )

        span_processor = BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint))
        tracer_provider.add_span_processor(span_processor)

        trace.set_tracer_provider(tracer_provider)
        tracer = trace.get_tracer(service_name)

        logger.info(
            "Distributed tracing configured",
            service_name=service_name,
            otlp_endpoint=otlp_endpoint
        )

        return tracer

    except Exception as e:
        logger.error("Failed to configure tracing", error=str(e))
        return None


def create_span(
    tracer: trace.Tracer,
    operation_name: str,
    **attributes
) -> trace.Span:
    """Create a new span with attributes.

    Use this for fine-grained manual spans when a context manager is not
    suitable.
    """
    span = tracer.start_span(operation_name)

    for key, value in attributes.items():
        span.set_attribute(key, str(value))

    return span


class TracingContext:
    """Context manager for tracing operations.

    Starts a span on entry and ensures it ends, recording success or error.
    """

    def __init__(self, tracer: trace.Tracer, operation_name: str, **attributes):
        self.tracer = tracer
        self.operation_name = operation_name
        self.attributes = attributes
        self.span: Optional[trace.Span] = None
        self._activation = None

    def __enter__(self):
        self.span = create_span(self.tracer, self.operation_name, **self.attributes)
        # Make the span current so nested spans (and tasks created inside) attach to it.
        self._activation = trace.use_span(self.span, end_on_exit=False)
        self._activation.__enter__()
        return self.span

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.span:
            if exc_type is not None:
                self.span.set_status(Status(StatusCode.ERROR, f"{exc_type.__name__}: {exc_val}"))
            else:
                self.span.set_status(Status(StatusCode.OK))

            self._activation.__exit__(None, None, None)
            self.span.end()


class SearchTracer:
    """Search-specific tracing helpers.

    Keeps span names and attributes consistent across the search pipeline.
    """

    def __init__(self, service_name: str):
        self.service_name = service_name
        self.tracer = trace.get_tracer(service_name)

    def trace_search_query(self, query_type: str, limit: int, **attributes):
        """Trace a full search execution."""
        return TracingContext(
            self.tracer,
            "search.query",
            query_type=query_type,
            limit=limit,
            **attributes
        )

    def trace_strategy_fetch(self, strategy: str, limit: int, **attributes):
        """Trace one candidate-source strategy call."""
        return TracingContext(
            self.tracer,
            "search.strategy.fetch",
            strategy=strategy,
            limit=limit,
            **attributes
        )


def get_search_tracer(service_name: str) -> SearchTracer:
    """Get a search-specific tracer for a service."""
    return SearchTracer(service_name)
