"""OpenTelemetry tracing configuration for agentgate.

This module sets up distributed tracing with support for:
- AWS X-Ray integration via OTLP exporter
- Automatic httpx instrumentation for outbound HTTP calls
- Custom spans for identity resolution, payment gating and sessions
"""

import asyncio
import os
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Iterator, TypeVar, ParamSpec

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.propagators.aws import AwsXRayPropagator
from opentelemetry.sdk.extension.aws.trace import AwsXRayIdGenerator
from opentelemetry.propagate import set_global_textmap
from opentelemetry.trace import Status, StatusCode

# Type variables for decorator
P = ParamSpec("P")
T = TypeVar("T")

# Global tracer instance
_tracer: trace.Tracer | None = None
_initialized = False


def init_tracing(
    service_name: str = "agentgate",
    otlp_endpoint: str | None = None,
    enable_console_export: bool = False,
) -> trace.Tracer:
    """Initialize OpenTelemetry tracing.

    Args:
        service_name: Name of the service for tracing
        otlp_endpoint: OTLP collector endpoint (e.g., "http://localhost:4317")
                      If None, uses OTEL_EXPORTER_OTLP_ENDPOINT env var
        enable_console_export: If True, also export spans to console (for debugging)

    Returns:
        Configured tracer instance
    """
    global _tracer, _initialized

    if _initialized and _tracer is not None:
        return _tracer

    resource = Resource.create({
        SERVICE_NAME: service_name,
        "service.version": "0.1.0",
        "deployment.environment": os.getenv("ENVIRONMENT", "development"),
    })

    provider = TracerProvider(
        resource=resource,
        id_generator=AwsXRayIdGenerator(),
    )

    set_global_textmap(AwsXRayPropagator())

    endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint:
        otlp_exporter = OTLPSpanExporter(endpoint=endpoint, insecure=True)
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

    if enable_console_export or os.getenv("OTEL_CONSOLE_EXPORT", "").lower() == "true":
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)

    _tracer = trace.get_tracer(service_name)
    _initialized = True

    _instrument_httpx()

    return _tracer


def _instrument_httpx() -> None:
    """Instrument httpx for automatic HTTP request tracing."""
    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

    HTTPXClientInstrumentor().instrument()


def get_tracer() -> trace.Tracer:
    """Get the configured tracer instance.

    Returns:
        Tracer instance (initializes with defaults if not already initialized)
    """
    if _tracer is None:
        return init_tracing()
    return _tracer


@contextmanager
def _operation_span(span_name: str, attributes: dict[str, Any] | None) -> Iterator[trace.Span]:
    """Span that records the outcome of one traced call."""
    with get_tracer().start_as_current_span(
        span_name, attributes=attributes, record_exception=False, set_status_on_exception=False
    ) as span:
        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise
        span.set_status(Status(StatusCode.OK))


def traced(
    name: str | None = None,
    attributes: dict[str, Any] | None = None,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Wrap a function, sync or async, in a span named ``name``.

    Exceptions mark the span as failed and are re-raised.
    """
    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        span_name = name or func.__name__

        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
                with _operation_span(span_name, attributes):
                    return await func(*args, **kwargs)  # type: ignore

            return async_wrapper  # type: ignore

        @wraps(func)
        def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            with _operation_span(span_name, attributes):
                return func(*args, **kwargs)

        return sync_wrapper

    return decorator


def add_payment_span_attributes(
    span: trace.Span,
    amount: str | None = None,
    network: str | None = None,
    recipient: str | None = None,
    resource: str | None = None,
    status: str | None = None,
) -> None:
    """Add payment-specific attributes to a span.

    Args:
        span: The span to add attributes to
        amount: Payment amount in base units
        network: Network in CAIP-2 format
        recipient: Recipient address
        resource: Resource the payment is for
        status: Payment status
    """
    if amount:
        span.set_attribute("payment.amount", amount)
    if network:
        span.set_attribute("payment.network", network)
    if recipient:
        span.set_attribute("payment.recipient", recipient)
    if resource:
        span.set_attribute("payment.resource", resource)
    if status:
        span.set_attribute("payment.status", status)


def add_identity_span_attributes(
    span: trace.Span,
    reference: str | None = None,
    chain_id: int | None = None,
    local_id: int | None = None,
) -> None:
    """Add identity-specific attributes to a span."""
    if reference:
        span.set_attribute("identity.reference", reference)
    if chain_id is not None:
        span.set_attribute("identity.chain_id", chain_id)
    if local_id is not None:
        span.set_attribute("identity.local_id", local_id)
