"""OpenTelemetry wiring: OTLP export, FastAPI spans, and provider-call spans."""

from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Status, StatusCode

from expresspay.common.config import settings


def setup_tracing(service_name: str) -> None:
    """Register an OTLP-exporting tracer provider unless tracing is switched off."""

    if not settings.tracing_enabled:
        return
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    trace.set_tracer_provider(provider)


def instrument_app(app: FastAPI) -> None:
    if settings.tracing_enabled:
        FastAPIInstrumentor.instrument_app(app)


def get_tracer() -> trace.Tracer:
    return trace.get_tracer("expresspay.nvp")


@contextmanager
def provider_span(method: str, endpoint_url: str) -> Iterator[Span]:
    """Client span around one NVP operation; marked as error if the block raises."""

    with get_tracer().start_as_current_span(
        f"nvp {method}",
        kind=trace.SpanKind.CLIENT,
        attributes={"nvp.method": method, "server.address": endpoint_url},
        record_exception=True,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as exc:
            span.set_status(Status(StatusCode.ERROR, type(exc).__name__))
            raise
