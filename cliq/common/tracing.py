"""OpenTelemetry setup plus the span wrapper used around each push attempt."""

from contextlib import contextmanager
from urllib.parse import urlsplit

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

from cliq.common.config import settings


tracer = trace.get_tracer("cliq.push")


def setup_tracing(service_name: str, instance_id: str) -> None:
    """Register a tracer provider tagged with this worker's identity.

    An empty OTLP endpoint keeps spans in-process with no exporter attached.
    """

    resource = Resource.create({"service.name": service_name, "service.instance.id": instance_id})
    provider = TracerProvider(resource=resource)
    if settings.otel_exporter_otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)
        provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)


def instrument_app(app: FastAPI) -> None:
    """Attach FastAPI auto-instrumentation for request spans."""

    FastAPIInstrumentor.instrument_app(app)


@contextmanager
def delivery_span(delivery_id: str, notification_id: str, endpoint: str, retries: int):
    """Open one span per delivery attempt; only the push host is recorded."""

    with tracer.start_as_current_span("push.deliver") as span:
        span.set_attribute("push.delivery_id", delivery_id)
        span.set_attribute("push.notification_id", notification_id)
        span.set_attribute("push.host", urlsplit(endpoint).netloc)
        span.set_attribute("push.retries", retries)
        yield span
