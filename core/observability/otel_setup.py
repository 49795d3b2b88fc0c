"""
Solar Monitoring OpenTelemetry Setup

Optional tracing:
- One span per sync invocation (``sync.<provider>``)
- Counters and the final integration status recorded as span attributes
"""
from __future__ import annotations
from typing import Any, Optional
import os


def setup_otel(
    service_name: str = "solar-monitoring",
    endpoint: Optional[str] = None,
):
    """Initialize OpenTelemetry with OTLP exporter."""
    try:
        from opentelemetry import trace
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
        from opentelemetry.sdk.resources import Resource

        resource = Resource.create({"service.name": service_name})
        provider = TracerProvider(resource=resource)

        otlp_endpoint = endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
        if otlp_endpoint:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
            exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
            provider.add_span_processor(BatchSpanProcessor(exporter))

        trace.set_tracer_provider(provider)
        return trace.get_tracer(service_name)

    except ImportError:
        # Tracing is an optional extra
        return None


def create_sync_span(tracer, provider: str, mode: str, tenant_id: str):
    """Create a span for one sync invocation."""
    if tracer is None:
        return None
    return tracer.start_span(
        f"sync.{provider}",
        attributes={
            "sync.provider": provider,
            "sync.mode": mode,
            "sync.tenant_id": tenant_id,
        },
    )


def end_sync_span(span, attributes: dict[str, Any]) -> None:
    if span is None:
        return
    for key, value in attributes.items():
        span.set_attribute(f"sync.{key}", value)
    span.end()
