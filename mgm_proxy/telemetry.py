import logging
from typing import Dict, Sequence

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import Info
from prometheus_fastapi_instrumentator import Instrumentator

from mgm_proxy.vars import HEALTH_PATH, ProxySettings

logger = logging.getLogger("uvicorn.error")

# Registered once per process; every app built in it reports the same service
app_info = Info("fastapi_app_info", "Application Info")


class StreamingBodySpanFilter(SpanExporter):
    """
    Drop the ASGI ``http.response.body`` spans before export.

    Every relayed chunk of a streamed upstream body produces one of those,
    which buries the ``proxy_request`` span under hundreds of tiny ones.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        kept = [
            span
            for span in spans
            if not (
                span.attributes
                and span.attributes.get("asgi.event.type") == "http.response.body"
            )
        ]
        if not kept:
            return SpanExportResult.SUCCESS
        return self.exporter.export(kept)

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


def parse_otlp_headers(raw: str) -> Dict[str, str]:
    """Parse ``key=value,key2=value2`` into exporter headers, skipping junk."""
    headers: Dict[str, str] = {}
    for entry in raw.split(","):
        key, sep, value = entry.partition("=")
        key = key.strip()
        value = value.strip()
        if sep and key and value:
            headers[key] = value
    return headers


def configure_tracing(app: FastAPI, settings: ProxySettings) -> None:
    provider = trace.get_tracer_provider()
    if not isinstance(provider, TracerProvider):
        provider = TracerProvider(
            resource=Resource.create({"service.name": settings.service_name})
        )
        trace.set_tracer_provider(provider)

        if settings.otlp_endpoint:
            exporter = OTLPSpanExporter(
                endpoint=settings.otlp_endpoint,
                headers=parse_otlp_headers(settings.otlp_headers) or None,
            )
            provider.add_span_processor(
                BatchSpanProcessor(StreamingBodySpanFilter(exporter))
            )
            logger.info(f"Exporting traces to {settings.otlp_endpoint}")

    FastAPIInstrumentor.instrument_app(app, tracer_provider=provider)


def configure_metrics(app: FastAPI, settings: ProxySettings) -> Instrumentator:
    """
    Instrument the app for Prometheus.

    The metrics endpoint is only mounted when a path is configured; otherwise
    that path would be taken away from the upstream.
    """
    instrumentator = Instrumentator(excluded_handlers=[HEALTH_PATH])
    instrumentator.instrument(app)
    if settings.metrics_path:
        instrumentator.expose(
            app, endpoint=settings.metrics_path, include_in_schema=False
        )
    app_info.info({"app_name": settings.service_name})
    return instrumentator
