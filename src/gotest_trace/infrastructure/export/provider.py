"""OpenTelemetry exporter setup."""

from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from loguru import logger

from gotest_trace.config import Settings
from gotest_trace.domains.tracing.exceptions import ExportError


def create_tracer_provider(settings: Settings) -> TracerProvider:
    """Build a provider batching spans to the configured OTLP/HTTP endpoint.

    The provider is returned rather than installed globally, so a run never
    leaks its exporter into other code in the same process.
    """
    resource = Resource.create({
        SERVICE_NAME: settings.service_name,
        SERVICE_VERSION: settings.app_version,
    })
    provider = TracerProvider(resource=resource)
    exporter = OTLPSpanExporter(
        endpoint=settings.otlp_endpoint,
        headers=settings.otlp_headers or None,
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    logger.debug(f"Exporting spans to {settings.otlp_endpoint}")
    return provider


def flush(provider: TracerProvider, timeout_millis: int) -> None:
    """Block until every reported span has been exported.

    Raises:
        ExportError: if the exporter did not acknowledge in time.
    """
    if not provider.force_flush(timeout_millis=timeout_millis):
        raise ExportError(f"Failed to flush spans within {timeout_millis}ms")
    logger.debug("Spans flushed")
