"""
OpenTelemetry wiring.

The library only talks to the OpenTelemetry API, which is a no-op until a
provider is installed. setup_opentelemetry() installs the SDK provider for the
command line driver.
"""

from opentelemetry import metrics, trace
from opentelemetry.instrumentation.requests import RequestsInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
import structlog

from app_attest.config import Settings

logger = structlog.get_logger(__name__)

SERVICE_NAME = "app-attest-client"

tracer = trace.get_tracer("app_attest")
meter = metrics.get_meter("app_attest")

operation_counter = meter.create_counter(
    name="app_attest_operations_total",
    description="Total number of enroll/assert/clear operations started",
)

error_counter = meter.create_counter(
    name="app_attest_errors_total",
    description="Total number of failed attestation operations",
)


def setup_opentelemetry(settings: Settings) -> bool:
    """
    Setup OpenTelemetry tracing and requests instrumentation.

    Returns:
        True if the SDK provider was installed
    """
    if not settings.otel_enabled:
        logger.debug("OpenTelemetry disabled")
        return False

    try:
        trace_provider = TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))

        if settings.otel_endpoint:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

            otlp_exporter = OTLPSpanExporter(endpoint=settings.otel_endpoint)
            trace_provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

        trace.set_tracer_provider(trace_provider)
        RequestsInstrumentor().instrument()

        logger.info("OpenTelemetry setup completed", otel_endpoint=settings.otel_endpoint)
        return True

    except Exception as e:
        logger.error("Failed to setup OpenTelemetry", error=str(e))
        return False
