import base64
import logging
import sys
from typing import Optional

from opentelemetry import trace as trace_api
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from openinference.instrumentation.agno import AgnoInstrumentor

from pricecheck.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "flight-pricecheck-mcp"

_LOGGING_CONFIGURED = False


def configure_logging(level: str = "INFO") -> None:
    """
    Configure process logging once.

    Logs always go to stderr: on the stdio transport stdout carries JSON-RPC
    frames and nothing else.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        stream=sys.stderr,
    )
    _LOGGING_CONFIGURED = True


def langfuse_exporter_options(settings: Settings) -> Optional[dict]:
    """
    OTLP exporter arguments for the Langfuse project in ``settings``.

    Returns None unless the public key, secret key and host are all set. The
    exporter is configured directly, so the process environment is left alone.
    """
    if not (settings.langfuse_public_key and settings.langfuse_secret_key and settings.langfuse_host):
        return None

    credentials = f"{settings.langfuse_public_key}:{settings.langfuse_secret_key}"
    auth = base64.b64encode(credentials.encode()).decode()
    return {
        "endpoint": f"{settings.langfuse_host.rstrip('/')}/api/public/otel/v1/traces",
        "headers": {"Authorization": f"Basic {auth}"},
    }


def setup_tracing(settings: Settings, service_name: str = DEFAULT_SERVICE_NAME) -> bool:
    """Export poll and formatter spans to Langfuse when it is configured."""
    options = langfuse_exporter_options(settings)
    if options is None:
        logger.info("Langfuse not configured, tracing disabled")
        return False

    try:
        tracer_provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))
        tracer_provider.add_span_processor(SimpleSpanProcessor(OTLPSpanExporter(**options)))
        trace_api.set_tracer_provider(tracer_provider=tracer_provider)

        # The itinerary formatter runs on agno
        AgnoInstrumentor().instrument()
    except Exception as e:
        logger.error(f"Failed to set up tracing: {e}")
        return False

    logger.info(f"Tracing {service_name} to Langfuse at {settings.langfuse_host}")
    return True


def get_tracer(name: str = __name__):
    """Get a tracer instance for manual instrumentation."""
    return trace_api.get_tracer(name)
