"""
Observability setup:
  - OpenTelemetry distributed tracing → Jaeger (via OTLP gRPC)
  - Prometheus metrics for the similarity rebuild and recommendation paths

Both are initialised once at startup and injected into FastAPI via middleware.
Tracing can be switched off with OTEL_ENABLED=false (local runs, tests).
"""
import logging

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from prometheus_client import Counter, Gauge, Histogram

from app.config import settings

logger = logging.getLogger(__name__)

# ─────────────────────────── Prometheus Metrics ───────────────────────────
SIMILARITY_REBUILD_SECONDS = Histogram(
    "similarity_rebuild_seconds",
    "Wall time of a full user-similarity rebuild",
    buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0],
)

SIMILARITY_REBUILD_TOTAL = Counter(
    "similarity_rebuild_total",
    "Similarity rebuild runs",
    ["trigger", "status"],  # trigger: 'schedule' | 'admin'; status: 'ok' | 'error'
)

SIMILARITY_PAIRS = Gauge(
    "similarity_pairs",
    "Number of user pairs stored by the last successful rebuild",
)

RECOMMENDATION_REQUESTS_TOTAL = Counter(
    "recommendation_requests_total",
    "Recommendation requests served",
    ["source"],  # 'personalized' or 'popular'
)

RECOMMENDATION_LATENCY = Histogram(
    "recommendation_latency_seconds",
    "End-to-end latency of GET /recommendations",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0],
)


# ─────────────────────────── OpenTelemetry Setup ──────────────────────────
def setup_tracing() -> None:
    """Configure the global OTel TracerProvider with OTLP/Jaeger export."""
    if not settings.otel_enabled:
        logger.info("OTel tracing disabled")
        return

    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "deployment.environment": settings.environment,
        }
    )

    provider = TracerProvider(resource=resource)

    try:
        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            insecure=True,
        )
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        logger.info(
            "OTel tracing configured → %s", settings.otel_exporter_otlp_endpoint
        )
    except Exception as exc:
        logger.warning("Could not connect to OTLP exporter: %s — traces disabled", exc)

    trace.set_tracer_provider(provider)

    SQLAlchemyInstrumentor().instrument()


def instrument_app(app) -> None:  # noqa: ANN001
    """Call after app is created to add FastAPI request spans."""
    if settings.otel_enabled:
        FastAPIInstrumentor.instrument_app(app)
