"""OpenTelemetry export for the chip economy backend

Nothing is exported unless OTEL_EXPORTER_OTLP_ENDPOINT is set; without it the
tracer returned by get_tracer() is a no-op and spans cost nothing.
"""
import logging

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from tlyt import __version__
from tlyt.core.config import settings

logger = logging.getLogger(__name__)

TRACER_NAME = "tlyt.chip_economy"


def build_resource() -> Resource:
    """Resource attributes shared by traces, metrics and logs"""
    return Resource.create({
        "service.name": settings.OTEL_SERVICE_NAME,
        "service.version": __version__,
        "service.namespace": "tlyt",
        "deployment.environment": settings.OTEL_ENVIRONMENT,
    })


def get_tracer():
    return trace.get_tracer(TRACER_NAME, __version__)


def initialize_otel():
    """Install OTLP trace and metric providers. Returns False when export is not configured."""
    if not settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        return False

    try:
        resource = build_resource()

        trace_provider = TracerProvider(resource=resource)
        trace_provider.add_span_processor(BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True)
        ))
        trace.set_tracer_provider(trace_provider)

        # Ledger counters are scraped from /metrics; OTLP carries the instrumentation metrics
        metric_reader = PeriodicExportingMetricReader(
            OTLPMetricExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True),
            export_interval_millis=15000,
        )
        metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[metric_reader]))

        return True
    except Exception as e:
        logger.warning(f"Failed to initialize OpenTelemetry: {e}")
        return False


def setup_otel_logging():
    """Ship the ledger, billing and analysis log streams over OTLP as well"""
    if not settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        return False

    try:
        from opentelemetry._logs import set_logger_provider
        from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
        from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
        from opentelemetry.sdk._logs.export import BatchLogRecordProcessor

        logger_provider = LoggerProvider(resource=build_resource())
        set_logger_provider(logger_provider)
        logger_provider.add_log_record_processor(BatchLogRecordProcessor(
            OTLPLogExporter(endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT, insecure=True)
        ))

        logging.getLogger().addHandler(LoggingHandler(level=logging.INFO, logger_provider=logger_provider))
        return True
    except Exception as e:
        logger.warning(f"Failed to setup OTEL logging: {e}")
        return False


def instrument_fastapi(app):
    # Metrics scrapes and health checks are not traced
    FastAPIInstrumentor.instrument_app(app, excluded_urls="/metrics,/health")


def instrument_httpx():
    """Trace outbound YouTube Data API and Gemini calls"""
    HTTPXClientInstrumentor().instrument()


def instrument_sqlalchemy(engine):
    try:
        SQLAlchemyInstrumentor().instrument(engine=engine)
        logger.info("SQLAlchemy instrumentation enabled")
    except Exception as e:
        logger.warning(f"Failed to instrument SQLAlchemy: {e}")
