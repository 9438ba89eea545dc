"""
Telemetry infrastructure for prompt-lab.

This module provides a singleton TelemetryService that configures OpenTelemetry
tracing and metrics for worker processes. Instrumented code only talks to the
OpenTelemetry API (``tracer`` and ``meter`` below), which stays a no-op until
``setup_telemetry()`` installs real providers.
"""

from __future__ import annotations

from typing import Optional

from loguru import logger
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.prometheus import PrometheusMetricReader
from opentelemetry.instrumentation.celery import CeleryInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from prometheus_client import start_http_server

from promptlab_core.config import Settings, settings

tracer = trace.get_tracer("promptlab")
meter = metrics.get_meter("promptlab")


class TelemetryService:
    """Singleton service for configuring and managing OpenTelemetry."""

    _instance: Optional[TelemetryService] = None

    def __new__(cls) -> TelemetryService:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self.tracer_provider: Optional[TracerProvider] = None
        self.meter_provider: Optional[MeterProvider] = None
        self.metrics_port: Optional[int] = None

    def setup(self, config: Settings = settings) -> None:
        """
        Initialize OpenTelemetry providers and instrumentations.
        Safe to call multiple times (idempotent).
        """
        if not config.ENABLE_TELEMETRY:
            logger.info("Telemetry disabled via configuration.")
            return

        if self.tracer_provider is not None:
            logger.warning("Telemetry already initialized.")
            return

        resource = Resource.create({
            "service.name": config.SERVICE_NAME,
            "service.instance.id": config.OTEL_SERVICE_NAME or f"{config.SERVICE_NAME}-worker",
        })

        self.tracer_provider = TracerProvider(resource=resource)

        if config.OTEL_EXPORTER_OTLP_ENDPOINT:
            exporter = OTLPSpanExporter(endpoint=config.OTEL_EXPORTER_OTLP_ENDPOINT)
            self.tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
            logger.info(f"OTLP Tracing enabled -> {config.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            self.tracer_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
            logger.info("OTLP Endpoint not set. Tracing to console (Debug).")

        trace.set_tracer_provider(self.tracer_provider)

        # The reader registers with prometheus_client; serve_metrics() exposes it
        reader = PrometheusMetricReader()
        self.meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
        metrics.set_meter_provider(self.meter_provider)

        self._instrument_libraries()
        logger.info("Telemetry initialized successfully.")

    def _instrument_libraries(self) -> None:
        """Instrument the model API client, the broker and the worker."""
        HTTPXClientInstrumentor().instrument()
        RedisInstrumentor().instrument()
        CeleryInstrumentor().instrument()

    def serve_metrics(self, port: int) -> None:
        """Expose the Prometheus registry over HTTP. Only the first call binds a port."""
        if self.meter_provider is None:
            logger.debug("Metrics not configured; not serving /metrics.")
            return
        if self.metrics_port is not None:
            return
        start_http_server(port)
        self.metrics_port = port
        logger.info(f"Prometheus metrics served on port {port}")

    def shutdown(self) -> None:
        """Flush pending spans and metrics."""
        if self.tracer_provider is not None:
            self.tracer_provider.shutdown()
            self.tracer_provider = None
        if self.meter_provider is not None:
            self.meter_provider.shutdown()
            self.meter_provider = None
        logger.info("Telemetry shut down.")


# Global helpers
def setup_telemetry(config: Settings = settings, metrics_port: Optional[int] = None) -> None:
    service = TelemetryService()
    service.setup(config)
    if metrics_port is not None:
        service.serve_metrics(metrics_port)


def shutdown_telemetry() -> None:
    TelemetryService().shutdown()
