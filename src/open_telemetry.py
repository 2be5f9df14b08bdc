import logging
import socket
import sys
import time
import uuid
from contextlib import asynccontextmanager
from types import SimpleNamespace

# OpenTelemetry imports
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import SpanKind, Status, StatusCode

# OpenTelemetry logging imports
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor

# JSON logging for OpenTelemetry
from pythonjsonlogger import jsonlogger

logger = logging.getLogger(__name__)

METER_NAME = "markup_bridge_metrics"
TRACER_NAME = "markup_bridge_tracer"


class Telemetry:
    """Logging, metrics and tracing for the transcoders, exported over OTLP gRPC."""

    def __init__(self, service_name, endpoint, log_level=logging.INFO):
        self.service_name = service_name
        self.endpoint = endpoint

        # Shared resource for logs, metrics and traces
        self.resource = Resource.create({
            "service.name": self.service_name,
            "service.instance.id": self.get_instance_id(),
        })

        self.setup_logging(log_level)

        self.metrics = self.setup_metrics()
        self.tracer = self.setup_tracing()

    def get_instance_id(self):
        """Host name when it is usable, otherwise a random id."""
        try:
            hostname = socket.gethostname()
        except OSError:
            hostname = ""
        if hostname and hostname != "localhost":
            return hostname[:63]
        return uuid.uuid4().hex[:12]

    def setup_logging(self, log_level=logging.INFO):
        """Configure stdout logging plus the OpenTelemetry log exporter."""
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setFormatter(logging.Formatter('[%(name)s] %(message)s'))

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)
        root_logger.addHandler(stdout_handler)

        otel_logger_provider = LoggerProvider(resource=self.resource)
        set_logger_provider(otel_logger_provider)

        otlp_log_exporter = OTLPLogExporter(
            endpoint=self.endpoint,
            insecure=True
        )
        otel_logger_provider.add_log_record_processor(
            BatchLogRecordProcessor(otlp_log_exporter)
        )

        otel_handler = LoggingHandler(
            level=logging.NOTSET,
            logger_provider=otel_logger_provider
        )
        otel_handler.setFormatter(jsonlogger.JsonFormatter())
        root_logger.addHandler(otel_handler)

        logger.info("OpenTelemetry logging configured")

    def setup_metrics(self):
        """Set up OpenTelemetry metrics"""
        logger.info(f"Setting up OpenTelemetry metrics for {self.service_name}, OTLP endpoint {self.endpoint}")

        otlp_reader = PeriodicExportingMetricReader(
            exporter=OTLPMetricExporter(endpoint=self.endpoint, insecure=True),
            export_interval_millis=15000  # Export every 15 seconds
        )

        provider = MeterProvider(metric_readers=[otlp_reader], resource=self.resource)
        metrics.set_meter_provider(provider)

        meter = metrics.get_meter(METER_NAME)
        logger.info(f"Created meter: {METER_NAME}")

        # Directory lookups of users, channels and emoji (kind, outcome)
        entity_lookups = meter.create_counter(
            name="entity_lookups_total",
            description="Directory lookups by entity kind and outcome",
            unit="1",
        )

        url_shortenings = meter.create_counter(
            name="url_shortenings_total",
            description="URL shortener calls by outcome",
            unit="1",
        )

        format_latency = meter.create_histogram(
            name="format_latency",
            description="Message transcoding latency by direction",
            unit="ms",
            explicit_bucket_boundaries=[
                0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0,  # No or cached lookups
                100.0, 250.0, 500.0, 1000.0,          # Directory round trips
                2500.0, 5000.0, 10000.0,              # Slow lookups or shortener retries
            ],
        )

        # Readable elapsed-time helper
        def timer():
            t0 = time.monotonic()
            def elapsed_ms():
                return (time.monotonic() - t0) * 1000.0
            return elapsed_ms

        return SimpleNamespace(
            entity_lookups=entity_lookups,
            url_shortenings=url_shortenings,
            format_latency=format_latency,
            timer=timer
        )

    def setup_tracing(self):
        """Set up OpenTelemetry tracing"""
        logger.info("Setting up OpenTelemetry tracing...")

        trace_provider = TracerProvider(resource=self.resource)
        trace_provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=self.endpoint, insecure=True))
        )
        trace.set_tracer_provider(trace_provider)

        tracer = trace.get_tracer(TRACER_NAME)
        logger.info(f"Created tracer: {TRACER_NAME}")
        return tracer

    @asynccontextmanager
    async def async_create_span(self, name, kind=SpanKind.INTERNAL, attributes=None):
        """Create a span as an async context manager for async operations"""
        span = self.tracer.start_span(name, kind=kind, attributes=attributes or {})
        try:
            with trace.use_span(span, end_on_exit=False):
                yield span
                span.set_status(Status(StatusCode.OK))
                span.end()
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR))
            span.record_exception(e)
            span.end()
            raise

    def record_format_latency(self, direction: str, elapsed_ms: float):
        """Record how long one transcoding call took."""
        self.metrics.format_latency.record(elapsed_ms, {"direction": direction})
