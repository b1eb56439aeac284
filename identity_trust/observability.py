"""
Observability and monitoring setup for the identity verification service.
"""

import asyncio
from functools import wraps
from typing import Any, Callable, Dict, Optional

import structlog
from opentelemetry import trace, metrics
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import ConsoleMetricExporter, PeriodicExportingMetricReader
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor

logger = structlog.get_logger()

# Global tracer
tracer: Optional[trace.Tracer] = None

# Metrics instruments
decision_counter: Optional[metrics.Counter] = None
guard_counter: Optional[metrics.Counter] = None
audit_counter: Optional[metrics.Counter] = None
trust_score_histogram: Optional[metrics.Histogram] = None


def setup_observability(
    service_name: str = "identity-trust-service",
    service_version: str = "1.0.0",
    otlp_endpoint: Optional[str] = None,
    enable_console_export: bool = False
) -> None:
    """
    Set up OpenTelemetry tracing and metrics.

    Args:
        service_name: Name of the service for tracing
        service_version: Version of the service
        otlp_endpoint: OTLP endpoint for trace/metric export
        enable_console_export: Whether to enable console export for development
    """
    global tracer
    global decision_counter, guard_counter, audit_counter, trust_score_histogram

    logger.info(
        "Setting up observability",
        service_name=service_name,
        service_version=service_version,
        otlp_endpoint=otlp_endpoint
    )

    resource = Resource.create({
        "service.name": service_name,
        "service.version": service_version,
    })

    trace_provider = TracerProvider(resource=resource)
    if otlp_endpoint:
        trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
    if enable_console_export:
        trace_provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer(__name__)

    metric_readers = []
    if otlp_endpoint:
        metric_readers.append(
            PeriodicExportingMetricReader(
                exporter=OTLPMetricExporter(endpoint=otlp_endpoint),
                export_interval_millis=30000  # 30 seconds
            )
        )
    if enable_console_export:
        metric_readers.append(
            PeriodicExportingMetricReader(
                exporter=ConsoleMetricExporter(),
                export_interval_millis=60000  # 60 seconds
            )
        )

    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=metric_readers))
    meter = metrics.get_meter(__name__)

    decision_counter = meter.create_counter(
        name="verification_decisions_total",
        description="Channel decisions applied by admins or external verifiers",
        unit="1"
    )

    guard_counter = meter.create_counter(
        name="verification_guard_checks_total",
        description="Guard checks in front of protected actions",
        unit="1"
    )

    audit_counter = meter.create_counter(
        name="sensitive_access_log_writes_total",
        description="Access log writes for sensitive verification data",
        unit="1"
    )

    trust_score_histogram = meter.create_histogram(
        name="trust_score",
        description="Trust scores produced on recompute",
        unit="1"
    )

    logger.info("Observability setup completed")


def instrument_fastapi_app(app) -> None:
    """
    Instrument FastAPI application with OpenTelemetry.

    Args:
        app: FastAPI application instance
    """
    if tracer is None:
        logger.warning("Tracer not initialized, call setup_observability() first")
        return

    FastAPIInstrumentor.instrument_app(app)
    HTTPXClientInstrumentor().instrument()
    LoggingInstrumentor().instrument(set_logging_format=True)

    logger.info("FastAPI application instrumented with OpenTelemetry")


def _mark_span(span, func: Callable, error: Optional[Exception] = None) -> None:
    span.set_attribute("function.name", func.__name__)
    span.set_attribute("function.module", func.__module__)
    span.set_attribute("success", error is None)
    if error is not None:
        span.record_exception(error)
        span.set_attribute("error.type", type(error).__name__)
        span.set_attribute("error.message", str(error))


def trace_function(operation_name: Optional[str] = None):
    """
    Decorator to trace function execution.

    Args:
        operation_name: Optional custom operation name for the span
    """
    def decorator(func: Callable) -> Callable:
        span_name = operation_name or f"{func.__module__}.{func.__name__}"

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            if tracer is None:
                return await func(*args, **kwargs)
            with tracer.start_as_current_span(span_name) as span:
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    _mark_span(span, func, e)
                    raise
                _mark_span(span, func)
                return result

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            if tracer is None:
                return func(*args, **kwargs)
            with tracer.start_as_current_span(span_name) as span:
                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    _mark_span(span, func, e)
                    raise
                _mark_span(span, func)
                return result

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def record_decision_metrics(channel: str, decision: str, source: str, applied: bool) -> None:
    """
    Record metrics for a channel decision.

    Args:
        channel: oneci, cnam or face
        decision: approve or reject
        source: "admin" or the external provider name
        applied: False when the decision was an idempotent replay
    """
    if decision_counter is None:
        return

    decision_counter.add(1, {
        "channel": channel,
        "decision": decision,
        "source": source,
        "applied": str(applied).lower()
    })


def record_guard_metrics(decision: str, action: str) -> None:
    """Record the outcome of a guard check."""
    if guard_counter is None:
        return

    guard_counter.add(1, {"decision": decision, "action": action})


def record_audit_metrics(access_type: str, success: bool) -> None:
    """Record an access log write attempt."""
    if audit_counter is None:
        return

    audit_counter.add(1, {"access_type": access_type, "success": str(success).lower()})


def record_score_metrics(score: int) -> None:
    """Record a recomputed trust score."""
    if trust_score_histogram is None:
        return

    trust_score_histogram.record(score)


def get_trace_context() -> Dict[str, Any]:
    """
    Get current trace context information.

    Returns:
        Dict with trace ID and span ID if available
    """
    current_span = trace.get_current_span()
    if current_span is None or not current_span.is_recording():
        return {}

    span_context = current_span.get_span_context()
    return {
        "trace_id": f"{span_context.trace_id:032x}",
        "span_id": f"{span_context.span_id:016x}",
        "trace_flags": int(span_context.trace_flags)
    }


class TracingContextMiddleware:
    """
    Middleware to add tracing context to structured logs.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        trace_context = get_trace_context()
        if trace_context:
            structlog.contextvars.bind_contextvars(**trace_context)

        await self.app(scope, receive, send)
