"""OpenTelemetry wiring and the bookkeeping instruments.

``setup_telemetry`` installs OTLP providers when enabled in settings. The
``record_*`` helpers go through the global meter API, so they are no-ops until
a provider is installed and are safe to call from services and tests alike.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, NamedTuple

from fastapi import FastAPI
from opentelemetry import metrics, trace
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk._logs import LoggerProvider
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.semconv.resource import ResourceAttributes
from sqlalchemy.ext.asyncio import AsyncEngine

from folio import __version__
from folio.config import FolioSettings

logger = logging.getLogger(__name__)

METER_NAME = "folio"
METRIC_EXPORT_INTERVAL_MS = 15000

_installed = False


class _Instruments(NamedTuple):
    transactions: Any
    corporate_actions: Any
    market_data_failures: Any


@lru_cache(maxsize=1)
def _instruments() -> _Instruments:
    meter = metrics.get_meter(METER_NAME, __version__)
    return _Instruments(
        transactions=meter.create_counter(
            "folio.transactions", unit="1", description="Transactions applied, revoked or updated"
        ),
        corporate_actions=meter.create_counter(
            "folio.corporate_actions", unit="1", description="Corporate actions applied to portfolios"
        ),
        market_data_failures=meter.create_counter(
            "folio.market_data.failures", unit="1", description="Market data lookups that failed or timed out"
        ),
    )


def record_transaction(kind: str, operation: str) -> None:
    _instruments().transactions.add(1, {"transaction.type": kind, "operation": operation})


def record_corporate_action(kind: str) -> None:
    _instruments().corporate_actions.add(1, {"action.type": kind})


def record_market_data_failure(operation: str) -> None:
    _instruments().market_data_failures.add(1, {"operation": operation})


def setup_telemetry(app: FastAPI, settings: FolioSettings, engine: AsyncEngine | None = None) -> bool:
    """Install OTLP trace, metric and log providers and instrument the app.

    Runs once per process; returns whether instrumentation is active.
    """

    global _installed  # noqa: PLW0603 - once per process

    if _installed:
        return True
    if not settings.telemetry_enabled:
        logger.info("Telemetry disabled via configuration")
        return False

    resource = Resource.create(
        {
            ResourceAttributes.SERVICE_NAME: settings.telemetry_service_name or settings.app_name,
            ResourceAttributes.SERVICE_NAMESPACE: "folio",
            ResourceAttributes.SERVICE_VERSION: __version__,
        }
    )
    options: dict[str, Any] = {"insecure": settings.telemetry_otlp_insecure}
    if settings.telemetry_otlp_endpoint:
        options["endpoint"] = settings.telemetry_otlp_endpoint

    tracer_provider = TracerProvider(
        resource=resource, sampler=ParentBased(TraceIdRatioBased(settings.telemetry_sample_ratio))
    )
    tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**options)))
    trace.set_tracer_provider(tracer_provider)

    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(**options), export_interval_millis=METRIC_EXPORT_INTERVAL_MS
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(meter_provider)
    _instruments.cache_clear()

    logger_provider = LoggerProvider(resource=resource)
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(OTLPLogExporter(**options)))
    set_logger_provider(logger_provider)
    LoggingInstrumentor().instrument(set_logging_format=False)

    FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider, meter_provider=meter_provider)
    # Alpha Vantage requests
    HTTPXClientInstrumentor().instrument()
    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine, tracer_provider=tracer_provider)

    _installed = True
    logger.info("Telemetry initialised for %s", settings.telemetry_service_name)
    return True


__all__ = [
    "record_corporate_action",
    "record_market_data_failure",
    "record_transaction",
    "setup_telemetry",
]
