"""Logging helpers with optional OpenTelemetry export."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import TelemetryConfig

LOG_FORMAT = (
    "%(asctime)s | %(levelname)s | %(name)s | %(message)s "
    "| trace_id=%(otelTraceID)s span_id=%(otelSpanID)s"
)

_CONFIGURED = False
_OTLP_HANDLER: logging.Handler | None = None


class _OtelContextFilter(logging.Filter):
    """Ensures trace/span placeholders exist even when no context is active."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - trivial
        if not hasattr(record, "otelTraceID"):
            record.otelTraceID = "-"
        if not hasattr(record, "otelSpanID"):
            record.otelSpanID = "-"
        return True


def get_logger(name: str = "broadside") -> logging.Logger:
    """Return a logger inside the ``broadside`` hierarchy."""
    if name != "broadside" and not name.startswith("broadside."):
        name = f"broadside.{name}"
    return logging.getLogger(name)


def init_logging(config: TelemetryConfig) -> logging.Logger:
    """Configure console logging once and attach an OTLP handler when enabled."""
    global _CONFIGURED
    logger = get_logger()
    logger.setLevel(config.log_level)

    root_logger = logging.getLogger()
    if not _CONFIGURED:
        if not root_logger.handlers:
            logging.basicConfig(level=config.log_level, format=LOG_FORMAT)
        for existing in root_logger.handlers:
            existing.addFilter(_OtelContextFilter())
        _CONFIGURED = True

    if config.enable_logging and config.otlp_endpoint:
        _install_otlp_handler(config)
    return logger


def _install_otlp_handler(config: TelemetryConfig) -> None:
    """Attach the OTLP logging handler to the root logger once."""
    global _OTLP_HANDLER
    if _OTLP_HANDLER is not None:
        return

    from opentelemetry._logs import set_logger_provider
    from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
    from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
    from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
    from opentelemetry.sdk.resources import Resource

    provider = LoggerProvider(resource=Resource.create(config.resource()))
    exporter = OTLPLogExporter(endpoint=config.otlp_endpoint, insecure=True)
    provider.add_log_record_processor(BatchLogRecordProcessor(exporter))
    set_logger_provider(provider)

    handler = LoggingHandler(level=config.log_level, logger_provider=provider)
    handler.addFilter(_OtelContextFilter())
    logging.getLogger().addHandler(handler)
    _OTLP_HANDLER = handler
