"""OpenTelemetry integration for keycloak-oidc.

Provides tracing and structured logging for the refresh loop and the
verification path.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

if TYPE_CHECKING:
    from collections.abc import Generator

    from .config import TelemetryConfig

# Module-level tracer and logger
_tracer: trace.Tracer | None = None
_logger: structlog.stdlib.BoundLogger | None = None


def get_tracer() -> trace.Tracer:
    """Get or create the package tracer."""
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer("keycloak-oidc", "0.1.0")
    return _tracer


def get_logger(**initial_values: Any) -> Any:
    """Get the package logger, optionally bound to ``initial_values``."""
    global _logger
    if _logger is None:
        _logger = structlog.get_logger("keycloak-oidc")
    if initial_values:
        return _logger.bind(**initial_values)
    return _logger


def configure_telemetry(config: TelemetryConfig) -> None:
    """Configure telemetry based on config.

    Args:
        config: Telemetry configuration.
    """
    global _tracer, _logger

    if not config.enabled:
        _tracer = trace.NoOpTracer()
        return

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            _log_level_to_int(config.log_level)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _tracer = trace.get_tracer(config.service_name, "0.1.0")
    _logger = structlog.get_logger(config.service_name)


def _log_level_to_int(level: str) -> int:
    """Convert log level string to integer."""
    levels = {
        "DEBUG": 10,
        "INFO": 20,
        "WARNING": 30,
        "ERROR": 40,
        "CRITICAL": 50,
    }
    return levels.get(level.upper(), 20)


@contextmanager
def trace_operation(
    name: str,
    *,
    attributes: dict[str, Any] | None = None,
) -> Generator[trace.Span, None, None]:
    """Context manager for tracing an operation.

    Args:
        name: Name of the operation.
        attributes: Optional span attributes.

    Yields:
        The active span.
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                span.set_attribute(key, value)
        try:
            yield span
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise
