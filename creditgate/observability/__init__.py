"""
Observability - structlog logging, Prometheus metrics, OpenTelemetry tracing.
"""

from creditgate.observability.logging import get_logger, log_context, setup_logging
from creditgate.observability.metrics import metrics
from creditgate.observability.tracing import setup_tracing, shutdown_tracing

__all__ = [
    "get_logger",
    "log_context",
    "metrics",
    "setup_logging",
    "setup_tracing",
    "shutdown_tracing",
]
