"""
Observability module - Logging, Metrics, and Tracing.
"""

from autonest.observability.logging import get_logger, setup_logging
from autonest.observability.metrics import metrics
from autonest.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
