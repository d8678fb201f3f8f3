"""
Observability module - Logging, Metrics, and Tracing.
"""

from showroom_billing.observability.logging import get_logger, setup_logging
from showroom_billing.observability.metrics import metrics
from showroom_billing.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
