"""
Observability utilities for the admission webhook server.

This module provides structured logging and Prometheus metrics for
admission traffic and certificate provisioning.
"""

from .logging import correlation_scope, setup_structured_logging
from .metrics import MetricsCollector, get_metrics_registry, metrics_collector

__all__ = [
    "MetricsCollector",
    "metrics_collector",
    "get_metrics_registry",
    "correlation_scope",
    "setup_structured_logging",
]
