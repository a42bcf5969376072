"""
Prometheus metrics for the admission webhook server.

Metrics are registered on a dedicated registry. This core mounts no metrics
endpoint; embedding applications expose the registry however they serve
their own telemetry.
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from prometheus_client import CollectorRegistry, Counter, Histogram

logger = logging.getLogger(__name__)

# Global metrics registry
_metrics_registry: CollectorRegistry | None = None

ADMISSION_REQUESTS_TOTAL = Counter(
    "admission_webhook_requests_total",
    "Total number of admission requests by resolved webhook and HTTP status",
    ["webhook", "status"],
    registry=None,  # Registered in get_metrics_registry()
)

ADMISSION_DECISIONS_TOTAL = Counter(
    "admission_webhook_decisions_total",
    "Total number of admission decisions returned by webhooks",
    ["webhook", "allowed"],
    registry=None,
)

HANDLER_DURATION = Histogram(
    "admission_webhook_handler_duration_seconds",
    "Time spent inside webhook handlers",
    ["webhook"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=None,
)

CERTIFICATES_PROVISIONED_TOTAL = Counter(
    "admission_webhook_certificates_provisioned_total",
    "Certificate pairs loaded from or written to disk",
    ["role", "result"],
    registry=None,
)


def get_metrics_registry() -> CollectorRegistry:
    """Get or create the global metrics registry."""
    global _metrics_registry

    if _metrics_registry is None:
        _metrics_registry = CollectorRegistry()
        for metric in [
            ADMISSION_REQUESTS_TOTAL,
            ADMISSION_DECISIONS_TOTAL,
            HANDLER_DURATION,
            CERTIFICATES_PROVISIONED_TOTAL,
        ]:
            _metrics_registry.register(metric)

    return _metrics_registry


class MetricsCollector:
    """Records admission traffic and provisioning metrics."""

    def __init__(self):
        # Make sure the metrics are attached before the first sample
        get_metrics_registry()

    def record_request(self, webhook: str, status: int) -> None:
        """Count a finished HTTP request; webhook is '-' when none was resolved."""
        ADMISSION_REQUESTS_TOTAL.labels(webhook=webhook, status=str(status)).inc()

    def record_decision(self, webhook: str, allowed: bool) -> None:
        ADMISSION_DECISIONS_TOTAL.labels(
            webhook=webhook, allowed=str(allowed).lower()
        ).inc()

    def record_certificate(self, role: str, created: bool) -> None:
        CERTIFICATES_PROVISIONED_TOTAL.labels(
            role=role, result="created" if created else "loaded"
        ).inc()

    @asynccontextmanager
    async def track_handler(self, webhook: str) -> AsyncIterator[None]:
        """
        Time a handler invocation.

        Args:
            webhook: Name of the webhook being invoked
        """
        start_time = time.perf_counter()
        try:
            yield
        finally:
            duration = time.perf_counter() - start_time
            HANDLER_DURATION.labels(webhook=webhook).observe(duration)
            logger.debug(
                f"Handler {webhook} finished in {duration:.3f}s",
                extra={"webhook": webhook, "duration": duration},
            )


# Global metrics collector instance
metrics_collector = MetricsCollector()
