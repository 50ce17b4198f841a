"""Prometheus metrics service for application monitoring.

This service provides minimal infrastructure metrics (shutdown state) and
the get_metrics_text() method that returns ALL metrics from the
application's CollectorRegistry.

Services own their own metrics and register them on the same registry:

    class MyService:
        def __init__(self, registry: CollectorRegistry):
            self.requests_total = Counter(
                'my_requests_total', 'Total requests', registry=registry
            )
"""

import logging
import time

from prometheus_client import CollectorRegistry, Gauge, Histogram, generate_latest

from insights_exporter.utils.lifecycle_coordinator import (
    LifecycleCoordinatorProtocol,
    LifecycleEvent,
)

logger = logging.getLogger(__name__)

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


class MetricsService:
    """Minimal metrics service for infrastructure concerns.

    This service handles:
    - Shutdown state metrics
    - Generating Prometheus metrics text (from the application registry)
    """

    def __init__(
        self,
        registry: CollectorRegistry,
        lifecycle_coordinator: LifecycleCoordinatorProtocol,
    ):
        """Initialize metrics service.

        Args:
            registry: Registry shared with every metric-owning service.
            lifecycle_coordinator: Coordinator for graceful shutdown.
        """
        self.registry = registry
        self._shutdown_start_time: float | None = None

        lifecycle_coordinator.register_lifecycle_notification(self._on_lifecycle_event)

        self.application_shutting_down = Gauge(
            "application_shutting_down",
            "Whether application is shutting down (1=yes, 0=no)",
            registry=registry,
        )

        self.graceful_shutdown_duration_seconds = Histogram(
            "graceful_shutdown_duration_seconds",
            "Duration of graceful shutdowns",
            registry=registry,
        )

    def get_metrics_text(self) -> str:
        """Generate metrics in Prometheus text format."""
        return generate_latest(self.registry).decode("utf-8")

    def set_shutdown_state(self, is_shutting_down: bool) -> None:
        """Set the shutdown state metric.

        Args:
            is_shutting_down: Whether the application is shutting down.
        """
        try:
            self.application_shutting_down.set(1 if is_shutting_down else 0)
            if is_shutting_down:
                self._shutdown_start_time = time.perf_counter()
        except Exception as e:
            logger.error(f"Error setting shutdown state: {e}")

    def _on_lifecycle_event(self, event: LifecycleEvent) -> None:
        """Callback for shutdown lifecycle events."""
        match event:
            case LifecycleEvent.PREPARE_SHUTDOWN:
                self.set_shutdown_state(True)
            case LifecycleEvent.SHUTDOWN:
                self._record_shutdown_duration()

    def _record_shutdown_duration(self) -> None:
        """Record the shutdown duration metric."""
        if self._shutdown_start_time:
            duration = time.perf_counter() - self._shutdown_start_time
            try:
                self.graceful_shutdown_duration_seconds.observe(duration)
            except Exception as e:
                logger.error(f"Error recording shutdown duration: {e}")
