"""Double-buffered workflow success-rate gauge.

The live values are an immutable mapping that is replaced wholesale. Scrapes
read whatever mapping is current, so they observe either the previous
snapshot or the next one, never a half-written state. Writes go through a
single RegistryWriter that stages changes off to the side until publish().
"""

import logging
import threading
from collections.abc import Iterable, Iterator, Mapping
from types import MappingProxyType

from prometheus_client import CollectorRegistry
from prometheus_client.core import GaugeMetricFamily, Metric
from prometheus_client.registry import Collector

logger = logging.getLogger(__name__)

SUCCESS_RATE_METRIC = "circleci_custom_workflow_insight_success_rate"
SUCCESS_RATE_HELP = "success rate of workflow"


class WorkflowMetricsRegistry(Collector):
    """Holds the exported workflow success rates.

    Readers call snapshot() or scrape through the CollectorRegistry this
    collector is registered with. Only the holder of the writer returned by
    acquire_writer() can change the values.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize the registry.

        Args:
            registry: Prometheus registry to expose the gauge on, if any
        """
        self._values: Mapping[str, float] = MappingProxyType({})
        self._swap_lock = threading.Lock()
        self._writer_lock = threading.Lock()
        self._writer: "RegistryWriter | None" = None

        if registry is not None:
            registry.register(self)

    def snapshot(self) -> Mapping[str, float]:
        """Return the currently published values (read-only)."""
        with self._swap_lock:
            return self._values

    def acquire_writer(self) -> "RegistryWriter":
        """Hand out the single write handle.

        Raises:
            RuntimeError: If a writer was already acquired.
        """
        with self._writer_lock:
            if self._writer is not None:
                raise RuntimeError("WorkflowMetricsRegistry writer already acquired")
            self._writer = RegistryWriter(self)
            return self._writer

    def describe(self) -> Iterable[Metric]:
        return [self._family()]

    def collect(self) -> Iterator[Metric]:
        family = self._family()
        for name, value in self.snapshot().items():
            family.add_metric([name], value)
        yield family

    def _family(self) -> GaugeMetricFamily:
        return GaugeMetricFamily(SUCCESS_RATE_METRIC, SUCCESS_RATE_HELP, labels=["name"])

    def _swap(self, values: dict[str, float]) -> None:
        published = MappingProxyType(dict(values))
        with self._swap_lock:
            self._values = published


class RegistryWriter:
    """Write handle staging changes for a WorkflowMetricsRegistry."""

    def __init__(self, registry: WorkflowMetricsRegistry) -> None:
        self._registry = registry
        self._staging: dict[str, float] = dict(registry.snapshot())

    def reset(self) -> None:
        """Clear all staged label values; readers are unaffected until publish()."""
        self._staging.clear()

    def set(self, name: str, value: float) -> None:
        """Upsert the staged value for a workflow; the last write wins."""
        self._staging[name] = float(value)

    def publish(self) -> None:
        """Swap the staged values into the live registry in one step."""
        self._registry._swap(self._staging)
        logger.debug("Published workflow metrics", extra={"workflows": len(self._staging)})

    def replace(self, values: Mapping[str, float]) -> None:
        """Publish exactly the given values, dropping every other label."""
        self.reset()
        for name, value in values.items():
            self.set(name, value)
        self.publish()
