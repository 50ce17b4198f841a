"""Snapshot scheduler for periodic workflow insight refreshes.

Each tick fetches every page of workflow insights and, on success, publishes
a complete replacement of the workflow success-rate gauge. Failed ticks keep
the previously published values. Failures that point at a broken contract
with the remote API escalate to a process shutdown once they repeat.
"""

import logging
import threading
import time
from collections.abc import Iterable
from enum import Enum

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

from insights_exporter.exceptions import DecodeError, RemoteError, TransportError
from insights_exporter.schemas.workflow_insight import WorkflowInsightRecord
from insights_exporter.services.insights_client import InsightsClient
from insights_exporter.services.workflow_metrics import RegistryWriter
from insights_exporter.utils.lifecycle_coordinator import (
    EXIT_FATAL_FETCH,
    LifecycleCoordinatorProtocol,
    LifecycleEvent,
)

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PUBLISHING = "publishing"
    FAILED = "failed"


class FailureAction(str, Enum):
    RETAIN = "retain"
    ESCALATE = "escalate"


def build_snapshot(records: Iterable[WorkflowInsightRecord]) -> dict[str, float]:
    """Map workflow names to success rates; the last occurrence of a name wins."""
    values: dict[str, float] = {}
    for record in records:
        values[record.name] = record.success_rate
    return values


class FailurePolicy:
    """Grades fetch failures into retain-and-retry or escalate.

    Transport errors and retryable remote statuses never escalate.
    Non-retryable remote statuses and decode errors escalate once the same
    kind of failure has occurred on the configured number of consecutive
    ticks. Any other outcome, including success, restarts the count.

    The streak is kept per kind: alternating non-retryable remote errors
    and decode errors restart each other's count and so never escalate.
    """

    def __init__(self, remote_error_threshold: int = 3, decode_error_threshold: int = 2):
        self._thresholds = {
            "remote": remote_error_threshold,
            "decode": decode_error_threshold,
        }
        self._last_kind: str | None = None
        self._streak = 0

    @property
    def consecutive_failures(self) -> int:
        return self._streak

    def record_success(self) -> None:
        self._last_kind = None
        self._streak = 0

    def record_failure(self, error: Exception) -> FailureAction:
        kind = self._classify(error)
        if kind == self._last_kind:
            self._streak += 1
        else:
            self._last_kind = kind
            self._streak = 1

        threshold = self._thresholds.get(kind)
        if threshold is not None and self._streak >= threshold:
            return FailureAction.ESCALATE
        return FailureAction.RETAIN

    @staticmethod
    def _classify(error: Exception) -> str:
        if isinstance(error, TransportError):
            return "transport"
        if isinstance(error, RemoteError):
            return "remote-retryable" if error.retryable else "remote"
        if isinstance(error, DecodeError):
            return "decode"
        return "unexpected"


class SnapshotScheduler:
    """Runs the fetch-and-publish cycle on a background thread.

    The scheduler is the only writer of the workflow metrics registry. The
    next tick is scheduled from the completion of the previous one, so ticks
    never overlap. run_once() can be called directly to drive a single tick
    deterministically.

    Example usage:
        scheduler = container.snapshot_scheduler()
        scheduler.start(interval_seconds=300)
    """

    def __init__(
        self,
        client: InsightsClient,
        writer: RegistryWriter,
        credential: str,
        lifecycle_coordinator: LifecycleCoordinatorProtocol,
        failure_policy: FailurePolicy,
        registry: CollectorRegistry,
        interval_seconds: int = 300,
        run_immediately: bool = True,
    ):
        """Initialize the scheduler.

        Args:
            client: Client used to fetch workflow insights.
            writer: Write handle of the workflow metrics registry.
            credential: API token for the insights endpoint.
            lifecycle_coordinator: Coordinator for startup, shutdown and escalation.
            failure_policy: Policy grading fetch failures.
            registry: Prometheus registry for the scheduler's own metrics.
            interval_seconds: Time between the end of one tick and the next.
            run_immediately: Run the first tick as soon as the loop starts.
        """
        self._client = client
        self._writer = writer
        self._credential = credential
        self._lifecycle_coordinator = lifecycle_coordinator
        self._failure_policy = failure_policy
        self._interval_seconds = interval_seconds
        self._run_immediately = run_immediately

        self._state = SchedulerState.IDLE
        self._state_lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._tick_thread: int | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        self.cycles_total = Counter(
            "circleci_custom_snapshot_cycles_total",
            "Snapshot cycles by outcome",
            ["outcome"],
            registry=registry,
        )
        self.fetch_duration_seconds = Histogram(
            "circleci_custom_snapshot_fetch_duration_seconds",
            "Duration of insights fetches",
            registry=registry,
        )
        self.last_success_timestamp_seconds = Gauge(
            "circleci_custom_snapshot_last_success_timestamp_seconds",
            "Unix timestamp of the last successful snapshot",
            registry=registry,
        )
        self.published_workflows = Gauge(
            "circleci_custom_snapshot_workflows",
            "Number of workflows in the published snapshot",
            registry=registry,
        )

        lifecycle_coordinator.register_lifecycle_notification(self._on_lifecycle_event)
        lifecycle_coordinator.register_shutdown_waiter("SnapshotScheduler", self._wait_for_tick)

    @property
    def state(self) -> SchedulerState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: SchedulerState) -> None:
        with self._state_lock:
            self._state = state

    def run_once(self) -> bool:
        """Run a single snapshot cycle.

        Returns:
            True if a new snapshot was published, False if the tick failed,
            was skipped because another tick is in flight, or the scheduler
            has already escalated.
        """
        if self.state == SchedulerState.FAILED:
            return False

        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Snapshot cycle already in progress, skipping tick")
            self.cycles_total.labels(outcome="skipped").inc()
            return False

        self._tick_thread = threading.get_ident()
        try:
            return self._run_cycle()
        finally:
            self._tick_thread = None
            self._tick_lock.release()

    def _run_cycle(self) -> bool:
        self._set_state(SchedulerState.FETCHING)
        start = time.perf_counter()
        try:
            records = self._client.fetch_all(self._credential)
        except Exception as e:
            self.fetch_duration_seconds.observe(time.perf_counter() - start)
            self._handle_failure(e)
            return False
        self.fetch_duration_seconds.observe(time.perf_counter() - start)

        self._set_state(SchedulerState.PUBLISHING)
        values = build_snapshot(records)
        self._writer.replace(values)

        self._failure_policy.record_success()
        self.cycles_total.labels(outcome="success").inc()
        self.last_success_timestamp_seconds.set_to_current_time()
        self.published_workflows.set(len(values))
        self._set_state(SchedulerState.IDLE)

        logger.info(
            "Published workflow insights snapshot",
            extra={"records": len(records), "workflows": len(values)},
        )
        return True

    def _handle_failure(self, error: Exception) -> None:
        action = self._failure_policy.record_failure(error)
        consecutive = self._failure_policy.consecutive_failures

        if action == FailureAction.RETAIN:
            self.cycles_total.labels(outcome="retained").inc()
            self._set_state(SchedulerState.IDLE)
            logger.warning(
                "Snapshot cycle failed, keeping previous values",
                exc_info=not isinstance(error, (TransportError, RemoteError, DecodeError)),
                extra={
                    "error": str(error),
                    "error_type": type(error).__name__,
                    "consecutive_failures": consecutive,
                },
            )
            return

        self.cycles_total.labels(outcome="escalated").inc()
        self._set_state(SchedulerState.FAILED)
        self._stop_event.set()
        logger.error(
            "Snapshot cycle failed repeatedly, shutting down",
            extra={
                "error": str(error),
                "error_type": type(error).__name__,
                "consecutive_failures": consecutive,
            },
        )
        self._lifecycle_coordinator.shutdown(exit_code=EXIT_FATAL_FETCH)

    def start(self, interval_seconds: int | None = None) -> None:
        """Start the background snapshot loop.

        Args:
            interval_seconds: Time between cycles (default: configured interval).
        """
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Snapshot scheduler already running")
            return

        if interval_seconds is None:
            interval_seconds = self._interval_seconds

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._update_loop,
            args=(interval_seconds,),
            daemon=True,
            name="SnapshotScheduler",
        )
        self._thread.start()
        logger.info(
            "Started snapshot scheduler",
            extra={"interval_seconds": interval_seconds},
        )

    def stop(self) -> None:
        """Stop the background snapshot loop."""
        self._stop_event.set()
        thread = self._thread
        if thread is None:
            return
        # Escalation shuts down from the scheduler thread itself
        if thread is not threading.current_thread():
            thread.join(timeout=5)
        self._thread = None
        logger.info("Stopped snapshot scheduler")

    def _wait_for_tick(self, timeout: float) -> bool:
        """Shutdown waiter: block new ticks and let an in-flight tick finish.

        Returns:
            True if no tick is running when the wait ends.
        """
        self._stop_event.set()

        # Escalation requests the shutdown from inside the tick itself
        if self._tick_thread == threading.get_ident():
            return True

        if not self._tick_lock.acquire(timeout=timeout):
            return False
        self._tick_lock.release()
        return True

    def _update_loop(self, interval_seconds: int) -> None:
        """Background loop running one cycle per interval.

        Args:
            interval_seconds: Time to wait after a cycle completes.
        """
        if self._run_immediately and not self._stop_event.is_set():
            self._safe_run_once()

        while not self._stop_event.wait(interval_seconds):
            self._safe_run_once()

    def _safe_run_once(self) -> None:
        try:
            self.run_once()
        except Exception as e:
            logger.error(
                "Snapshot cycle raised unexpectedly",
                exc_info=True,
                extra={"error": str(e)},
            )

    def _on_lifecycle_event(self, event: LifecycleEvent) -> None:
        match event:
            case LifecycleEvent.STARTUP:
                self.start()
            case LifecycleEvent.SHUTDOWN:
                self.stop()
