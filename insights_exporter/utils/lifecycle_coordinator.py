"""Process lifecycle: startup notification, graceful shutdown and exit codes.

A shutdown is requested either by SIGTERM/SIGINT or by a service that hit
an unrecoverable condition (the snapshot scheduler escalating a fatal fetch
failure). Either way every registered callback sees the same ordered
events, and the process exits with the code of the first request.
"""

import logging
import signal
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum

logger = logging.getLogger(__name__)

# Process exit codes
EXIT_OK = 0
EXIT_FETCH_FAILED = 1
EXIT_CONFIG_ERROR = 2
EXIT_FATAL_FETCH = 3

LifecycleCallback = Callable[["LifecycleEvent"], None]
ShutdownWaiter = Callable[[float], bool]


class LifecycleEvent(str, Enum):
    STARTUP = "startup"
    PREPARE_SHUTDOWN = "prepare-shutdown"
    SHUTDOWN = "shutdown"
    AFTER_SHUTDOWN = "after-shutdown"


class LifecycleCoordinatorProtocol(ABC):
    """Interface shared by the coordinator and its test doubles."""

    @abstractmethod
    def initialize(self) -> None:
        """Install signal handlers."""

    @abstractmethod
    def register_lifecycle_notification(self, callback: LifecycleCallback) -> None: ...

    @abstractmethod
    def register_shutdown_waiter(self, name: str, handler: ShutdownWaiter) -> None: ...

    @abstractmethod
    def is_shutting_down(self) -> bool: ...

    @abstractmethod
    def shutdown(self, exit_code: int = EXIT_OK) -> None:
        """Request a shutdown that ends the process with exit_code."""

    @abstractmethod
    def fire_startup(self) -> None: ...

    @property
    @abstractmethod
    def exit_code(self) -> int: ...


class LifecycleCoordinator(LifecycleCoordinatorProtocol):
    """Dispatches lifecycle events and tracks the process exit code.

    Shutdown sequence:
        PREPARE_SHUTDOWN -> shutdown waiters (bounded by the graceful
        timeout) -> SHUTDOWN -> AFTER_SHUTDOWN

    Only the first shutdown request runs the sequence and sets the exit
    code; later requests are logged and dropped.
    """

    def __init__(self, graceful_shutdown_timeout: int):
        self._graceful_shutdown_timeout = graceful_shutdown_timeout
        self._lock = threading.RLock()
        self._callbacks: list[LifecycleCallback] = []
        self._waiters: dict[str, ShutdownWaiter] = {}
        self._started = False
        self._shutdown_requested = False
        self._exit_code = EXIT_OK

    def initialize(self) -> None:
        for signum in (signal.SIGTERM, signal.SIGINT):
            signal.signal(signum, self._handle_sigterm)
        logger.info("Installed shutdown signal handlers")

    def register_lifecycle_notification(self, callback: LifecycleCallback) -> None:
        with self._lock:
            self._callbacks.append(callback)

    def register_shutdown_waiter(self, name: str, handler: ShutdownWaiter) -> None:
        with self._lock:
            self._waiters[name] = handler

    def is_shutting_down(self) -> bool:
        with self._lock:
            return self._shutdown_requested

    @property
    def exit_code(self) -> int:
        with self._lock:
            return self._exit_code

    def fire_startup(self) -> None:
        with self._lock:
            if self._started:
                return
            self._started = True
        self._notify(LifecycleEvent.STARTUP)

    def _handle_sigterm(self, signum: int, frame: object) -> None:
        logger.info(f"Received signal {signum}, initiating graceful shutdown")
        self.shutdown()

    def shutdown(self, exit_code: int = EXIT_OK) -> None:
        with self._lock:
            if self._shutdown_requested:
                logger.warning(
                    f"Shutdown already in progress, ignoring request with exit code {exit_code}"
                )
                return
            self._shutdown_requested = True
            self._exit_code = exit_code

        started = time.perf_counter()
        self._notify(LifecycleEvent.PREPARE_SHUTDOWN)

        if not self._wait_for_services(started + self._graceful_shutdown_timeout):
            logger.error(
                f"Services not drained after {time.perf_counter() - started:.1f}s, forcing shutdown"
            )

        self._notify(LifecycleEvent.SHUTDOWN)
        logger.info(f"Shutting down with exit code {exit_code}")
        self._notify(LifecycleEvent.AFTER_SHUTDOWN)

    def _wait_for_services(self, deadline: float) -> bool:
        """Give each waiter the time left until deadline; False if any was not ready."""
        with self._lock:
            waiters = list(self._waiters.items())

        drained = True
        for name, waiter in waiters:
            remaining = deadline - time.perf_counter()
            if remaining <= 0:
                logger.error(f"Graceful shutdown timeout reached before waiting on {name}")
                return False
            try:
                if not waiter(remaining):
                    logger.warning(f"{name} did not finish within the shutdown timeout")
                    drained = False
            except Exception as e:
                logger.error(f"Shutdown waiter {name} failed: {e}")
                drained = False
        return drained

    def _notify(self, event: LifecycleEvent) -> None:
        with self._lock:
            callbacks = list(self._callbacks)

        for callback in callbacks:
            try:
                callback(event)
            except Exception as e:
                name = getattr(callback, "__name__", repr(callback))
                logger.error(f"Lifecycle callback {name} failed on {event.value}: {e}")
