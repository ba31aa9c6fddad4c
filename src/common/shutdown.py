"""
Graceful shutdown for the exporter process.

SIGINT/SIGTERM only set a cancellation event. The main thread waits on it
and then runs the registered cleanup steps in priority order.
"""
import signal
import threading
import time
from typing import Callable, List, Tuple, Optional
from enum import Enum

from src.common.logging_config import get_logger

logger = get_logger(__name__)


class ShutdownState(Enum):
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class ShutdownManager:
    """
    Process-wide cancellation event plus ordered cleanup steps.

    Priority levels (lower = executed first):
        0-9:   Stop the poller (no new cycles)
        10-19: Stop HTTP listeners (/metrics, health)
        20-29: Close upstream HTTP sessions

    Usage:
        shutdown = ShutdownManager(timeout=10)
        shutdown.register(poller.stop, priority=0, name="poller")
        shutdown.install_signal_handlers()
        shutdown.wait_for_shutdown()
        shutdown.initiate_shutdown()
    """

    _instance: Optional['ShutdownManager'] = None
    _lock = threading.Lock()

    def __new__(cls, *args, **kwargs):
        # One manager per process; signal handlers are process-wide too
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self, timeout: int = 10):
        """
        Args:
            timeout: seconds after which remaining cleanup steps are skipped
        """
        if self._initialized:
            return
        self._initialized = True

        self.timeout = timeout
        self.state = ShutdownState.RUNNING
        self._steps: List[Tuple[int, str, Callable[[], None]]] = []
        self._state_lock = threading.Lock()
        self._cancelled = threading.Event()

    @classmethod
    def reset(cls):
        """Forget the process-wide instance (for testing)."""
        with cls._lock:
            cls._instance = None

    def register(
        self,
        callback: Callable[[], None],
        priority: int = 20,
        name: str = "unnamed"
    ) -> None:
        """Add a cleanup step; steps with equal priority keep registration order."""
        self._steps.append((priority, name, callback))
        self._steps.sort(key=lambda step: step[0])
        logger.debug(f"Cleanup step registered: {name} (priority={priority})")

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)
        logger.info("Signal handlers installed (SIGINT, SIGTERM)")

    def _signal_handler(self, signum: int, frame) -> None:
        # No logging here: the handler may interrupt a thread holding a log lock
        self.request_shutdown()

    def request_shutdown(self) -> None:
        """Wake ``wait_for_shutdown`` without running cleanup. Signal-safe."""
        self._cancelled.set()

    def wait_for_shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Block until shutdown is requested.

        Returns:
            True if shutdown was requested, False if *timeout* elapsed first
        """
        return self._cancelled.wait(timeout=timeout)

    def initiate_shutdown(self) -> None:
        """Run every cleanup step once. Later calls are no-ops."""
        with self._state_lock:
            if self.state != ShutdownState.RUNNING:
                logger.warning("Shutdown already in progress, ignoring")
                return
            self.state = ShutdownState.SHUTTING_DOWN

        self._cancelled.set()
        logger.info(f"Shutting down, {len(self._steps)} cleanup steps")
        self._run_steps()

        with self._state_lock:
            self.state = ShutdownState.STOPPED
        logger.info("Shutdown complete")

    def _run_steps(self) -> None:
        deadline = time.monotonic() + self.timeout

        for priority, name, callback in self._steps:
            if time.monotonic() >= deadline:
                logger.error(
                    f"Shutdown timeout ({self.timeout}s) exceeded, "
                    f"skipping remaining cleanup steps"
                )
                break

            try:
                callback()
                logger.info(f"Cleanup step done: {name} (priority={priority})")
            except Exception as e:
                # A failing step must not keep later listeners bound
                logger.error(f"Cleanup step failed: {name} - {e}")
