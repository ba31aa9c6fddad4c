"""
Background poller driving fetch + reconcile on a fixed interval.

The poll loop is the exporter's only failure-isolation boundary: a cycle that
fails to fetch or decode /varz is logged and skipped, leaves the metric state
untouched, and never stops later cycles.
"""
import time
import threading
from enum import Enum
from typing import Any, Dict, Optional

from src.common.correlation import CycleContext
from src.common.exceptions import (
    FetchError,
    CycleNetworkError,
    CycleStatusError,
    CycleDecodeError,
)
from src.common.logging_config import get_logger

logger = get_logger(__name__)


class PollerState(Enum):
    """Poller states"""
    IDLE = "idle"
    POLLING = "polling"
    STOPPED = "stopped"


_RESULT_BY_ERROR = (
    (CycleNetworkError, "network_error"),
    (CycleStatusError, "status_error"),
    (CycleDecodeError, "decode_error"),
)


def _result_label(error: Exception) -> str:
    for error_type, label in _RESULT_BY_ERROR:
        if isinstance(error, error_type):
            return label
    return "error"


class VarzPoller:
    """
    Daemon thread that polls /varz every *interval* seconds.

    The loop sleeps first and polls second, so the first cycle runs one full
    interval after ``start()``. Waiting happens on a ``threading.Event``,
    which doubles as the cancellation token: ``stop()`` wakes the thread
    immediately instead of letting it finish its sleep.

    Args:
        client: ``VarzClient`` (anything with ``fetch_snapshot()``)
        collector: ``MetricsCollector`` receiving successful snapshots
        interval: seconds between cycles (>= 1, validated at startup)
    """

    def __init__(self, client, collector, interval: float) -> None:
        self.client = client
        self.collector = collector
        self.interval = interval
        self.state = PollerState.IDLE
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Statistics
        self.polls_total = 0
        self.polls_succeeded = 0
        self.polls_failed = 0
        self.consecutive_failures = 0
        self.last_success_time: Optional[float] = None
        self.last_error: Optional[str] = None

    def start(self) -> None:
        """Start the poller daemon thread."""
        self._thread = threading.Thread(
            target=self._run, name="varz-poller", daemon=True
        )
        self._thread.start()
        logger.info(f"VarzPoller started (interval={self.interval}s)")

    def stop(self, timeout: float = 5.0) -> None:
        """Signal the poller thread to stop and wait for it."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
        self.state = PollerState.STOPPED
        logger.info("VarzPoller stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        """Main loop executed in the daemon thread."""
        while not self._stop_event.wait(self.interval):
            try:
                self.poll_once()
            except Exception as exc:
                # Anything beyond the fetch taxonomy is still confined to one cycle
                logger.exception(f"Unexpected error in poll cycle: {exc}")

    def poll_once(self) -> bool:
        """
        Run a single fetch + reconcile cycle.

        Returns:
            True if a snapshot was reconciled, False if the cycle was skipped
        """
        with CycleContext():
            self.state = PollerState.POLLING
            self.polls_total += 1
            start = time.monotonic()
            try:
                try:
                    snapshot = self.client.fetch_snapshot()
                except FetchError as e:
                    self.polls_failed += 1
                    self.consecutive_failures += 1
                    self.last_error = str(e)
                    self.collector.record_poll(_result_label(e), time.monotonic() - start)
                    logger.warning(f"Poll cycle skipped ({type(e).__name__}): {e}")
                    return False

                self.collector.reconcile(snapshot)
                self.polls_succeeded += 1
                self.consecutive_failures = 0
                self.last_success_time = time.time()
                self.collector.record_poll("success", time.monotonic() - start)
                logger.debug("Snapshot reconciled")
                return True
            finally:
                if not self._stop_event.is_set():
                    self.state = PollerState.IDLE

    def is_healthy(self) -> bool:
        """
        Readiness check: the most recent cycle succeeded.

        Before the first cycle the poller counts as healthy, since the startup
        probe has already confirmed the upstream is reachable.
        """
        return self.consecutive_failures == 0

    def get_stats(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "interval_seconds": self.interval,
            "polls_total": self.polls_total,
            "polls_succeeded": self.polls_succeeded,
            "polls_failed": self.polls_failed,
            "consecutive_failures": self.consecutive_failures,
            "last_success_time": self.last_success_time,
            "last_error": self.last_error,
        }
