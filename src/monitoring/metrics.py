"""
Prometheus metrics exporter for gnatsd.

Holds the exporter's metric state in a dedicated ``CollectorRegistry`` and
serves it on a Prometheus HTTP endpoint (default ``:9104``).

Usage:
    from src.monitoring.metrics import MetricsCollector, start_metrics_server

    metrics = MetricsCollector()
    server = start_metrics_server(metrics, ":9104")

    # Fold a /varz snapshot into the exported state
    metrics.reconcile(snapshot)
"""
from typing import Dict, Optional, Tuple
from http.server import HTTPServer

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    CollectorRegistry,
    generate_latest,
    start_http_server,
    disable_created_metrics,
    ProcessCollector,
    PlatformCollector,
    GCCollector,
)

from config.settings import parse_listen_address
from src.common.logging_config import get_logger

logger = get_logger(__name__)

# gnatsd reports no creation time for its totals; keep *_created series out
disable_created_metrics()

NAMESPACE = "natsio"
DIRECTIONS = ("in", "out")

POLL_RESULTS = ("success", "network_error", "status_error", "decode_error", "error")


def _add(child, amount: float) -> None:
    # Counter.inc() refuses negative amounts; upstream values are added unchecked
    child._value.inc(amount)


class MetricsCollector:
    """
    Owner of the exported gnatsd metric state.

    One writer (the poller, through ``reconcile``) and any number of readers
    (scrapes of ``/metrics``) share an instance. Every value is individually
    lock-guarded by prometheus_client, so updates are never lost or torn.

    Args:
        registry: registry to register the metrics in; when omitted a fresh
            one is created, carrying the process, platform and GC collectors,
            so instances never share state
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        if registry is None:
            registry = CollectorRegistry()
            # Process and runtime series, as on the default registry
            ProcessCollector(registry=registry)
            PlatformCollector(registry=registry)
            GCCollector(registry=registry)
        self.registry = registry

        # -- gnatsd state -------------------------------------------------
        self._bytes = Counter(
            "bytes_total",
            "Total bytes in and out",
            ["direction"],
            namespace=NAMESPACE,
            registry=self.registry,
        )
        self._messages = Counter(
            "msg_total",
            "Total messages in and out",
            ["direction"],
            namespace=NAMESPACE,
            registry=self.registry,
        )
        self._connections = Gauge(
            "connections",
            "Current active connections to gnatsd deamon",
            namespace=NAMESPACE,
            registry=self.registry,
        )
        self._slow_consumers = Gauge(
            "slow_consumers",
            "Amount of slow consumers",
            namespace=NAMESPACE,
            registry=self.registry,
        )

        # Both directions exist from the start so an early scrape sees zeros
        for direction in DIRECTIONS:
            self._bytes.labels(direction=direction)
            self._messages.labels(direction=direction)

        # -- exporter self-observability ----------------------------------
        self._polls = Counter(
            "exporter_polls_total",
            "Poll cycles against /varz by result",
            ["result"],
            namespace=NAMESPACE,
            registry=self.registry,
        )
        self._poll_duration = Histogram(
            "exporter_poll_duration_seconds",
            "Duration of a single /varz poll cycle in seconds",
            namespace=NAMESPACE,
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=self.registry,
        )
        for result in POLL_RESULTS:
            self._polls.labels(result=result)

    # -- Reconciliation -----------------------------------------------------

    def reconcile(self, snapshot) -> None:
        """
        Fold one snapshot into the exported state.

        Counters are add-only: each snapshot's value is added to the running
        total, even though gnatsd reports lifetime totals. Exported counters
        therefore grow faster than gnatsd's own totals; this matches the
        established behaviour of the exporter and is kept for compatibility.
        Upstream restarts are not detected; consumers use reset-aware rate().

        Gauges are overwrite-only. No value is validated.
        """
        _add(self._bytes.labels(direction="in"), snapshot.bytes_in)
        _add(self._bytes.labels(direction="out"), snapshot.bytes_out)

        _add(self._messages.labels(direction="in"), snapshot.messages_in)
        _add(self._messages.labels(direction="out"), snapshot.messages_out)

        self._connections.set(snapshot.connections)
        self._slow_consumers.set(snapshot.slow_consumers)

    # -- Poll bookkeeping ---------------------------------------------------

    def record_poll(self, result: str, seconds: float) -> None:
        """
        Count a finished poll cycle and observe its duration.

        Args:
            result: one of ``POLL_RESULTS``
            seconds: wall time of the cycle
        """
        self._polls.labels(result=result).inc()
        self._poll_duration.observe(seconds)

    # -- Accessors ----------------------------------------------------------

    def _sample(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        value = self.registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0

    def get_bytes_total(self, direction: str) -> float:
        return self._sample("natsio_bytes_total", {"direction": direction})

    def get_messages_total(self, direction: str) -> float:
        return self._sample("natsio_msg_total", {"direction": direction})

    def get_connections(self) -> float:
        return self._sample("natsio_connections")

    def get_slow_consumers(self) -> float:
        return self._sample("natsio_slow_consumers")

    def get_polls_total(self, result: str) -> float:
        return self._sample("natsio_exporter_polls_total", {"result": result})

    def get_state(self) -> Dict[str, float]:
        """Current values of the four gnatsd metric families, flattened."""
        return {
            "bytes_in": self.get_bytes_total("in"),
            "bytes_out": self.get_bytes_total("out"),
            "messages_in": self.get_messages_total("in"),
            "messages_out": self.get_messages_total("out"),
            "connections": self.get_connections(),
            "slow_consumers": self.get_slow_consumers(),
        }

    def render(self) -> bytes:
        """Exposition text of everything in this collector's registry."""
        return generate_latest(self.registry)


# ---------------------------------------------------------------------------
# Exposition endpoint
# ---------------------------------------------------------------------------


def start_metrics_server(
    collector: MetricsCollector,
    listen_address: str = ":9104"
) -> HTTPServer:
    """
    Serve *collector*'s registry on ``/metrics`` at *listen_address*.

    Thin wrapper around ``prometheus_client.start_http_server`` that runs the
    server in a daemon thread.

    Raises:
        OSError: the address cannot be bound (fatal at startup)
    """
    host, port = parse_listen_address(listen_address)
    try:
        server, _thread = start_http_server(port, addr=host, registry=collector.registry)
    except OSError as exc:
        logger.error(f"Failed to start metrics server on {listen_address}: {exc}")
        raise

    logger.info(
        f"Prometheus metrics server started on {host}:{port}  "
        f"→  http://{host}:{port}/metrics"
    )
    return server


def stop_metrics_server(server: HTTPServer) -> None:
    """Stop a server returned by ``start_metrics_server``."""
    server.shutdown()
    server.server_close()
    logger.info("Prometheus metrics server stopped")


def bound_address(server: HTTPServer) -> Tuple[str, int]:
    """Actual (host, port) a server is listening on (useful with port 0)."""
    host, port = server.server_address[:2]
    return host, port
