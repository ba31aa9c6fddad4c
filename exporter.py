#!/usr/bin/env python3
"""
NATS Exporter - gnatsd /varz to Prometheus bridge
Polls the gnatsd monitoring endpoint on a fixed interval and serves the
collected counters and gauges on /metrics for Prometheus to scrape.
"""
import sys
import argparse
from typing import List, Optional

from config.settings import settings, validate_config
from src.common.logging_config import setup_logging, set_level
from src.common.exceptions import ConfigurationError, ProbeError
from src.common.shutdown import ShutdownManager
from src.common.correlation import set_component
from src.common.health import HealthServer, HealthRegistry, HealthCheck
from src.monitoring.metrics import (
    MetricsCollector,
    start_metrics_server,
    stop_metrics_server,
)
from src.nats.varz import VarzClient
from src.poller.scheduler import VarzPoller

logger = setup_logging(__name__, level=settings.logging.level if settings else "INFO")

set_component("exporter")


class NatsExporter:
    """
    Wires the /varz client, metric state, poller, and HTTP listeners together.

    The metric state is created here and handed to both the poller (writer)
    and the /metrics listener (reader).
    """

    def __init__(
        self,
        listen_address: str,
        nats_address: str,
        consume_time: int,
        health_port: int = 0,
        session=None
    ):
        """
        Initialize the exporter.

        Args:
            listen_address: host:port for /metrics
            nats_address: host:port of the gnatsd monitoring endpoint
            consume_time: seconds between polls; also the request timeout
            health_port: port for /health, /ready, /status (0 disables)
            session: optional requests.Session for the upstream client
        """
        self.listen_address = listen_address
        self.nats_address = nats_address
        self.consume_time = consume_time
        self.health_port = health_port

        self.collector = MetricsCollector()
        self.client = VarzClient(nats_address, timeout=consume_time, session=session)
        self.poller = VarzPoller(self.client, self.collector, interval=consume_time)

        self.metrics_server = None
        self.health_server: Optional[HealthServer] = None

        logger.info(
            f"NatsExporter initialized: nats={nats_address}, "
            f"listen={listen_address}, consume_time={consume_time}s"
        )

    def build_health_registry(self) -> HealthRegistry:
        registry = HealthRegistry("exporter")
        registry.register_check(HealthCheck("upstream", self.poller.is_healthy))
        registry.register_stats_provider("poller", self.poller.get_stats)
        registry.register_stats_provider("metrics", self.collector.get_state)
        return registry

    def start(self) -> None:
        """
        Probe the upstream, then bind listeners and start polling.

        Raises:
            ProbeError: upstream unreachable or not 200; nothing is bound
            OSError: a listener could not be bound
        """
        self.client.probe()

        self.metrics_server = start_metrics_server(self.collector, self.listen_address)

        if self.health_port:
            self.health_server = HealthServer(self.build_health_registry(), port=self.health_port)
            self.health_server.start()

        self.poller.start()

    def register_shutdown(self, shutdown: ShutdownManager) -> None:
        """Register cleanup callbacks in stop order."""
        shutdown.register(self.poller.stop, priority=0, name="poller")
        if self.metrics_server is not None:
            shutdown.register(
                lambda: stop_metrics_server(self.metrics_server),
                priority=10,
                name="metrics-server"
            )
        if self.health_server is not None:
            shutdown.register(self.health_server.stop, priority=15, name="health-server")
        shutdown.register(self.client.close, priority=20, name="varz-client")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line flags; defaults come from the environment settings."""
    parser = argparse.ArgumentParser(
        description="NATS Exporter - expose gnatsd /varz statistics to Prometheus"
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default=settings.exporter.listen_address,
        help=f"Address on which to expose metrics (default: {settings.exporter.listen_address})"
    )
    parser.add_argument(
        "--nats.address",
        dest="nats_address",
        default=settings.nats.address,
        help=f"Address on which gnatsd is giving metrics (default: {settings.nats.address})"
    )
    parser.add_argument(
        "--consume-time",
        dest="consume_time",
        type=int,
        default=settings.exporter.consume_time,
        help=f"Seconds between data scrapes from gnatsd monitoring (default: {settings.exporter.consume_time})"
    )
    parser.add_argument(
        "--health-port",
        dest="health_port",
        type=int,
        default=settings.monitoring.health_port,
        help="Port for /health, /ready and /status (default: disabled)"
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default=settings.logging.level,
        help=f"Log level (default: {settings.logging.level})"
    )
    return parser.parse_args(argv)


def _fatal(message: str) -> None:
    # sys.exit prints the message as the one diagnostic line on stderr
    sys.exit(message)


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    if settings is None:
        _fatal("could not load settings from environment")

    args = parse_args(argv)

    try:
        validate_config(
            listen_address=args.listen_address,
            nats_address=args.nats_address,
            consume_time=args.consume_time,
            log_level=args.log_level
        )
    except ConfigurationError as e:
        _fatal(str(e))

    set_level(args.log_level)

    exporter = NatsExporter(
        listen_address=args.listen_address,
        nats_address=args.nats_address,
        consume_time=args.consume_time,
        health_port=args.health_port
    )

    try:
        exporter.start()
    except ProbeError as e:
        exporter.client.close()
        _fatal(f"startup probe failed: {e}")
    except OSError as e:
        exporter.client.close()
        _fatal(f"could not bind listener: {e}")

    shutdown = ShutdownManager()
    exporter.register_shutdown(shutdown)
    shutdown.install_signal_handlers()

    shutdown.wait_for_shutdown()
    shutdown.initiate_shutdown()

    logger.info("Exporter terminated")
    sys.exit(0)


if __name__ == "__main__":
    main()
