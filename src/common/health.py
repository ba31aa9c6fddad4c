"""
Health check HTTP server for liveness, readiness, and status endpoints.
Optional; runs beside the /metrics listener in its own daemon thread.

Endpoints:
    GET /health  - Liveness: process is alive (always 200 if server running)
    GET /ready   - Readiness: upstream probe passed and last poll cycle succeeded
    GET /status  - Checks plus poller statistics
"""
import json
import threading
import time
from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler
from typing import Dict, Any, Callable, Optional, List
from datetime import datetime, timezone

from src.common.logging_config import get_logger

logger = get_logger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class HealthCheck:
    """
    A named readiness condition.

    Args:
        name: Check name (e.g., "upstream")
        check_fn: returns True when healthy; raising counts as unhealthy
    """

    def __init__(self, name: str, check_fn: Callable[[], bool]):
        self.name = name
        self.check_fn = check_fn

    def run(self) -> Dict[str, Any]:
        error = None
        try:
            healthy = bool(self.check_fn())
            if not healthy:
                error = "Check returned False"
        except Exception as e:
            healthy = False
            error = str(e)

        return {
            "name": self.name,
            "status": "healthy" if healthy else "unhealthy",
            "error": error,
        }


class HealthRegistry:
    """
    Registry of health checks and stats providers for one component.
    """

    def __init__(self, component: str = "exporter"):
        self.component = component
        self.checks: List[HealthCheck] = []
        self.stats_providers: Dict[str, Callable[[], Dict[str, Any]]] = {}
        self.start_time = time.time()

    def register_check(self, check: HealthCheck) -> None:
        self.checks.append(check)
        logger.debug(f"Registered health check: {check.name}")

    def register_stats_provider(
        self,
        name: str,
        provider: Callable[[], Dict[str, Any]]
    ) -> None:
        self.stats_providers[name] = provider
        logger.debug(f"Registered stats provider: {name}")

    def run_checks(self) -> Dict[str, Any]:
        results = [check.run() for check in self.checks]
        all_healthy = all(r["status"] == "healthy" for r in results)
        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": results
        }

    def get_liveness(self) -> Dict[str, Any]:
        return {
            "status": "alive",
            "component": self.component,
            "uptime_seconds": round(time.time() - self.start_time, 1),
            "timestamp": _now_iso()
        }

    def get_readiness(self) -> Dict[str, Any]:
        check_results = self.run_checks()
        return {
            "status": "ready" if check_results["status"] == "healthy" else "not_ready",
            "component": self.component,
            "checks": check_results["checks"],
            "timestamp": _now_iso()
        }

    def get_status(self) -> Dict[str, Any]:
        check_results = self.run_checks()

        stats = {}
        for name, provider in self.stats_providers.items():
            try:
                stats[name] = provider()
            except Exception as e:
                stats[name] = {"error": str(e)}

        return {
            "component": self.component,
            "status": check_results["status"],
            "uptime_seconds": round(time.time() - self.start_time, 1),
            "timestamp": _now_iso(),
            "health_checks": check_results["checks"],
            "statistics": stats
        }


class HealthHTTPHandler(BaseHTTPRequestHandler):
    """HTTP request handler for health endpoints."""

    # Set per server by HealthServer
    registry: Optional[HealthRegistry] = None

    def do_GET(self):
        if self.path == "/health":
            self._send_json(200, self.registry.get_liveness())

        elif self.path == "/ready":
            data = self.registry.get_readiness()
            self._send_json(200 if data["status"] == "ready" else 503, data)

        elif self.path == "/status":
            self._send_json(200, self.registry.get_status())

        else:
            self._send_json(404, {"error": "Not found"})

    def _send_json(self, status_code: int, data: Dict[str, Any]):
        body = json.dumps(data, indent=2).encode("utf-8")
        self.send_response(status_code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        """Suppress default access logging to avoid noise."""
        pass


class HealthServer:
    """
    Threaded HTTP server for health check endpoints.

    Usage:
        registry = HealthRegistry("exporter")
        registry.register_check(HealthCheck("upstream", poller.is_healthy))

        server = HealthServer(registry, port=8080)
        server.start()
        ...
        server.stop()
    """

    def __init__(self, registry: HealthRegistry, port: int = 8080, host: str = "0.0.0.0"):
        self.registry = registry
        self.port = port
        self.host = host
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """
        Start the health server in a daemon thread.

        Raises:
            OSError: the port cannot be bound
        """
        handler = type(
            'HealthHandler',
            (HealthHTTPHandler,),
            {'registry': self.registry}
        )

        self._server = ThreadingHTTPServer((self.host, self.port), handler)
        self.port = self._server.server_address[1]
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="health-server",
            daemon=True
        )
        self._thread.start()
        logger.info(f"Health server started on port {self.port}")

    def stop(self) -> None:
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            logger.info("Health server stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
