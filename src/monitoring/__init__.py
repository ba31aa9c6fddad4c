"""
Monitoring module - Prometheus metric state and exposition endpoint.
"""
from src.monitoring.metrics import (
    MetricsCollector,
    start_metrics_server,
    stop_metrics_server,
)

__all__ = [
    "MetricsCollector",
    "start_metrics_server",
    "stop_metrics_server",
]
