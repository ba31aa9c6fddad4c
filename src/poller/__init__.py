"""Poll scheduler package"""
from src.poller.scheduler import VarzPoller, PollerState

__all__ = [
    "VarzPoller",
    "PollerState",
]
