"""gnatsd monitoring endpoint client"""
from src.nats.varz import Snapshot, VarzClient, VarzPayload, decode_snapshot

__all__ = [
    "Snapshot",
    "VarzClient",
    "VarzPayload",
    "decode_snapshot",
]
