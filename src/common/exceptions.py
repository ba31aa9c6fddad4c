"""
Custom exceptions for the NATS exporter.
Fatal startup errors and recoverable poll-cycle errors share one hierarchy.
"""
from typing import Optional


class BaseExporterException(Exception):
    """Base exception for the NATS exporter"""
    pass


class ConfigurationError(BaseExporterException):
    """Invalid configuration, detected before the exporter starts"""
    pass


class ProbeError(BaseExporterException):
    """Upstream /varz endpoint unreachable or unhealthy at startup"""
    pass


class FetchError(BaseExporterException):
    """A single poll cycle failed to produce a snapshot"""
    pass


class CycleNetworkError(FetchError):
    """Connection refused, DNS failure or timeout while fetching /varz"""
    pass


class CycleStatusError(FetchError):
    """Upstream answered /varz with a non-200 status"""

    def __init__(self, status_code: int, message: Optional[str] = None):
        self.status_code = status_code
        super().__init__(message or f"expected statuscode 200 got {status_code}")


class CycleDecodeError(FetchError):
    """/varz body is not JSON of the expected shape"""
    pass
