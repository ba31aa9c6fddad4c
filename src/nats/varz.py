"""
Client for the gnatsd HTTP monitoring endpoint (/varz).

Fetches the server's status document and decodes it into a ``Snapshot``.
The client never retries; a failed fetch is reported to the caller and the
poller simply tries again on its next tick.

Usage:
    client = VarzClient(":8043", timeout=10)
    client.probe()                     # raises ProbeError if unreachable
    snapshot = client.fetch_snapshot() # raises a FetchError subclass on failure
"""
import time
from dataclasses import dataclass
from typing import Any, Optional

import requests
from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError, field_validator

from config.settings import varz_url
from src.common.logging_config import get_logger
from src.common.exceptions import (
    ProbeError,
    CycleNetworkError,
    CycleStatusError,
    CycleDecodeError,
)

logger = get_logger(__name__)

# Single-byte reads keep each blocking read short, so the deadline is
# checked between bytes of a slowly sent body.
READ_CHUNK_SIZE = 1


@dataclass(frozen=True)
class Snapshot:
    """One decoded reading of /varz. Discarded after reconciliation."""
    bytes_in: float = 0.0
    bytes_out: float = 0.0
    messages_in: float = 0.0
    messages_out: float = 0.0
    slow_consumers: float = 0.0
    connections: float = 0.0
    max_connections: float = 0.0


class VarzPayload(BaseModel):
    """
    Subset of the /varz JSON document the exporter reads.

    Unknown fields are ignored and missing ones default to zero. Values must
    be JSON numbers; strings or booleans are a decode error.
    """
    model_config = ConfigDict(extra="ignore", strict=True)

    in_bytes: float = 0.0
    out_bytes: float = 0.0
    in_msgs: float = 0.0
    out_msgs: float = 0.0
    slow_consumers: float = 0.0
    connections: float = 0.0
    max_connections: float = 0.0

    @field_validator("*", mode="before")
    @classmethod
    def _null_is_zero(cls, value: Any) -> Any:
        return 0.0 if value is None else value

    def to_snapshot(self) -> Snapshot:
        return Snapshot(
            bytes_in=self.in_bytes,
            bytes_out=self.out_bytes,
            messages_in=self.in_msgs,
            messages_out=self.out_msgs,
            slow_consumers=self.slow_consumers,
            connections=self.connections,
            max_connections=self.max_connections,
        )


# A top-level JSON null decodes to an all-zero payload
_payload_adapter = TypeAdapter(Optional[VarzPayload])


def decode_snapshot(body: bytes) -> Snapshot:
    """
    Decode a /varz response body.

    Raises:
        CycleDecodeError: body is not a JSON object of the expected shape
    """
    try:
        payload = _payload_adapter.validate_json(body)
    except ValidationError as e:
        raise CycleDecodeError(
            f"could not decode nats-info got {e.error_count()} error(s): "
            f"{e.errors()[0]['msg']}"
        ) from e
    return (payload or VarzPayload()).to_snapshot()


class VarzClient:
    """
    HTTP client for one upstream gnatsd monitoring address.

    Args:
        address: upstream ``host:port`` (empty host means localhost)
        timeout: whole-request timeout in seconds, covering connect,
            response headers and the body
        session: optional ``requests.Session`` (injected in tests)
    """

    def __init__(
        self,
        address: str,
        timeout: float,
        session: Optional[requests.Session] = None
    ):
        self.address = address
        self.url = varz_url(address)
        self.timeout = timeout
        self.session = session or requests.Session()

    def _timed_out(self) -> CycleNetworkError:
        return CycleNetworkError(f"timeout after {self.timeout}s fetching {self.url}")

    def _get(self, deadline: float) -> requests.Response:
        try:
            response = self.session.get(self.url, timeout=self.timeout, stream=True)
        except requests.exceptions.Timeout as e:
            raise CycleNetworkError(f"timeout after {self.timeout}s fetching {self.url}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise CycleNetworkError(f"failed to fetch {self.url}: {e}") from e

        if time.monotonic() > deadline:
            response.close()
            raise self._timed_out()
        return response

    def _read_body(self, response: requests.Response, deadline: float) -> bytes:
        chunks = []
        try:
            for chunk in response.iter_content(chunk_size=READ_CHUNK_SIZE):
                chunks.append(chunk)
                if time.monotonic() > deadline:
                    raise self._timed_out()
        except requests.exceptions.RequestException as e:
            raise CycleNetworkError(f"failed to read {self.url}: {e}") from e
        return b"".join(chunks)

    def fetch_snapshot(self) -> Snapshot:
        """
        Fetch and decode one snapshot.

        Raises:
            CycleNetworkError: connection refused, DNS failure, timeout
            CycleStatusError: any non-200 response
            CycleDecodeError: body is not valid JSON of the expected shape
        """
        deadline = time.monotonic() + self.timeout
        response = self._get(deadline)
        try:
            if response.status_code != 200:
                raise CycleStatusError(response.status_code)
            body = self._read_body(response, deadline)
        finally:
            response.close()

        snapshot = decode_snapshot(body)
        logger.debug(
            f"Fetched snapshot: connections={snapshot.connections}, "
            f"slow_consumers={snapshot.slow_consumers}"
        )
        return snapshot

    def probe(self) -> None:
        """
        One-shot startup check that /varz answers 200 within the timeout.

        The body is drained under the same deadline and discarded.

        Raises:
            ProbeError: network failure, timeout or non-200 status
        """
        deadline = time.monotonic() + self.timeout
        try:
            response = self._get(deadline)
            try:
                status = response.status_code
                if status == 200:
                    self._read_body(response, deadline)
            finally:
                response.close()
        except CycleNetworkError as e:
            raise ProbeError(str(e)) from e

        if status != 200:
            raise ProbeError(f"expected statuscode 200 got {status}")

        logger.info(f"Upstream reachable at {self.url}", extra={"upstream": self.address})

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()
