"""
Unit tests for src/nats/varz.py

Covers payload decoding, the per-cycle fetch error taxonomy, the startup
probe, and the whole-request timeout against a real slow HTTP server.
"""
import json
import threading
import time
import pytest
import requests
from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler
from unittest.mock import MagicMock

from src.nats.varz import Snapshot, VarzClient, decode_snapshot
from src.common.exceptions import (
    ProbeError,
    FetchError,
    CycleNetworkError,
    CycleStatusError,
    CycleDecodeError,
)


VARZ_BODY = {
    "server_id": "NCUOKQFXB6XZ",
    "version": "1.4.1",
    "in_bytes": 100,
    "out_bytes": 50,
    "in_msgs": 10,
    "out_msgs": 5,
    "slow_consumers": 0,
    "connections": 3,
    "max_connections": 65536,
    "mem": 12345678,
}


def _response(status_code=200, body=b""):
    response = MagicMock()
    response.status_code = status_code
    response.iter_content.return_value = [body[i:i + 1] for i in range(len(body))]
    return response


def _client(response=None, side_effect=None):
    session = MagicMock()
    if side_effect is not None:
        session.get.side_effect = side_effect
    else:
        session.get.return_value = response
    return VarzClient(":8043", timeout=10, session=session), session


@pytest.fixture
def slow_varz():
    """HTTP server that sends a valid /varz body one byte every 50ms."""
    body = json.dumps({"in_bytes": 1, "connections": 1, "server_id": "slow"}).encode()

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            try:
                for i in range(len(body)):
                    self.wfile.write(body[i:i + 1])
                    self.wfile.flush()
                    time.sleep(0.05)
            except (BrokenPipeError, ConnectionResetError):
                pass

        def log_message(self, format, *args):
            pass

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"127.0.0.1:{server.server_address[1]}", len(body)
    server.shutdown()
    server.server_close()


# -----------------------------------------------------------------------
# decode_snapshot
# -----------------------------------------------------------------------

class TestDecodeSnapshot:

    def test_decodes_known_fields(self):
        snap = decode_snapshot(json.dumps(VARZ_BODY).encode())
        assert snap == Snapshot(
            bytes_in=100.0,
            bytes_out=50.0,
            messages_in=10.0,
            messages_out=5.0,
            slow_consumers=0.0,
            connections=3.0,
            max_connections=65536.0,
        )

    def test_missing_fields_default_to_zero(self):
        snap = decode_snapshot(b'{"connections": 7}')
        assert snap.connections == 7.0
        assert snap.bytes_in == 0.0
        assert snap.messages_out == 0.0

    def test_null_field_is_zero(self):
        snap = decode_snapshot(b'{"in_bytes": null, "out_bytes": 4}')
        assert snap.bytes_in == 0.0
        assert snap.bytes_out == 4.0

    def test_null_body_is_all_zero(self):
        assert decode_snapshot(b"null") == Snapshot()

    def test_fractional_values_kept(self):
        snap = decode_snapshot(b'{"in_bytes": 1.5}')
        assert snap.bytes_in == 1.5

    def test_negative_values_pass_through(self):
        snap = decode_snapshot(b'{"connections": -2}')
        assert snap.connections == -2.0

    @pytest.mark.parametrize("body", [
        b"",
        b"not json",
        b"[1, 2, 3]",
        b'{"in_bytes": "100"}',
        b'{"connections": true}',
        b'{"in_bytes": 1',
    ])
    def test_bad_body_raises_decode_error(self, body):
        with pytest.raises(CycleDecodeError):
            decode_snapshot(body)


# -----------------------------------------------------------------------
# VarzClient.fetch_snapshot
# -----------------------------------------------------------------------

class TestFetchSnapshot:

    def test_url_defaults_to_localhost(self):
        client, _ = _client(_response())
        assert client.url == "http://localhost:8043/varz"

    def test_success(self):
        client, session = _client(_response(200, json.dumps(VARZ_BODY).encode()))
        snap = client.fetch_snapshot()

        assert snap.bytes_in == 100.0
        assert snap.connections == 3.0
        session.get.assert_called_once_with("http://localhost:8043/varz", timeout=10, stream=True)

    def test_response_closed(self):
        response = _response(200, b"{}")
        client, _ = _client(response)
        client.fetch_snapshot()
        response.close.assert_called_once()

    @pytest.mark.parametrize("status", [404, 500, 503])
    def test_non_200_raises_status_error(self, status):
        client, _ = _client(_response(status, b"{}"))
        with pytest.raises(CycleStatusError) as exc_info:
            client.fetch_snapshot()
        assert exc_info.value.status_code == status
        assert str(status) in str(exc_info.value)

    def test_timeout_raises_network_error(self):
        client, _ = _client(side_effect=requests.exceptions.ReadTimeout("read timed out"))
        with pytest.raises(CycleNetworkError):
            client.fetch_snapshot()

    def test_connection_refused_raises_network_error(self):
        client, _ = _client(side_effect=requests.exceptions.ConnectionError("refused"))
        with pytest.raises(CycleNetworkError):
            client.fetch_snapshot()

    def test_body_read_error_raises_network_error(self):
        response = _response(200)
        response.iter_content.side_effect = requests.exceptions.ChunkedEncodingError("reset")
        client, _ = _client(response)
        with pytest.raises(CycleNetworkError):
            client.fetch_snapshot()
        response.close.assert_called_once()

    def test_bad_body_raises_decode_error(self):
        client, _ = _client(_response(200, b"<html>oops</html>"))
        with pytest.raises(CycleDecodeError):
            client.fetch_snapshot()

    def test_all_cycle_errors_are_fetch_errors(self):
        for exc in (CycleNetworkError, CycleStatusError, CycleDecodeError):
            assert issubclass(exc, FetchError)


# -----------------------------------------------------------------------
# VarzClient.probe
# -----------------------------------------------------------------------

class TestProbe:

    def test_probe_ok(self):
        client, session = _client(_response(200, b"ignored"))
        client.probe()
        session.get.assert_called_once()

    def test_probe_503_raises(self):
        client, _ = _client(_response(503))
        with pytest.raises(ProbeError, match="expected statuscode 200 got 503"):
            client.probe()

    def test_probe_network_failure_raises(self):
        client, _ = _client(side_effect=requests.exceptions.ConnectionError("refused"))
        with pytest.raises(ProbeError):
            client.probe()

    def test_probe_ignores_body(self):
        # Body is never decoded, so garbage is fine
        client, _ = _client(_response(200, b"\x00\xff not json"))
        client.probe()

    def test_close_closes_session(self):
        client, session = _client(_response())
        client.close()
        session.close.assert_called_once()


# -----------------------------------------------------------------------
# Whole-request timeout
# -----------------------------------------------------------------------

class TestWholeRequestTimeout:

    def test_slow_body_hits_deadline(self, slow_varz):
        address, body_len = slow_varz
        client = VarzClient(address, timeout=0.5)

        started = time.monotonic()
        with pytest.raises(CycleNetworkError, match="timeout"):
            client.fetch_snapshot()
        elapsed = time.monotonic() - started
        client.close()

        # Full body would take body_len * 50ms
        assert body_len * 0.05 > 2.0
        assert elapsed < 1.5

    def test_slow_body_fails_startup_check(self, slow_varz):
        address, _ = slow_varz
        client = VarzClient(address, timeout=0.5)

        started = time.monotonic()
        with pytest.raises(ProbeError, match="timeout"):
            client.probe()
        elapsed = time.monotonic() - started
        client.close()

        assert elapsed < 1.5

    def test_slow_body_within_deadline_succeeds(self, slow_varz):
        address, _ = slow_varz
        client = VarzClient(address, timeout=10)
        snap = client.fetch_snapshot()
        client.close()
        assert snap.connections == 1.0
