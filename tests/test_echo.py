"""
tests.test_echo - TCP echo protocol against misbehaving and healthy echo services
"""
import socketserver

import pytest

from swifi.deadline import Deadline
from swifi.errors import EndpointConnectionError, ProtocolError
from swifi.protocols.echo import EchoProtocol, _payload
from swifi.server import EchoServer

# larger than the loopback socket buffers on both ends
AHEAD_BYTES = 64 * 1024 * 1024


class GarblingHandler(socketserver.BaseRequestHandler):
    def handle(self):
        while True:
            data = self.request.recv(65536)
            if not data:
                return
            self.request.sendall(bytes(b ^ 0xFF for b in data))


class HangUpHandler(socketserver.BaseRequestHandler):
    def handle(self):
        self.request.recv(65536)


class RunAheadHandler(socketserver.BaseRequestHandler):
    """Streams the payload pattern without reading what the client sends."""

    def handle(self):
        try:
            self.request.sendall(_payload(AHEAD_BYTES))
        except OSError:
            return


def _serve(handler_class):
    server = EchoServer(("127.0.0.1", 0))
    server.RequestHandlerClass = handler_class
    return server


def _protocol(endpoint):
    return EchoProtocol(endpoint, sample_duration=0.5, latency_samples=5, bandwidth_percentile=90)


@pytest.fixture
def garbling_endpoint():
    with _serve(GarblingHandler) as server:
        server.serve_in_thread()
        host, port = server.address
        yield f"{host}:{port}"


@pytest.fixture
def run_ahead_endpoint():
    with _serve(RunAheadHandler) as server:
        server.serve_in_thread()
        host, port = server.address
        yield f"{host}:{port}"


@pytest.fixture
def hang_up_endpoint():
    with _serve(HangUpHandler) as server:
        server.serve_in_thread()
        host, port = server.address
        yield f"{host}:{port}"


class TestHealthyService:
    def test_latency(self, echo_endpoint):
        with Deadline(5.0) as deadline:
            samples = _protocol(echo_endpoint).measure_latency(deadline)
        assert len(samples) == 5
        assert all(0 < sample < 50 for sample in samples)

    def test_download_and_upload(self, echo_endpoint):
        protocol = _protocol(echo_endpoint)
        with Deadline(5.0) as deadline:
            assert protocol.measure_download(deadline) > 0
            assert protocol.measure_upload(deadline) > 0

    def test_transfer_reports_both_directions(self, echo_endpoint):
        with Deadline(5.0) as deadline:
            send_s, recv_s = _protocol(echo_endpoint)._transfer(1_000_000, deadline)
        assert 0 < send_s <= recv_s

    def test_default_port(self):
        protocol = _protocol("localhost")
        assert (protocol.host, protocol.port) == ("localhost", 7)


class TestMisbehavingService:
    def test_garbled_ping_is_protocol_error(self, garbling_endpoint):
        with Deadline(5.0) as deadline:
            with pytest.raises(ProtocolError, match="did not echo"):
                _protocol(garbling_endpoint).measure_latency(deadline)

    def test_garbled_payload_is_protocol_error(self, garbling_endpoint):
        with Deadline(5.0) as deadline:
            with pytest.raises(ProtocolError, match="does not match"):
                _protocol(garbling_endpoint).measure_download(deadline)

    def test_hang_up_is_protocol_error(self, hang_up_endpoint):
        with Deadline(5.0) as deadline:
            with pytest.raises(ProtocolError, match="closed the connection"):
                _protocol(hang_up_endpoint).measure_latency(deadline)

    def test_refused(self, closed_port):
        with Deadline(5.0) as deadline:
            with pytest.raises(EndpointConnectionError):
                _protocol(f"127.0.0.1:{closed_port}").measure_latency(deadline)

    def test_echo_ahead_of_payload_is_protocol_error(self, run_ahead_endpoint):
        with Deadline(10.0) as deadline:
            with pytest.raises(ProtocolError, match="more data than was sent"):
                _protocol(run_ahead_endpoint)._transfer(AHEAD_BYTES, deadline)
