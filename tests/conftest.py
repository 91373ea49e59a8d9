import socket

import pytest
from flask import Response, request

from swifi.server import EchoRequestHandler, EchoServer, SpeedTestHTTPServer, create_worker_app

PASSWORD = "hunter2"


def pytest_addoption(parser):
    parser.addoption(
        "--run-network", action="store_true", default=False,
        help="run tests that need real network access",
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--run-network"):
        return
    skip_network = pytest.mark.skip(reason="needs --run-network")
    for item in items:
        if "network" in item.keywords:
            item.add_marker(skip_network)


def failing_upload_app():
    """Worker whose uploads always fail with 500."""
    app = create_worker_app()

    @app.before_request
    def reject_uploads():
        if request.method == "POST":
            request.get_data()
            return Response(status=500)
        return None

    return app


class PingGarblingHandler(EchoRequestHandler):
    """Echoes bulk payloads faithfully but garbles latency tokens."""

    def handle(self):
        try:
            data = self.request.recv(65536)
            # sequence token 0 opens every latency connection
            garble = data == bytes(8)
            while data:
                if garble:
                    data = bytes(b ^ 0xFF for b in data)
                self.request.sendall(data)
                data = self.request.recv(65536)
        except OSError:
            return


@pytest.fixture
def echo_server():
    with EchoServer(("127.0.0.1", 0)) as server:
        server.serve_in_thread()
        yield server


@pytest.fixture
def echo_endpoint(echo_server):
    host, port = echo_server.address
    return f"{host}:{port}"


@pytest.fixture
def ping_garbling_endpoint():
    with EchoServer(("127.0.0.1", 0)) as server:
        server.RequestHandlerClass = PingGarblingHandler
        server.serve_in_thread()
        host, port = server.address
        yield f"{host}:{port}"


def _http_endpoint(server):
    host, port = server.address
    return f"http://{host}:{port}"


@pytest.fixture
def http_endpoint():
    with SpeedTestHTTPServer(("127.0.0.1", 0)) as server:
        server.serve_in_thread()
        yield _http_endpoint(server)


@pytest.fixture
def protected_http_endpoint():
    with SpeedTestHTTPServer(("127.0.0.1", 0), password=PASSWORD) as server:
        server.serve_in_thread()
        yield _http_endpoint(server)


@pytest.fixture
def failing_upload_endpoint():
    with SpeedTestHTTPServer(("127.0.0.1", 0), app=failing_upload_app()) as server:
        server.serve_in_thread()
        yield _http_endpoint(server)


@pytest.fixture
def silent_port():
    """A port that accepts connections (kernel backlog) but never reads or answers."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(64)
    try:
        yield sock.getsockname()[1]
    finally:
        sock.close()


@pytest.fixture
def closed_port():
    """A port nothing listens on, so connections are refused."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
