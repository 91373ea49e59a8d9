"""
Local reference endpoints: a TCP echo service and an HTTP speed-test worker.

Both answer the probes in swifi.protocols, so a link can be measured against
a machine on the local network. The HTTP worker is a Flask app implementing
the same ``__down``/``__up``/``getIP`` API as a Cloudflare speed-test worker.
"""

import logging
import socket
import socketserver
import threading
from typing import Optional, Tuple

from flask import Flask, Response, abort, jsonify, request
from werkzeug.serving import make_server

logger = logging.getLogger(__name__)

BUFFER_BYTES = 256 * 1024
MAX_DOWNLOAD_BYTES = 1_000_000_000

_BLOCK = bytes((i * 31) & 0xFF for i in range(256)) * (BUFFER_BYTES // 256)


class _BackgroundServerMixin:
    """serve_forever() on a daemon thread; the context manager stops it."""

    _thread: Optional[threading.Thread] = None

    @property
    def address(self) -> Tuple[str, int]:
        host, port = self.server_address[:2]
        return host, port

    def serve_in_thread(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.serve_forever, name=type(self).__name__, daemon=True)
        self._thread.start()
        return self._thread

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        if self._thread is not None:
            self.shutdown()
            self._thread.join()
            self._thread = None
        self.server_close()


class EchoRequestHandler(socketserver.BaseRequestHandler):
    def setup(self):
        self.request.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

    def handle(self):
        while True:
            try:
                data = self.request.recv(BUFFER_BYTES)
                if not data:
                    return
                self.request.sendall(data)
            except OSError as e:
                logger.debug("Echo connection from %s ended: %s", self.client_address, e)
                return


class EchoServer(_BackgroundServerMixin, socketserver.ThreadingTCPServer):
    """Threaded TCP echo service."""

    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, server_address: Tuple[str, int] = ("127.0.0.1", 7007)):
        super().__init__(server_address, EchoRequestHandler)


def _payload(size: int):
    remaining = size
    while remaining:
        block = _BLOCK if remaining >= len(_BLOCK) else _BLOCK[:remaining]
        remaining -= len(block)
        yield block


def _drain_upload() -> int:
    """Read and discard the request body. Returns its size."""
    total = 0
    try:
        while True:
            data = request.stream.read(BUFFER_BYTES)
            if not data:
                return total
            total += len(data)
    except OSError as e:
        # malformed chunked framing
        logger.debug("Bad upload body after %d bytes: %s", total, e)
        abort(400)


def create_worker_app(password: Optional[str] = None) -> Flask:
    """Flask app speaking the Cloudflare speed-test worker API."""
    app = Flask(__name__)

    def unauthorized() -> Optional[Response]:
        if password is None:
            return None
        auth = request.authorization
        if auth is not None and auth.password == password:
            return None
        return Response(status=401, headers={"WWW-Authenticate": 'Basic realm="swifi"'})

    @app.get("/__down")
    def download():
        denied = unauthorized()
        if denied is not None:
            return denied
        size = request.args.get("bytes", type=int)
        if size is None:
            abort(400)
        size = max(0, min(size, MAX_DOWNLOAD_BYTES))
        return Response(
            _payload(size),
            mimetype="application/octet-stream",
            headers={"Content-Length": str(size), "Cache-Control": "no-store"},
        )

    @app.post("/__up")
    def upload():
        received = _drain_upload()
        denied = unauthorized()
        if denied is not None:
            return denied
        logger.debug("Received %d upload bytes", received)
        return Response(status=200)

    @app.get("/getIP")
    def get_ip():
        denied = unauthorized()
        if denied is not None:
            return denied
        return jsonify({"ip": request.remote_addr, "country": "", "colo": "LOCAL", "org": ""})

    return app


class SpeedTestHTTPServer(_BackgroundServerMixin):
    """Threaded werkzeug server running a speed-test worker app."""

    def __init__(self, server_address: Tuple[str, int] = ("127.0.0.1", 8080),
                 password: Optional[str] = None, app: Optional[Flask] = None):
        self.app = app or create_worker_app(password)
        host, port = server_address
        self._server = make_server(host, port, self.app, threaded=True)

    @property
    def server_address(self) -> Tuple[str, int]:
        return self._server.server_address

    def serve_forever(self):
        self._server.serve_forever()

    def shutdown(self):
        self._server.shutdown()

    def server_close(self):
        self._server.server_close()
