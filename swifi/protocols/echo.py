"""
Speed test against a TCP echo service (RFC 862 style: every byte sent comes
back). Latency = round trip of an 8-byte sequence token on one connection.
Throughput = full-duplex transfer of a patterned payload: upload is payload
bits / time until the last byte was handed to the socket, download is payload
bits / time until the last echoed byte arrived.
"""

import contextlib
import itertools
import logging
import selectors
import socket
import struct
import time
from typing import Iterator, List, Tuple

from ..config import parse_host_port
from ..deadline import Deadline
from ..errors import EndpointConnectionError, NetworkError, ProbeTimeoutError, ProtocolError
from .base import Progress, Protocol, Sample, Stage, collect_latency, run_schedule, throughput

logger = logging.getLogger(__name__)

STAGES = [
    Stage(256 * 1024, 1, bypass_min_duration=True),  # initial estimation
    Stage(256 * 1024, 4),
    Stage(1_000_000, 4),
    Stage(4_000_000, 4),
    Stage(16_000_000, 3),
    Stage(64_000_000, 2),
]

IO_CHUNK_BYTES = 256 * 1024
TOKEN = struct.Struct("!Q")

_PATTERN = bytes(range(256))


def _payload(size: int) -> bytes:
    return (_PATTERN * (size // len(_PATTERN) + 1))[:size]


class EchoProtocol(Protocol):
    """Speed test against ``host[:port]`` running a TCP echo service."""

    name = "echo"

    def __init__(self, endpoint: str, sample_duration: float, latency_samples: int,
                 bandwidth_percentile: float, password=None, progress: Progress = None):
        super().__init__(endpoint, sample_duration, latency_samples, bandwidth_percentile, password, progress)
        self.host, self.port = parse_host_port(endpoint)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def _translate(self, e: OSError, deadline: Deadline) -> NetworkError:
        if deadline.expired:
            return deadline.timeout_error()
        if isinstance(e, socket.timeout):
            return ProbeTimeoutError(f"{self.address} did not answer in time")
        if isinstance(e, socket.gaierror):
            return EndpointConnectionError(f"Cannot resolve {self.host}: {e}")
        return EndpointConnectionError(f"Cannot reach {self.address}: {e}")

    def _closed_error(self, deadline: Deadline) -> NetworkError:
        if deadline.expired:
            return deadline.timeout_error()
        return ProtocolError(f"{self.address} closed the connection before echoing all data")

    @contextlib.contextmanager
    def _connect(self, deadline: Deadline) -> Iterator[socket.socket]:
        try:
            sock = socket.create_connection((self.host, self.port), timeout=deadline.remaining())
        except OSError as e:
            raise self._translate(e, deadline) from e
        with sock, deadline.guard(sock):
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            yield sock

    def _recv_exactly(self, sock: socket.socket, n: int, deadline: Deadline) -> bytes:
        data = b""
        while len(data) < n:
            sock.settimeout(deadline.remaining())
            chunk = sock.recv(n - len(data))
            if not chunk:
                raise self._closed_error(deadline)
            data += chunk
        return data

    def measure_latency(self, deadline: Deadline) -> List[float]:
        seq = itertools.count()
        with self._connect(deadline) as sock:
            def ping() -> float:
                token = TOKEN.pack(next(seq))
                sock.settimeout(deadline.remaining())
                t0 = time.perf_counter()
                try:
                    sock.sendall(token)
                    echoed = self._recv_exactly(sock, len(token), deadline)
                except OSError as e:
                    raise self._translate(e, deadline) from e
                rtt_ms = (time.perf_counter() - t0) * 1000
                if echoed != token:
                    raise ProtocolError(f"{self.address} did not echo the latency probe back")
                return rtt_ms

            return collect_latency(ping, self.latency_samples, deadline)

    def _transfer(self, size: int, deadline: Deadline) -> Tuple[float, float]:
        """Send size bytes and read them back concurrently. Returns (send, receive) seconds."""
        view = memoryview(_payload(size))
        sent = received = 0
        send_done = None
        with self._connect(deadline) as sock, selectors.DefaultSelector() as selector:
            sock.setblocking(False)
            selector.register(sock, selectors.EVENT_READ | selectors.EVENT_WRITE)
            start = time.perf_counter()
            while received < size:
                for _, mask in selector.select(timeout=deadline.remaining()):
                    try:
                        if mask & selectors.EVENT_WRITE and sent < size:
                            sent += sock.send(view[sent:sent + IO_CHUNK_BYTES])
                            if sent == size:
                                send_done = time.perf_counter()
                                selector.modify(sock, selectors.EVENT_READ)
                        if mask & selectors.EVENT_READ:
                            data = sock.recv(IO_CHUNK_BYTES)
                            if not data:
                                raise self._closed_error(deadline)
                            if received + len(data) > sent:
                                raise ProtocolError(f"{self.address} echoed more data than was sent")
                            if view[received:received + len(data)] != data:
                                raise ProtocolError(f"{self.address} echoed data that does not match what was sent")
                            received += len(data)
                    except BlockingIOError:
                        continue
                    except OSError as e:
                        raise self._translate(e, deadline) from e
            recv_done = time.perf_counter()
        return send_done - start, recv_done - start

    def _sample(self, size: int, deadline: Deadline, upload: bool) -> Sample:
        send_s, recv_s = self._transfer(size, deadline)
        seconds = max(send_s if upload else recv_s, 1e-6)
        return (8 * size) / seconds, seconds * 1000

    def measure_download(self, deadline: Deadline) -> float:
        samples = run_schedule(
            lambda size: self._sample(size, deadline, upload=False),
            STAGES, self.sample_duration, deadline, "Download", self.progress,
        )
        bps = throughput(samples, self.bandwidth_percentile, "Download")
        logger.info("Download: %.2f Mbps from %d sample(s)", bps / 1e6, len(samples))
        return bps

    def measure_upload(self, deadline: Deadline) -> float:
        samples = run_schedule(
            lambda size: self._sample(size, deadline, upload=True),
            STAGES, self.sample_duration, deadline, "Upload", self.progress,
        )
        bps = throughput(samples, self.bandwidth_percentile, "Upload")
        logger.info("Upload: %.2f Mbps from %d sample(s)", bps / 1e6, len(samples))
        return bps
