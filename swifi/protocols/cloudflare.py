"""
Cloudflare-style speed test over HTTP. Same measurement formulas as the
speed.cloudflare.com website where comparable. Download = payload bytes /
payload time. Upload = chunked body; we record (time, offset) per chunk and
use average bps over the full send period (first to last sample) so the result
reflects network speed rather than kernel acceptance spikes. Ping = TTFB minus
server time (or TTFB).

Auth: 401 is always raised as ProtocolError (never skipped in probe loops) so
the run fails fast with a clear message instead of appearing to hang.
"""

import contextlib
import logging
import re
import time
from typing import Dict, Iterator, List, Optional, Tuple

import requests

from ..deadline import Deadline
from ..errors import (
    EndpointConnectionError,
    NetworkError,
    ProbeTimeoutError,
    ProtocolError,
    RateLimitError,
)
from .base import Progress, Protocol, Sample, Stage, collect_latency, run_schedule, throughput

logger = logging.getLogger(__name__)

DOWNLOAD_STAGES = [
    Stage(100_000, 1, bypass_min_duration=True),  # initial estimation
    Stage(100_000, 9),
    Stage(1_000_000, 8),
    Stage(10_000_000, 6),
    Stage(25_000_000, 4),
    Stage(100_000_000, 3),
    Stage(250_000_000, 2),
]

UPLOAD_STAGES = [
    Stage(100_000, 8),
    Stage(1_000_000, 6),
    Stage(10_000_000, 4),
    Stage(25_000_000, 4),
    Stage(50_000_000, 3),
]

DOWNLOAD_CHUNK_BYTES = 65536
# Chunk size for upload: time between yields reflects when the library is ready
# for more data (previous chunk sent). 256KB gives ~20ms intervals at 100 Mbps.
UPLOAD_CHUNK_BYTES = 256 * 1024

_PATTERN = bytes((i * 31) & 0xFF for i in range(256))


def _server_time_ms(r: requests.Response) -> float:
    st = r.headers.get("Server-Timing") or ""
    m = re.search(r"dur=([0-9.]+)", st)
    if not m:
        return 0.0
    try:
        dur = float(m.group(1))
    except ValueError:
        return 0.0
    return dur if dur >= 1 else 0.0


def _upload_body(size: int) -> bytes:
    if size <= 0:
        return b""
    return (_PATTERN * (size // len(_PATTERN) + 1))[:size]


def _upload_body_chunked(body: bytes, samples: List[Tuple[float, int]],
                         deadline: Deadline) -> Iterator[bytes]:
    """Yield body in chunks; record (time, cumulative_bytes) before each yield. The library asks for the next chunk when the previous has been sent, so time deltas reflect upload speed."""
    offset = 0
    n = len(body)
    while offset < n:
        deadline.check()
        samples.append((time.perf_counter(), offset))
        end = min(offset + UPLOAD_CHUNK_BYTES, n)
        chunk = body[offset:end]
        offset = end
        yield chunk
    samples.append((time.perf_counter(), n))


def _upload_bps_from_samples(samples: List[Tuple[float, int]], bytes_req: int) -> Optional[float]:
    """Average upload bps over the full send period (first to last sample). Samples reflect
    when the library asked for the next chunk, so instantaneous rates can be inflated by
    kernel buffer acceptance; the average over the send period is a better proxy."""
    if len(samples) < 2:
        return None
    send_duration_sec = samples[-1][0] - samples[0][0]
    if send_duration_sec <= 0:
        return None
    return (8 * bytes_req) / send_duration_sec


def _response_socket(r: requests.Response):
    """Socket under a streamed response, so cancel() can interrupt a blocked read."""
    conn = getattr(r.raw, "connection", None) or getattr(r.raw, "_connection", None)
    return getattr(conn, "sock", None)


class CloudflareProtocol(Protocol):
    """Speed test against a Cloudflare speed-test worker (``__down``, ``__up``, ``getIP``)."""

    name = "cloudflare"

    def __init__(self, endpoint: str, sample_duration: float, latency_samples: int,
                 bandwidth_percentile: float, password: Optional[str] = None, progress: Progress = None):
        super().__init__(endpoint, sample_duration, latency_samples, bandwidth_percentile, password, progress)
        self.base_url = endpoint.strip().rstrip("/")
        # server only checks the password
        self.auth = ("", password) if password is not None else None

    def _translate(self, e: requests.RequestException, deadline: Deadline) -> NetworkError:
        if deadline.expired:
            return deadline.timeout_error()
        if isinstance(e, requests.Timeout):
            return ProbeTimeoutError(f"Request to {self.base_url} timed out: {e}")
        if isinstance(e, (requests.ConnectionError, requests.exceptions.ChunkedEncodingError)):
            return EndpointConnectionError(f"Cannot reach {self.base_url}: {e}")
        return ProtocolError(f"Request to {self.base_url} failed: {e}")

    def _status_error(self, r: requests.Response) -> ProtocolError:
        if r.status_code == 401:
            return ProtocolError("401 Unauthorized: server requires a password. Use --password.")
        if r.status_code in (403, 429):
            return RateLimitError(r.status_code, r.headers.get("Retry-After"))
        return ProtocolError(
            f"HTTP error {r.status_code} ({r.reason}) from {r.url}; "
            "endpoint does not look like a speed-test worker"
        )

    def _fetch(self, session: requests.Session, method: str, path: str, deadline: Deadline,
               stream: bool = False, params: Optional[Dict] = None, data=None) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            r = session.request(
                method, url, auth=self.auth, timeout=deadline.remaining(),
                stream=stream, params=params, data=data,
            )
        except requests.RequestException as e:
            raise self._translate(e, deadline) from e
        if r.status_code >= 400:
            error = self._status_error(r)
            r.close()
            raise error
        return r

    @contextlib.contextmanager
    def _session(self, deadline: Deadline) -> Iterator[requests.Session]:
        with requests.Session() as session, deadline.guard(session):
            yield session

    @contextlib.contextmanager
    def _guard_response(self, r: requests.Response, deadline: Deadline) -> Iterator[None]:
        sock = _response_socket(r)
        if sock is None:
            yield
            return
        with deadline.guard(sock):
            yield

    def _ping(self, session: requests.Session, deadline: Deadline) -> float:
        t0 = time.perf_counter()
        r = self._fetch(session, "GET", "/__down", deadline, stream=True,
                        params={"bytes": "0", "r": time.perf_counter()})
        with r:
            ttfb_ms = (time.perf_counter() - t0) * 1000
            server_ms = _server_time_ms(r)
            try:
                r.content  # consume body so connection is released (avoids pool hang)
            except requests.RequestException as e:
                raise self._translate(e, deadline) from e
        if server_ms >= 1:
            return max(0.01, ttfb_ms - server_ms)
        return max(0.01, ttfb_ms)

    def measure_latency(self, deadline: Deadline) -> List[float]:
        with self._session(deadline) as session:
            return collect_latency(lambda: self._ping(session, deadline), self.latency_samples, deadline)

    def _download_once(self, session: requests.Session, deadline: Deadline, bytes_req: int) -> Sample:
        r = self._fetch(session, "GET", "/__down", deadline, stream=True,
                        params={"bytes": str(bytes_req), "r": time.perf_counter()})
        received = 0
        with r, self._guard_response(r, deadline):
            t0 = time.perf_counter()
            try:
                for chunk in r.iter_content(chunk_size=DOWNLOAD_CHUNK_BYTES):
                    received += len(chunk)
                    deadline.check()
            except requests.RequestException as e:
                raise self._translate(e, deadline) from e
            payload_ms = max((time.perf_counter() - t0) * 1000, 1)
        if bytes_req and not received:
            raise ProtocolError(f"{self.base_url} returned no payload for a {bytes_req:,} byte download")
        return (8 * received) / (payload_ms / 1000), payload_ms

    def measure_download(self, deadline: Deadline) -> float:
        with self._session(deadline) as session:
            samples = run_schedule(
                lambda size: self._download_once(session, deadline, size),
                DOWNLOAD_STAGES, self.sample_duration, deadline, "Download", self.progress,
            )
        bps = throughput(samples, self.bandwidth_percentile, "Download")
        logger.info("Download: %.2f Mbps from %d sample(s)", bps / 1e6, len(samples))
        return bps

    def _upload_once(self, session: requests.Session, deadline: Deadline, bytes_req: int) -> Sample:
        body = _upload_body(bytes_req)
        samples: List[Tuple[float, int]] = []
        chunked = _upload_body_chunked(body, samples, deadline)
        t0 = time.perf_counter()
        r = self._fetch(session, "POST", "/__up", deadline, data=chunked,
                        params={"r": time.perf_counter()})
        with r:
            try:
                r.content
            except requests.RequestException as e:
                raise self._translate(e, deadline) from e
        dur_ms = max((time.perf_counter() - t0) * 1000, 1)
        bps = _upload_bps_from_samples(samples, bytes_req)
        if bps is None:
            bps = (8 * bytes_req) / (dur_ms / 1000)
        return bps, dur_ms

    def measure_upload(self, deadline: Deadline) -> float:
        with self._session(deadline) as session:
            samples = run_schedule(
                lambda size: self._upload_once(session, deadline, size),
                UPLOAD_STAGES, self.sample_duration, deadline, "Upload", self.progress,
            )
        bps = throughput(samples, self.bandwidth_percentile, "Upload")
        logger.info("Upload: %.2f Mbps from %d sample(s)", bps / 1e6, len(samples))
        return bps

    def client_info(self, deadline: Deadline) -> Dict[str, str]:
        """Best effort lookup of client IP and serving colo; only timeouts propagate."""
        empty = {"ip": "", "country": "", "colo": "", "org": ""}
        try:
            with self._session(deadline) as session:
                r = self._fetch(session, "GET", "/getIP", deadline)
                with r:
                    d = r.json()
        except ProbeTimeoutError:
            raise
        except NetworkError as e:
            logger.debug("getIP failed: %s", e)
            return empty
        except ValueError as e:
            logger.debug("getIP returned invalid JSON: %s", e)
            return empty
        if not isinstance(d, dict):
            return empty
        return {k: str(d.get(k) or "") for k in empty}
