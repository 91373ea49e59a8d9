"""Session deadline shared by all probes of one measurement"""

import contextlib
import logging
import socket
import threading
import time
from typing import Iterator, Optional, Set

from .errors import ProbeTimeoutError

logger = logging.getLogger(__name__)


class Deadline:
    """
    Monotonic bound on a measurement session.

    Every blocking call a probe makes uses ``remaining()`` as its timeout, so
    no probe can outlive the session. ``cancel()`` ends the session early and
    shuts down every resource registered with ``guard()``, which wakes probes
    blocked on those resources from another thread.
    """

    def __init__(self, seconds: float):
        if seconds <= 0:
            raise ValueError("timeout must be greater than 0")
        self.seconds = seconds
        self._start = time.monotonic()
        self._end = self._start + seconds
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._guarded: Set[object] = set()
        self._reason = "Measurement cancelled"
        self._expired_message = f"Measurement exceeded timeout of {seconds:g}s"
        self._watchdog: Optional[threading.Timer] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self.cancelled or time.monotonic() >= self._end

    def elapsed(self) -> float:
        return time.monotonic() - self._start

    def time_left(self) -> float:
        return max(0.0, self._end - time.monotonic())

    def remaining(self) -> float:
        """Seconds left in the session; raises ProbeTimeoutError when none are."""
        if self.cancelled:
            raise self.timeout_error()
        left = self._end - time.monotonic()
        if left <= 0:
            raise self.timeout_error()
        return left

    def check(self) -> None:
        self.remaining()

    def timeout_error(self) -> ProbeTimeoutError:
        if self.cancelled and time.monotonic() < self._end:
            return ProbeTimeoutError(self._reason)
        return ProbeTimeoutError(self._expired_message)

    def cancel(self, reason: Optional[str] = None) -> None:
        """Cancel the session and shut down all guarded resources."""
        if reason:
            self._reason = reason
        self._cancelled.set()
        with self._lock:
            guarded = list(self._guarded)
            self._guarded.clear()
        for resource in guarded:
            _shutdown(resource)

    def __enter__(self) -> "Deadline":
        # wakes probes blocked on guarded resources when the timeout passes
        self._watchdog = threading.Timer(self.time_left(), self.cancel, args=(self._expired_message,))
        self._watchdog.daemon = True
        self._watchdog.start()
        return self

    def __exit__(self, *exc_info) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    @contextlib.contextmanager
    def guard(self, resource) -> Iterator:
        """Register a socket or requests.Session for shutdown on cancel()."""
        with self._lock:
            self._guarded.add(resource)
        if self.cancelled:
            _shutdown(resource)
        try:
            yield resource
        finally:
            with self._lock:
                self._guarded.discard(resource)


def _shutdown(resource) -> None:
    if isinstance(resource, socket.socket):
        # shutdown() wakes a thread blocked in recv()/send(); close() alone does not
        try:
            resource.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug("Socket shutdown failed: %s", e)
    else:
        resource.close()
