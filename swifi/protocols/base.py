"""Probe interface and the bulk-transfer schedule shared by all protocols"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..deadline import Deadline
from ..errors import NetworkError, ProbeTimeoutError, ProtocolError, RateLimitError
from ..utils import percentile

logger = logging.getLogger(__name__)

BANDWIDTH_FINISH_REQUEST_DURATION_MS = 1000  # a direction is done once transfers take this long
BANDWIDTH_MIN_REQUEST_DURATION_MS = 10  # shorter transfers are too noisy to count
MAX_CONSECUTIVE_ERRORS = 3

# (bits per second, duration in ms)
Sample = Tuple[float, float]
Progress = Optional[Callable[[], None]]


@dataclass(frozen=True)
class Stage:
    bytes: int
    count: int
    bypass_min_duration: bool = False


class Protocol:
    """
    One way of talking to a reference endpoint.

    Subclasses implement the three probes. Each probe must bound every
    blocking call by ``deadline.remaining()`` and translate transport
    failures into ``NetworkError`` subclasses.
    """

    name = ""

    def __init__(self, endpoint: str, sample_duration: float, latency_samples: int,
                 bandwidth_percentile: float, password: Optional[str] = None,
                 progress: Progress = None):
        self.endpoint = endpoint
        self.progress = progress  # called after every completed bulk transfer
        self.sample_duration = sample_duration
        self.latency_samples = latency_samples
        self.bandwidth_percentile = bandwidth_percentile
        self.password = password

    def measure_latency(self, deadline: Deadline) -> List[float]:
        """Return round-trip samples in milliseconds."""
        raise NotImplementedError

    def measure_download(self, deadline: Deadline) -> float:
        """Return download throughput in bits per second."""
        raise NotImplementedError

    def measure_upload(self, deadline: Deadline) -> float:
        """Return upload throughput in bits per second."""
        raise NotImplementedError

    def client_info(self, deadline: Deadline) -> Dict[str, str]:
        return {}

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


def _fatal(e: NetworkError) -> bool:
    """Timeouts and incompatible endpoints end a probe; anything else is retried."""
    if isinstance(e, ProbeTimeoutError):
        return True
    return isinstance(e, ProtocolError) and not isinstance(e, RateLimitError)


def collect_latency(ping: Callable[[], float], count: int, deadline: Deadline) -> List[float]:
    """Run ping() count times, skipping probes the endpoint dropped. Raises if none succeed."""
    samples: List[float] = []
    last_error: Optional[NetworkError] = None
    for _ in range(count):
        deadline.check()
        try:
            samples.append(ping())
        except NetworkError as e:
            if _fatal(e):
                raise
            logger.debug("Latency probe failed: %s", e)
            last_error = e
    if not samples:
        raise last_error or NetworkError("No latency samples collected")
    return samples


def run_schedule(transfer: Callable[[int], Sample], stages: Sequence[Stage],
                 budget: float, deadline: Deadline, label: str,
                 progress: Progress = None) -> List[Sample]:
    """
    Run transfers stage by stage until the budget is spent.

    A transfer is not started when the previous one predicts it would run past
    the budget or the session deadline. A direction finishes early once the
    fastest transfer of a stage took longer than
    BANDWIDTH_FINISH_REQUEST_DURATION_MS. At least one transfer is always
    attempted. progress(), when given, is called after each completed
    transfer.
    """
    started = time.monotonic()
    samples: List[Sample] = []
    last: Optional[Tuple[int, float]] = None  # (bytes, seconds) of previous transfer
    errors = 0
    last_error: Optional[NetworkError] = None

    for stage in stages:
        min_duration = float("inf")
        for _ in range(stage.count):
            remaining = deadline.remaining()
            spent = time.monotonic() - started
            if samples:
                estimate = last[1] * stage.bytes / last[0] if last else 0.0
                if spent + estimate > budget or estimate >= remaining:
                    logger.debug("%s: sampling budget spent after %.2fs", label, spent)
                    return samples
            try:
                bps, duration_ms = transfer(stage.bytes)
            except NetworkError as e:
                if _fatal(e):
                    raise
                errors += 1
                last_error = e
                logger.warning("%s measurement error: %s (size: %s bytes)", label, e, f"{stage.bytes:,}")
                if errors >= MAX_CONSECUTIVE_ERRORS:
                    if samples:
                        return samples
                    raise
                continue
            errors = 0
            samples.append((bps, duration_ms))
            if progress is not None:
                progress()
            last = (stage.bytes, duration_ms / 1000)
            min_duration = min(min_duration, duration_ms)
        if (not stage.bypass_min_duration and min_duration != float("inf")
                and min_duration > BANDWIDTH_FINISH_REQUEST_DURATION_MS):
            logger.debug("%s: finished at %s bytes", label, f"{stage.bytes:,}")
            break

    if not samples:
        raise last_error or NetworkError(f"{label}: no successful measurements")
    return samples


def throughput(samples: Sequence[Sample], perc: float, label: str = "") -> float:
    """Percentile of the sampled rates, ignoring transfers too short to be meaningful."""
    valid = [bps for bps, duration in samples if bps and duration >= BANDWIDTH_MIN_REQUEST_DURATION_MS]
    if not valid:
        # on very fast links every transfer can finish under the minimum
        valid = [bps for bps, _ in samples if bps]
    if len(valid) < 3:
        logger.warning("%s: Only %d successful measurement(s), results may be less accurate", label, len(valid))
    return percentile(valid, perc)
