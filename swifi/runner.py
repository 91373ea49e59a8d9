"""Measurement Runner: one bounded speed-test session against one endpoint"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from .config import MeasurementConfig
from .deadline import Deadline
from .errors import NetworkError, ProbeTimeoutError
from .models import MeasurementResult, Status
from .protocols import Protocol, create_protocol
from .protocols.base import Progress
from .utils import bps_to_mbps, jitter, percentile

logger = logging.getLogger(__name__)

# time given to probe threads to notice a cancelled deadline
CANCEL_GRACE = 0.5
LATENCY_PERCENTILE = 0.5

Probe = Tuple[str, Callable[[Deadline], object]]
Outcome = Union[object, NetworkError]


class MeasurementRunner:
    """
    Run latency, download and upload probes for one MeasurementConfig.

    The primary probe is download when the direction includes it, upload
    otherwise. If it fails, its error is raised. Failures of the other probes
    are reported in a PARTIAL_FAILURE result. A probe hitting the session
    timeout aborts every outstanding probe and raises ProbeTimeoutError.
    """

    def __init__(self, config: MeasurementConfig, progress: Progress = None):
        self.config = config
        self.progress = progress

    @property
    def primary(self) -> str:
        return "download" if self.config.direction.includes_download else "upload"

    def _probes(self, protocol: Protocol) -> List[Probe]:
        probes: List[Probe] = [
            ("info", protocol.client_info),
            ("latency", protocol.measure_latency),
        ]
        if self.config.direction.includes_download:
            probes.append(("download", protocol.measure_download))
        if self.config.direction.includes_upload:
            probes.append(("upload", protocol.measure_upload))
        return probes

    def run(self) -> MeasurementResult:
        config = self.config
        timestamp = datetime.now(timezone.utc)
        logger.info("Testing connection on %s (%s)", config.target_endpoint, config.protocol_variant.value)

        with Deadline(config.timeout) as deadline, create_protocol(config, self.progress) as protocol:
            probes = self._probes(protocol)
            if config.parallel:
                outcomes = self._run_parallel(probes, deadline)
            else:
                outcomes = self._run_sequential(probes, deadline)
        logger.debug("Session finished in %.2fs", deadline.elapsed())
        return self._assemble(timestamp, outcomes)

    def _run_sequential(self, probes: List[Probe], deadline: Deadline) -> Dict[str, Outcome]:
        outcomes: Dict[str, Outcome] = {}
        for name, probe in probes:
            try:
                outcomes[name] = probe(deadline)
            except ProbeTimeoutError:
                raise
            except NetworkError as e:
                if name == self.primary:
                    raise
                logger.warning("%s probe failed: %s", name.capitalize(), e)
                outcomes[name] = e
        return outcomes

    def _run_parallel(self, probes: List[Probe], deadline: Deadline) -> Dict[str, Outcome]:
        executor = ThreadPoolExecutor(max_workers=len(probes), thread_name_prefix="swifi-probe")
        futures = {executor.submit(probe, deadline): name for name, probe in probes}
        try:
            _, pending = wait(futures, timeout=deadline.time_left() + CANCEL_GRACE)
            if pending:
                deadline.cancel()
                raise deadline.timeout_error()
            outcomes: Dict[str, Outcome] = {}
            for future, name in futures.items():
                try:
                    outcomes[name] = future.result()
                except NetworkError as e:
                    outcomes[name] = e
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        for name, outcome in outcomes.items():
            if isinstance(outcome, ProbeTimeoutError):
                deadline.cancel()
                raise outcome
        if isinstance(outcomes[self.primary], NetworkError):
            raise outcomes[self.primary]
        for name, outcome in outcomes.items():
            if isinstance(outcome, NetworkError):
                logger.warning("%s probe failed: %s", name.capitalize(), outcome)
        return outcomes

    def _assemble(self, timestamp: datetime, outcomes: Dict[str, Outcome]) -> MeasurementResult:
        errors: List[str] = []

        def measured(name: str) -> Optional[object]:
            outcome = outcomes.get(name)
            if isinstance(outcome, NetworkError):
                errors.append(f"{name}: {outcome}")
                return None
            return outcome

        download = measured("download")
        upload = measured("upload")
        samples = measured("latency") or []
        info = outcomes.get("info")
        if not isinstance(info, dict):
            info = {}

        client_ip = " ".join(filter(None, (info.get("ip"), info.get("org"), info.get("country"))))
        status = Status.PARTIAL_FAILURE if errors else Status.SUCCESS
        if errors:
            logger.warning("Measurement partially failed: %s", "; ".join(errors))

        return MeasurementResult(
            timestamp=timestamp,
            download_mbps=bps_to_mbps(download) if download is not None else None,
            upload_mbps=bps_to_mbps(upload) if upload is not None else None,
            latency_ms=percentile(samples, LATENCY_PERCENTILE) if samples else None,
            status=status,
            target=self.config.target_endpoint,
            protocol=self.config.protocol_variant.value,
            jitter_ms=jitter(samples) if samples else None,
            latency_samples=tuple(samples),
            client_ip=client_ip,
            colo=info.get("colo", ""),
            errors=tuple(errors),
        )


def execute(config: MeasurementConfig, progress: Progress = None) -> MeasurementResult:
    """
    Run a session, retrying up to ``config.retries`` times.

    With no retries configured the first NetworkError is terminal.
    """
    attempts = config.retries + 1
    for attempt in range(1, attempts + 1):
        try:
            return MeasurementRunner(config, progress).run()
        except NetworkError as e:
            if attempt == attempts:
                raise
            logger.warning("Attempt %d/%d against %s failed: %s", attempt, attempts, config.target_endpoint, e)
            logger.warning("Trying again...")
    raise AssertionError("unreachable")


def execute_any(configs: Sequence[MeasurementConfig], progress: Progress = None) -> MeasurementResult:
    """
    Try each config in turn and return the first result.

    Used when no server was chosen: every candidate server gets a full
    session. The error of the last candidate is raised when all fail.
    """
    if not configs:
        raise LookupError("No servers available for testing")
    for index, config in enumerate(configs):
        try:
            return execute(config, progress)
        except NetworkError as e:
            logger.error("Error with %s: %s", config.target_endpoint, e)
            if index < len(configs) - 1:
                logger.warning("Trying next server...")
            else:
                logger.error("All attempts failed. Please check your connection.")
                raise
    raise AssertionError("unreachable")
