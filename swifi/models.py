"""Result of a measurement session"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Status(Enum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"


@dataclass(frozen=True)
class MeasurementResult:
    """Result of one measurement session. None means the value was not measured."""

    timestamp: datetime  # session start, UTC
    download_mbps: Optional[float]
    upload_mbps: Optional[float]
    latency_ms: Optional[float]  # median round trip
    status: Status
    target: str = ""
    protocol: str = ""
    jitter_ms: Optional[float] = None
    latency_samples: Tuple[float, ...] = ()  # ping samples in ms
    client_ip: str = ""
    colo: str = ""
    errors: Tuple[str, ...] = ()  # messages of probes that failed

    @classmethod
    def failed(cls, target: str, protocol: str, error: Exception,
               timestamp: Optional[datetime] = None) -> "MeasurementResult":
        """Record for a session that produced no measurement at all."""
        return cls(
            timestamp=timestamp or datetime.now(timezone.utc),
            download_mbps=None,
            upload_mbps=None,
            latency_ms=None,
            status=Status.FAILED,
            target=target,
            protocol=protocol,
            errors=(str(error),),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "target": self.target,
            "protocol": self.protocol,
            "status": self.status.value,
            "download_mbps": self.download_mbps,
            "upload_mbps": self.upload_mbps,
            "latency_ms": self.latency_ms,
            "jitter_ms": self.jitter_ms,
            "latency_samples": list(self.latency_samples),
            "client_ip": self.client_ip,
            "colo": self.colo,
            "errors": list(self.errors),
        }
