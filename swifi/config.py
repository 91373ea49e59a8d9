"""Measurement configuration, built once from command-line flags"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple
from urllib.parse import urlsplit

DEFAULT_TIMEOUT = 30.0
DEFAULT_LATENCY_SAMPLES = 20
DEFAULT_PERCENTILE = 90.0
DEFAULT_ECHO_PORT = 7
# Share of the session timeout each bulk probe may spend sampling
DEFAULT_DURATION_FRACTION = 0.35


class Direction(Enum):
    """Which bulk probes to run."""
    DOWNLOAD = "download"
    UPLOAD = "upload"
    BOTH = "both"

    @classmethod
    def from_flags(cls, down: bool, up: bool) -> "Direction":
        if down and not up:
            return cls.DOWNLOAD
        if up and not down:
            return cls.UPLOAD
        return cls.BOTH

    @property
    def includes_download(self) -> bool:
        return self in (Direction.DOWNLOAD, Direction.BOTH)

    @property
    def includes_upload(self) -> bool:
        return self in (Direction.UPLOAD, Direction.BOTH)


class ProtocolVariant(Enum):
    AUTO = "auto"
    CLOUDFLARE = "cloudflare"
    ECHO = "echo"

    @classmethod
    def for_endpoint(cls, endpoint: str) -> "ProtocolVariant":
        """http(s) URLs speak the Cloudflare API, everything else is a TCP echo service."""
        scheme = endpoint.strip().split("://", 1)[0].lower() if "://" in endpoint else ""
        if scheme in ("http", "https"):
            return cls.CLOUDFLARE
        return cls.ECHO


def parse_host_port(endpoint: str, default_port: int = DEFAULT_ECHO_PORT,
                    allow_any_port: bool = False) -> Tuple[str, int]:
    """
    Split an echo endpoint into host and port.

    Accepts ``host``, ``host:port``, ``[v6addr]:port`` and an optional
    ``tcp://`` prefix. Port 0 (any free port) is only accepted with
    ``allow_any_port``, for bind addresses. Raises ValueError for anything else.
    """
    text = endpoint.strip()
    if text.lower().startswith("tcp://"):
        text = text[len("tcp://"):]
    text = text.rstrip("/")
    if "://" in text:
        raise ValueError(f"Unsupported scheme for echo endpoint: {endpoint!r}")

    if text.startswith("["):
        host, _, rest = text[1:].partition("]")
        port_text = rest[1:] if rest.startswith(":") else ""
    elif text.count(":") == 1:
        host, port_text = text.split(":")
    else:
        # bare host or bare IPv6 address
        host, port_text = text, ""

    if not host:
        raise ValueError(f"Endpoint has no host: {endpoint!r}")
    if not port_text:
        return host, default_port
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"Invalid port in endpoint {endpoint!r}") from None
    lowest = 0 if allow_any_port else 1
    if not lowest <= port < 65536:
        raise ValueError(f"Port out of range in endpoint {endpoint!r}")
    return host, port


def normalize_base_url(endpoint: str) -> str:
    text = endpoint.strip().rstrip("/")
    if "://" not in text:
        text = f"https://{text}"
    parts = urlsplit(text)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"Invalid speed-test URL: {endpoint!r}")
    return text


@dataclass(frozen=True)
class MeasurementConfig:
    """
    Everything one measurement session needs.

    ``protocol_variant=AUTO`` is resolved from the endpoint on construction,
    so a built config always names a concrete protocol.
    """

    target_endpoint: str
    timeout: float = DEFAULT_TIMEOUT
    protocol_variant: ProtocolVariant = ProtocolVariant.AUTO
    direction: Direction = Direction.BOTH
    duration: Optional[float] = None
    latency_samples: int = DEFAULT_LATENCY_SAMPLES
    percentile: float = DEFAULT_PERCENTILE
    password: Optional[str] = None
    parallel: bool = False
    retries: int = 0

    def __post_init__(self):
        if not self.target_endpoint or not str(self.target_endpoint).strip():
            raise ValueError("target endpoint is required")
        if self.timeout <= 0:
            raise ValueError("timeout must be greater than 0")
        if self.duration is not None and not 0 < self.duration <= self.timeout:
            raise ValueError("duration must be greater than 0 and no longer than timeout")
        if self.latency_samples <= 0:
            raise ValueError("latency samples must be greater than 0")
        if not 0 <= self.percentile <= 100:
            raise ValueError("percentile must be between 0 and 100")
        if self.retries < 0:
            raise ValueError("retries cannot be negative")

        variant = self.protocol_variant
        if variant is ProtocolVariant.AUTO:
            variant = ProtocolVariant.for_endpoint(self.target_endpoint)
            object.__setattr__(self, "protocol_variant", variant)

        if variant is ProtocolVariant.CLOUDFLARE:
            object.__setattr__(self, "target_endpoint", normalize_base_url(self.target_endpoint))
        else:
            parse_host_port(self.target_endpoint)
            object.__setattr__(self, "target_endpoint", self.target_endpoint.strip())

    @property
    def sample_duration(self) -> float:
        """Sampling budget of each bulk probe, in seconds."""
        if self.duration is not None:
            return self.duration
        return self.timeout * DEFAULT_DURATION_FRACTION
