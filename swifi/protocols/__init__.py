"""Measurement protocols: how probes talk to a reference endpoint"""

from ..config import MeasurementConfig, ProtocolVariant
from .base import Progress, Protocol, Stage
from .cloudflare import CloudflareProtocol
from .echo import EchoProtocol

PROTOCOLS = {
    ProtocolVariant.CLOUDFLARE: CloudflareProtocol,
    ProtocolVariant.ECHO: EchoProtocol,
}


def create_protocol(config: MeasurementConfig, progress: Progress = None) -> Protocol:
    protocol_cls = PROTOCOLS[config.protocol_variant]
    return protocol_cls(
        config.target_endpoint,
        sample_duration=config.sample_duration,
        latency_samples=config.latency_samples,
        bandwidth_percentile=config.percentile,
        password=config.password,
        progress=progress,
    )


__all__ = ["PROTOCOLS", "CloudflareProtocol", "EchoProtocol", "Protocol", "Stage", "create_protocol"]
