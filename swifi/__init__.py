"""swifi - wifi speed test: download, upload and latency against a reference endpoint"""

__version__ = "1.0.0"

from .config import Direction, MeasurementConfig, ProtocolVariant
from .errors import (
    EndpointConnectionError,
    NetworkError,
    ProbeTimeoutError,
    ProtocolError,
    RateLimitError,
)
from .logging_setup import set_log_level, silence_warnings
from .models import MeasurementResult, Status
from .runner import MeasurementRunner, execute, execute_any
from .utils import percentile

__all__ = [
    'Direction',
    'EndpointConnectionError',
    'MeasurementConfig',
    'MeasurementResult',
    'MeasurementRunner',
    'NetworkError',
    'ProbeTimeoutError',
    'ProtocolError',
    'ProtocolVariant',
    'RateLimitError',
    'Status',
    'execute',
    'execute_any',
    'percentile',
    'set_log_level',
    'silence_warnings',
]
