"""Errors raised by measurement sessions"""

from typing import Optional


class NetworkError(Exception):
    """Base class for every failure of a measurement session"""


class EndpointConnectionError(NetworkError, ConnectionError):
    """The endpoint could not be reached (refused, unresolvable, reset)"""


class ProbeTimeoutError(NetworkError, TimeoutError):
    """A probe exceeded the configured session timeout or was cancelled"""


class ProtocolError(NetworkError):
    """The endpoint answered, but not like a compatible speed-test endpoint"""


class RateLimitError(ProtocolError):
    """Raised when the speed-test endpoint rate limits the requests"""
    def __init__(self, status_code: int, retry_after: Optional[str] = None, message: str = ""):
        self.status_code = status_code
        self.retry_after = retry_after
        if not message:
            if status_code == 429:
                retry_msg = f" Retry-After: {retry_after} seconds." if retry_after else ""
                message = f"Rate limited (429) by endpoint.{retry_msg} Too many requests made too quickly."
            elif status_code == 403:
                message = "Request blocked (403) by endpoint. Rate limit exceeded or IP blocked."
            else:
                message = f"HTTP error {status_code} from endpoint."
        super().__init__(message)
