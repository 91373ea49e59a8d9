"""
tests.test_cloudflare - HTTP speed-test worker protocol against a local worker
"""
import pytest
import requests

from swifi.config import MeasurementConfig
from swifi.deadline import Deadline
from swifi.errors import ProtocolError, RateLimitError
from swifi.models import Status
from swifi.protocols.cloudflare import (
    CloudflareProtocol,
    _server_time_ms,
    _upload_bps_from_samples,
)
from swifi.runner import MeasurementRunner

from .conftest import PASSWORD


def _response(status_code=200, **headers):
    r = requests.Response()
    r.status_code = status_code
    r.reason = "Not Found" if status_code == 404 else "OK"
    r.url = "http://127.0.0.1:8080/__down"
    for name, value in headers.items():
        r.headers[name.replace("_", "-")] = value
    return r


def _protocol(endpoint="http://127.0.0.1:8080", **kwargs):
    return CloudflareProtocol(endpoint, sample_duration=0.5, latency_samples=5,
                              bandwidth_percentile=90, **kwargs)


class TestLocalWorker:
    def test_session_succeeds(self, http_endpoint):
        config = MeasurementConfig(target_endpoint=http_endpoint, timeout=10.0, duration=0.5)
        result = MeasurementRunner(config).run()

        assert result.status is Status.SUCCESS
        assert result.protocol == "cloudflare"
        assert result.download_mbps > 0
        assert result.upload_mbps > 0
        assert result.latency_ms is not None
        assert result.colo == "LOCAL"
        assert result.client_ip.startswith("127.0.0.1")

    def test_latency_samples(self, http_endpoint):
        protocol = _protocol(http_endpoint)
        with Deadline(5.0) as deadline:
            samples = protocol.measure_latency(deadline)
        assert len(samples) == 5
        assert all(sample > 0 for sample in samples)

    def test_client_info(self, http_endpoint):
        with Deadline(5.0) as deadline:
            info = _protocol(http_endpoint).client_info(deadline)
        assert info["ip"] == "127.0.0.1"
        assert info["colo"] == "LOCAL"

    def test_client_info_is_best_effort(self, closed_port):
        with Deadline(5.0) as deadline:
            info = _protocol(f"http://127.0.0.1:{closed_port}").client_info(deadline)
        assert info == {"ip": "", "country": "", "colo": "", "org": ""}

    def test_missing_password_is_reported(self, protected_http_endpoint):
        config = MeasurementConfig(target_endpoint=protected_http_endpoint, timeout=5.0, duration=0.5)
        with pytest.raises(ProtocolError, match="password"):
            MeasurementRunner(config).run()

    def test_wrong_password_is_reported(self, protected_http_endpoint):
        with Deadline(5.0) as deadline:
            with pytest.raises(ProtocolError, match="401"):
                _protocol(protected_http_endpoint, password="wrong").measure_latency(deadline)

    def test_password_unlocks_worker(self, protected_http_endpoint):
        config = MeasurementConfig(target_endpoint=protected_http_endpoint, timeout=10.0,
                                   duration=0.5, password=PASSWORD)
        result = MeasurementRunner(config).run()
        assert result.status is Status.SUCCESS

    def test_unknown_path_is_protocol_error(self, http_endpoint):
        config = MeasurementConfig(target_endpoint=f"{http_endpoint}/nothing", timeout=5.0, duration=0.5)
        with pytest.raises(ProtocolError, match="404"):
            MeasurementRunner(config).run()


class TestServerTiming:
    def test_duration_is_parsed(self):
        r = _response(Server_Timing="cfRequestDuration;dur=12.5")
        assert _server_time_ms(r) == 12.5

    def test_sub_millisecond_duration_is_ignored(self):
        assert _server_time_ms(_response(Server_Timing="cfRequestDuration;dur=0.4")) == 0.0

    def test_missing_header(self):
        assert _server_time_ms(_response()) == 0.0


class TestUploadRate:
    def test_average_over_send_period(self):
        samples = [(10.0, 0), (10.25, 500_000), (10.5, 1_000_000)]
        assert _upload_bps_from_samples(samples, 1_000_000) == pytest.approx(16_000_000)

    def test_single_sample_has_no_rate(self):
        assert _upload_bps_from_samples([(1.0, 0)], 100) is None

    def test_zero_send_period_has_no_rate(self):
        assert _upload_bps_from_samples([(1.0, 0), (1.0, 100)], 100) is None


class TestStatusErrors:
    def test_rate_limited(self):
        error = _protocol()._status_error(_response(429, Retry_After="30"))
        assert isinstance(error, RateLimitError)
        assert error.status_code == 429
        assert "Retry-After: 30 seconds" in str(error)

    def test_blocked(self):
        error = _protocol()._status_error(_response(403))
        assert isinstance(error, RateLimitError)
        assert "403" in str(error)

    def test_unauthorized(self):
        error = _protocol()._status_error(_response(401))
        assert not isinstance(error, RateLimitError)
        assert "--password" in str(error)

    def test_not_a_worker(self):
        error = _protocol()._status_error(_response(404))
        assert not isinstance(error, RateLimitError)
        assert "404" in str(error)

    def test_rate_limit_message_without_retry_after(self):
        assert "Retry-After" not in str(RateLimitError(429))
        assert str(RateLimitError(502)) == "HTTP error 502 from endpoint."
