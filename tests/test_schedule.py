"""
tests.test_schedule - Staged bulk transfers and throughput selection
"""
import pytest

from swifi.deadline import Deadline
from swifi.errors import EndpointConnectionError, ProtocolError, RateLimitError
from swifi.protocols.base import MAX_CONSECUTIVE_ERRORS, Stage, run_schedule, throughput


class FakeTransfer:
    def __init__(self, outcomes=None, sample=(8_000_000.0, 20.0)):
        self.outcomes = list(outcomes or [])
        self.sample = sample
        self.sizes = []

    def __call__(self, size):
        self.sizes.append(size)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
        return self.sample


class TestRunSchedule:
    def test_progress_per_completed_transfer(self):
        ticks = []
        transfer = FakeTransfer()
        samples = run_schedule(transfer, [Stage(1000, 3), Stage(2000, 2)], 5.0, Deadline(10.0),
                               "Download", progress=lambda: ticks.append(1))

        assert transfer.sizes == [1000, 1000, 1000, 2000, 2000]
        assert len(samples) == 5
        assert len(ticks) == 5

    def test_failed_transfers_do_not_report_progress(self):
        ticks = []
        transfer = FakeTransfer([EndpointConnectionError("reset")])
        samples = run_schedule(transfer, [Stage(1000, 2)], 5.0, Deadline(10.0), "Upload",
                               progress=lambda: ticks.append(1))

        assert len(samples) == 1
        assert len(ticks) == 1

    def test_slow_stage_finishes_direction(self):
        transfer = FakeTransfer(sample=(8_000_000.0, 1500.0))
        run_schedule(transfer, [Stage(1000, 1), Stage(2000, 1)], 100.0, Deadline(10.0), "Download")
        assert transfer.sizes == [1000]

    def test_consecutive_errors_raise(self):
        transfer = FakeTransfer([EndpointConnectionError("reset")] * MAX_CONSECUTIVE_ERRORS)
        with pytest.raises(EndpointConnectionError):
            run_schedule(transfer, [Stage(1000, 5)], 5.0, Deadline(10.0), "Download")
        assert len(transfer.sizes) == MAX_CONSECUTIVE_ERRORS

    def test_incompatible_endpoint_stops_at_once(self):
        transfer = FakeTransfer([ProtocolError("HTTP error 404")])
        with pytest.raises(ProtocolError):
            run_schedule(transfer, [Stage(1000, 5)], 5.0, Deadline(10.0), "Download")
        assert len(transfer.sizes) == 1

    def test_rate_limit_is_retried(self):
        transfer = FakeTransfer([RateLimitError(429)])
        samples = run_schedule(transfer, [Stage(1000, 2)], 5.0, Deadline(10.0), "Download")
        assert len(samples) == 1


class TestThroughput:
    def test_short_samples_ignored(self):
        samples = [(100.0, 5.0), (10.0, 20.0), (20.0, 30.0)]
        assert throughput(samples, 100) == 20.0

    def test_falls_back_to_short_samples(self):
        assert throughput([(100.0, 5.0), (200.0, 2.0)], 100) == 200.0
