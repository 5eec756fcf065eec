"""Tests for the RateSampler class."""

import os

import pytest

from memtop.errors import InvalidArgument, PlatformQueryFailed
from memtop.models import Target
from memtop.sampler import RateSampler

SELF = Target.process(os.getpid())


@pytest.fixture
def sampler(source, clock):
    return RateSampler(source, clock=clock)


class TestRateSampler:
    """Tests for RateSampler."""

    def test_first_observation_is_warmup(self, sampler):
        """Test the first call stores a baseline and reports 0%."""
        reading = sampler.observe(SELF)
        assert reading.percent == 0.0
        assert reading.warmup
        assert sampler.has_baseline(SELF)

    def test_no_progress_reads_zero(self, sampler, clock):
        """Test an unchanged CPU counter over a non-zero window reads 0%."""
        sampler.observe(SELF)
        clock.advance(1.0)
        reading = sampler.observe(SELF)
        assert reading.percent == 0.0
        assert reading.window_millis == pytest.approx(1000.0)
        assert not reading.warmup

    def test_full_saturation_reads_hundred(self, sampler, provider, clock):
        """Test CPU time equal to window * processors reads ~100%."""
        sampler.observe(SELF)
        clock.advance(1.0)
        provider.cpu_seconds[os.getpid()] += 1.0 * provider.processors
        assert sampler.observe(SELF).percent == pytest.approx(100.0)

    def test_single_core_on_four_cores(self, sampler, provider, clock):
        """Test one saturated core reads as an aggregate quarter."""
        sampler.observe(SELF)
        clock.advance(2.0)
        provider.cpu_seconds[os.getpid()] += 2.0
        assert sampler.observe(SELF).percent == pytest.approx(25.0)

    def test_percent_is_capped(self, sampler, provider, clock):
        sampler.observe(SELF)
        clock.advance(0.001)
        provider.cpu_seconds[os.getpid()] += 100.0
        assert sampler.observe(SELF).percent == 999.0

    def test_negative_delta_is_floored(self, sampler, provider, clock):
        """Test jitter driving the counter backwards reads 0%, not negative."""
        sampler.observe(SELF)
        clock.advance(1.0)
        provider.cpu_seconds[os.getpid()] -= 0.01
        assert sampler.observe(SELF).percent == 0.0

    def test_zero_window_keeps_baseline(self, sampler, provider, clock):
        """Test a non-advancing clock reads 0% and keeps the previous baseline."""
        sampler.observe(SELF)
        provider.cpu_seconds[os.getpid()] += 2.0
        reading = sampler.observe(SELF)
        assert reading.percent == 0.0
        assert reading.window_millis == 0.0

        # The baseline is still the first sample, so the delta spans both
        clock.advance(1.0)
        assert sampler.observe(SELF).percent == pytest.approx(50.0)

    def test_backwards_clock_keeps_baseline(self, sampler, clock):
        sampler.observe(SELF)
        clock.advance(-1.0)
        reading = sampler.observe(SELF)
        assert reading.percent == 0.0
        assert reading.window_millis < 0

    def test_baseline_advances_after_success(self, sampler, provider, clock):
        """Test each successful reading replaces the baseline."""
        sampler.observe(SELF)
        clock.advance(1.0)
        provider.cpu_seconds[os.getpid()] += 4.0
        assert sampler.observe(SELF).percent == pytest.approx(100.0)

        clock.advance(1.0)
        assert sampler.observe(SELF).percent == 0.0

    def test_targets_are_independent(self, sampler, provider, clock):
        other = Target.process(4242)
        provider.memory[4242] = (1, 1, 1)
        provider.cpu_seconds[4242] = 0.0

        sampler.observe(SELF)
        assert sampler.observe(other).warmup
        assert not sampler.observe(SELF).warmup

    def test_failed_read_leaves_baseline(self, sampler, provider, clock):
        """Test a failed query propagates and does not touch the baseline."""
        sampler.observe(SELF)
        provider.fail_process = True
        clock.advance(1.0)
        with pytest.raises(PlatformQueryFailed):
            sampler.observe(SELF)

        provider.fail_process = False
        provider.cpu_seconds[os.getpid()] += 8.0
        clock.advance(1.0)
        assert sampler.observe(SELF).percent == pytest.approx(100.0)

    def test_system_target_rejected(self, sampler):
        with pytest.raises(InvalidArgument):
            sampler.observe(Target.system())

    def test_reset(self, sampler):
        """Test reset forgets baselines so the next call warms up again."""
        sampler.observe(SELF)
        sampler.reset(SELF)
        assert not sampler.has_baseline(SELF)
        assert sampler.observe(SELF).warmup

        sampler.reset()
        assert not sampler.has_baseline(SELF)
