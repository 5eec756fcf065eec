"""CPU utilization sampling from cumulative processor-time counters."""

import logging
import threading
import time
from collections.abc import Callable

from memtop.config import SAMPLER
from memtop.errors import InvalidArgument
from memtop.models import Target, UtilizationReading, UtilizationSample
from memtop.sources import MetricSource

logger = logging.getLogger(__name__)


class RateSampler:
    """
    Derives CPU% from two consecutive cumulative CPU-time readings per process.

    The first observation of a pid is a warm-up sample: it stores the baseline
    and reports 0%. Percentages are aggregate across all logical processors
    (a process saturating one core of an 8-core host reads ~12.5%).
    """

    def __init__(
        self,
        source: MetricSource,
        clock: Callable[[], float] = time.monotonic,
        max_percent: float = SAMPLER.max_percent,
    ) -> None:
        """
        Initialize the RateSampler.

        Args:
            source: Where cumulative CPU times are read from.
            clock: Monotonic clock in seconds. Injectable for tests.
            max_percent: Upper display bound for a reading.
        """
        self._source = source
        self._clock = clock
        self._max_percent = max_percent
        self._baselines: dict[int, UtilizationSample] = {}
        self._lock = threading.Lock()

    def observe(self, target: Target) -> UtilizationReading:
        """
        Take a CPU sample for ``target`` and compare it to the stored baseline.

        Raises:
            InvalidArgument: If ``target`` is the system-wide view.
            PlatformQueryFailed: If the CPU time could not be read. The
                stored baseline is left untouched.
        """
        if target.pid is None:
            raise InvalidArgument("CPU utilization needs a process target")

        cpu_seconds = self._source.read_cpu_seconds(target.pid)
        now = self._clock()
        current = UtilizationSample(at_time=now, cpu_seconds=cpu_seconds)

        with self._lock:
            previous = self._baselines.get(target.pid)
            if previous is None:
                self._baselines[target.pid] = current
                logger.debug("warm-up sample for %s", target)
                return UtilizationReading(percent=0.0, window_millis=0.0, warmup=True)

            window_millis = (current.at_time - previous.at_time) * 1000.0
            if window_millis <= 0:
                # Clock did not advance; keep the old baseline
                return UtilizationReading(percent=0.0, window_millis=window_millis)

            self._baselines[target.pid] = current

        cpu_millis = (current.cpu_seconds - previous.cpu_seconds) * 1000.0
        processors = self._source.logical_processor_count()
        raw_percent = cpu_millis / (window_millis * processors) * 100.0
        percent = min(self._max_percent, max(SAMPLER.min_percent, raw_percent))
        logger.debug(
            "%s: %.1f%% over %.0fms on %d processors", target, percent, window_millis, processors
        )
        return UtilizationReading(percent=percent, window_millis=window_millis)

    def reset(self, target: Target | None = None) -> None:
        """Forget the baseline for ``target``, or for every target when None."""
        with self._lock:
            if target is None:
                self._baselines.clear()
            elif target.pid is not None:
                self._baselines.pop(target.pid, None)

    def has_baseline(self, target: Target) -> bool:
        with self._lock:
            return target.pid in self._baselines
