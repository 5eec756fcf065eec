"""Fixed-cadence polling of system and process metrics for memtop."""

import itertools
import logging
import threading
from collections.abc import Callable
from queue import Queue

from memtop.arena import PressureArena
from memtop.config import MONITOR
from memtop.errors import InvalidArgument, PlatformQueryFailed
from memtop.models import (
    MonitorRow,
    ProcessMetrics,
    SystemMemorySnapshot,
    Target,
    UtilizationReading,
)
from memtop.sampler import RateSampler
from memtop.sources import MetricSource

logger = logging.getLogger(__name__)

MIN_BACKGROUND_INTERVAL = 0.1


def _check_ticks(ticks: int) -> None:
    if isinstance(ticks, bool) or not isinstance(ticks, int) or ticks < 1:
        raise InvalidArgument(f"ticks must be a positive integer, got {ticks!r}")


class PollLoop:
    """
    Samples a target once per tick and emits one MonitorRow per tick.

    A failed read never ends the loop: the tick produces a degraded row and
    the next tick retries. Cancellation is checked between ticks only, so a
    row that has started is always emitted.

    The loop either runs on the calling thread (run) or on a daemon thread
    that pushes rows into a thread-safe Queue (start/stop).
    """

    def __init__(
        self,
        source: MetricSource,
        sampler: RateSampler | None = None,
        arena: PressureArena | None = None,
        interval: float = MONITOR.interval,
        sleep: Callable[[float], object] | None = None,
    ) -> None:
        """
        Initialize the PollLoop.

        Args:
            source: Metric source read on every tick.
            sampler: CPU sampler for process targets. One is created if omitted.
            arena: Pressure arena whose blocks are re-touched every tick.
            interval: Default seconds between ticks.
            sleep: Replacement for the between-tick wait. Defaults to an
                interruptible wait on the cancellation event.
        """
        self.interval = interval
        self._source = source
        self._sampler = sampler if sampler is not None else RateSampler(source)
        self._arena = arena
        self._sleep = sleep
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def interval(self) -> float:
        """Get the current interval between ticks."""
        return self._interval

    @interval.setter
    def interval(self, value: float) -> None:
        """Set the interval used by the background loop (minimum 0.1s)."""
        if value < 0:
            raise InvalidArgument(f"interval must not be negative, got {value}")
        self._interval = max(MIN_BACKGROUND_INTERVAL, value)

    @property
    def sampler(self) -> RateSampler:
        """Get the CPU sampler used for process targets."""
        return self._sampler

    @property
    def is_running(self) -> bool:
        """Check if the background thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def run(
        self,
        ticks: int,
        interval: float | None = None,
        target: Target | None = None,
        on_row: Callable[[MonitorRow], object] | None = None,
    ) -> list[MonitorRow]:
        """
        Run ``ticks`` ticks on the calling thread.

        Args:
            ticks: Number of rows to produce; the loop stops after exactly this
                many unless cancelled.
            interval: Seconds to wait between ticks. Defaults to the loop's interval.
            target: System-wide (default) or single-process view.
            on_row: Called with each row as soon as it is complete.

        Returns:
            The emitted rows in tick order.
        """
        _check_ticks(ticks)
        wait = self._interval if interval is None else interval
        if wait < 0:
            raise InvalidArgument(f"interval must not be negative, got {wait}")

        rows: list[MonitorRow] = []

        def emit(row: MonitorRow) -> None:
            rows.append(row)
            if on_row is not None:
                on_row(row)

        self._stop_event.clear()
        self._tick_loop(target or Target.system(), emit, ticks, lambda: wait)
        return rows

    def cancel(self) -> None:
        """Stop the loop at the next tick boundary."""
        self._stop_event.set()

    def start(
        self,
        update_queue: Queue[MonitorRow],
        target: Target | None = None,
        ticks: int | None = None,
    ) -> None:
        """
        Start polling on a daemon thread, pushing rows into ``update_queue``.

        Runs until stop() when ``ticks`` is None. The interval property is
        re-read on every tick.
        """
        if ticks is not None:
            _check_ticks(ticks)
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._background_loop,
            args=(target or Target.system(), update_queue.put, ticks),
            daemon=True,
            name="PollLoop",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the background thread.

        Args:
            timeout: How long to wait for the thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _background_loop(
        self, target: Target, emit: Callable[[MonitorRow], object], ticks: int | None
    ) -> None:
        self._tick_loop(target, emit, ticks, lambda: self._interval, self._guarded_row)

    def _guarded_row(self, tick: int, target: Target) -> MonitorRow:
        """Collect a row, turning any unexpected failure into a degraded row."""
        try:
            return self._collect_row(tick, target)
        except Exception as exc:
            logger.exception("tick %d for %s failed", tick, target)
            return MonitorRow(tick=tick, target=target, error=str(exc) or type(exc).__name__)

    def _tick_loop(
        self,
        target: Target,
        emit: Callable[[MonitorRow], object],
        ticks: int | None,
        interval: Callable[[], float],
        collect: Callable[[int, Target], MonitorRow] | None = None,
    ) -> None:
        collect = collect or self._collect_row
        for tick in itertools.count(1):
            emit(collect(tick, target))
            if ticks is not None and tick >= ticks:
                return
            if self._stop_event.is_set():
                break
            self._wait(interval())
            if self._stop_event.is_set():
                break
        logger.debug("poll loop for %s cancelled after tick %d", target, tick)

    def _wait(self, seconds: float) -> None:
        if self._sleep is not None:
            self._sleep(seconds)
        else:
            self._stop_event.wait(timeout=seconds)

    def _collect_row(self, tick: int, target: Target) -> MonitorRow:
        """Read everything one tick needs; failed reads leave their field empty."""
        if self._arena is not None:
            self._arena.touch()

        errors: list[str] = []
        system: SystemMemorySnapshot | None = None
        process: ProcessMetrics | None = None
        cpu: UtilizationReading | None = None

        try:
            system = self._source.read_system_memory()
        except PlatformQueryFailed as exc:
            errors.append(exc.reason)

        if target.pid is not None:
            try:
                cpu = self._sampler.observe(target)
            except PlatformQueryFailed as exc:
                errors.append(exc.reason)
            try:
                process = self._source.read_process_metrics(target.pid)
            except PlatformQueryFailed as exc:
                errors.append(exc.reason)

        error = "; ".join(dict.fromkeys(errors)) or None
        if error is not None:
            logger.warning("tick %d for %s degraded: %s", tick, target, error)
        else:
            logger.debug("tick %d for %s collected", tick, target)

        return MonitorRow(
            tick=tick,
            target=target,
            system=system,
            process=process,
            cpu=cpu,
            error=error,
        )
