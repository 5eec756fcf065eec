"""Data models for memtop."""

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class Target:
    """What a poll loop observes: the whole system or a single process."""

    pid: int | None = None

    @classmethod
    def system(cls) -> "Target":
        """Target for the system-wide view."""
        return cls(pid=None)

    @classmethod
    def process(cls, pid: int) -> "Target":
        """Target for a single process."""
        return cls(pid=pid)

    @property
    def is_process(self) -> bool:
        """Check if this target names a single process."""
        return self.pid is not None

    def __str__(self) -> str:
        return "system" if self.pid is None else f"pid {self.pid}"


@dataclass(slots=True, frozen=True)
class SystemMemorySnapshot:
    """Immutable snapshot of physical memory status."""

    total_bytes: int
    available_bytes: int
    load_percent: int  # 0 - 100

    @property
    def used_bytes(self) -> int:
        """Used physical memory, never negative for an inconsistent pair."""
        return max(0, self.total_bytes - self.available_bytes)


@dataclass(slots=True, frozen=True)
class ProcessMetrics:
    """Immutable snapshot of a single process's memory and CPU counters."""

    pid: int
    resident_bytes: int  # working set / RSS
    private_bytes: int
    paged_bytes: int
    cpu_seconds: float  # cumulative, user + system
    managed_heap_bytes: int  # traced interpreter heap, 0 for other processes


@dataclass(slots=True, frozen=True)
class UtilizationSample:
    """A point-in-time cumulative CPU reading."""

    at_time: float  # monotonic seconds
    cpu_seconds: float


@dataclass(slots=True, frozen=True)
class UtilizationReading:
    """CPU utilization derived from two consecutive samples."""

    percent: float  # aggregate across all logical processors, clamped
    window_millis: float
    warmup: bool = False


@dataclass(slots=True, frozen=True)
class AllocationHandle:
    """Arena state right after a successful allocation."""

    block_bytes: int
    block_count: int
    held_total_bytes: int


@dataclass(slots=True, frozen=True)
class ReclaimReport:
    """Process metrics immediately before and after a reclamation cycle."""

    before: ProcessMetrics
    after: ProcessMetrics
    collected: int  # unreachable objects found across both passes

    @property
    def resident_delta(self) -> int:
        """Change in resident bytes; negative when memory was returned."""
        return self.after.resident_bytes - self.before.resident_bytes


@dataclass(slots=True, frozen=True)
class MonitorRow:
    """One tick of a poll loop. Missing parts were unavailable this tick."""

    tick: int
    target: Target
    system: SystemMemorySnapshot | None = None
    process: ProcessMetrics | None = None
    cpu: UtilizationReading | None = None
    error: str | None = None

    @property
    def degraded(self) -> bool:
        """Check if any read for this tick failed."""
        return self.error is not None
