"""Shared fixtures: an in-memory PlatformProvider and a controllable clock."""

import os

import pytest

from memtop.errors import PlatformQueryFailed
from memtop.sources import MetricSource

MB = 1024 * 1024


class FakeProvider:
    """PlatformProvider with settable readings that records reclamation calls."""

    def __init__(self) -> None:
        self.system = (16 * 1024 * MB, 8 * 1024 * MB, 50)
        self.memory: dict[int, tuple[int, int, int]] = {os.getpid(): (100 * MB, 80 * MB, 120 * MB)}
        self.cpu_seconds: dict[int, float] = {os.getpid(): 1.0}
        self.heap_bytes = 10 * MB
        self.processors = 4
        self.fail_system = False
        self.fail_process = False
        self.calls: list[str] = []
        # Resident bytes to report for os.getpid() after each collection
        self.resident_after_collect: int | None = None

    def query_system_memory(self) -> tuple[int, int, int]:
        if self.fail_system:
            raise PlatformQueryFailed("system memory query failed")
        return self.system

    def query_process_memory(self, pid: int) -> tuple[int, int, int]:
        if self.fail_process or pid not in self.memory:
            raise PlatformQueryFailed(f"process {pid} no longer exists")
        return self.memory[pid]

    def query_process_cpu_time(self, pid: int) -> float:
        if self.fail_process or pid not in self.cpu_seconds:
            raise PlatformQueryFailed(f"process {pid} no longer exists")
        return self.cpu_seconds[pid]

    def query_managed_heap_bytes(self) -> int:
        return self.heap_bytes

    def query_logical_processor_count(self) -> int:
        return self.processors

    def request_collection(self) -> int:
        self.calls.append("collect")
        if self.resident_after_collect is not None:
            _, private, paged = self.memory[os.getpid()]
            self.memory[os.getpid()] = (self.resident_after_collect, private, paged)
        return 3

    def wait_for_pending_finalizers(self) -> None:
        self.calls.append("wait")


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def source(provider: FakeProvider) -> MetricSource:
    return MetricSource(provider)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
