"""Platform metric providers and the MetricSource facade."""

import gc
import logging
import os
import time
import tracemalloc
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Protocol

import psutil

from memtop.errors import PlatformQueryFailed
from memtop.models import ProcessMetrics, SystemMemorySnapshot

logger = logging.getLogger(__name__)


class PlatformProvider(Protocol):
    """Raw platform queries consumed by MetricSource and ReclaimController.

    Query methods raise PlatformQueryFailed when the platform reports an error
    or the pid does not resolve to a live process.
    """

    def query_system_memory(self) -> tuple[int, int, int]:
        """Return (total_bytes, available_bytes, load_percent)."""
        ...

    def query_process_memory(self, pid: int) -> tuple[int, int, int]:
        """Return (resident_bytes, private_bytes, paged_bytes)."""
        ...

    def query_process_cpu_time(self, pid: int) -> float:
        """Return cumulative user + system CPU seconds."""
        ...

    def query_managed_heap_bytes(self) -> int: ...

    def query_logical_processor_count(self) -> int: ...

    def request_collection(self) -> int: ...

    def wait_for_pending_finalizers(self) -> None: ...


class PsutilProvider:
    """
    PlatformProvider backed by psutil and the interpreter's gc module.

    Works on every platform psutil supports. Process fields that only exist on
    some platforms (Windows ``private``/``pagefile``) fall back to their
    closest portable equivalent.
    """

    def __init__(self, trace_heap: bool = True) -> None:
        """
        Initialize the provider.

        Args:
            trace_heap: Start tracemalloc so the interpreter heap can be
                reported. When False the heap is reported as 0.
        """
        if trace_heap and not tracemalloc.is_tracing():
            tracemalloc.start()
            logger.debug("tracemalloc started for heap accounting")

    def query_system_memory(self) -> tuple[int, int, int]:
        try:
            mem = psutil.virtual_memory()
        except (psutil.Error, OSError) as exc:
            raise PlatformQueryFailed(f"system memory query failed: {exc}") from exc
        return int(mem.total), int(mem.available), int(round(mem.percent))

    def query_process_memory(self, pid: int) -> tuple[int, int, int]:
        with _translate_errors(pid):
            mem = psutil.Process(pid).memory_info()
        # Windows exposes private/pagefile, Linux exposes data, others only rss/vms
        private = getattr(mem, "private", None)
        if private is None:
            private = getattr(mem, "data", mem.rss)
        paged = getattr(mem, "pagefile", mem.vms)
        return int(mem.rss), int(private), int(paged)

    def query_process_cpu_time(self, pid: int) -> float:
        with _translate_errors(pid):
            times = psutil.Process(pid).cpu_times()
        return float(times.user + times.system)

    def query_managed_heap_bytes(self) -> int:
        if not tracemalloc.is_tracing():
            return 0
        current, _peak = tracemalloc.get_traced_memory()
        return current

    def query_logical_processor_count(self) -> int:
        return psutil.cpu_count(logical=True) or os.cpu_count() or 1

    def request_collection(self) -> int:
        collected = gc.collect()
        logger.debug("gc.collect() found %d unreachable objects", collected)
        return collected

    def wait_for_pending_finalizers(self) -> None:
        # CPython runs finalizers inline during collection; yielding the GIL
        # lets finalizers that other threads are executing run to completion.
        time.sleep(0)


@contextmanager
def _translate_errors(pid: int) -> Iterator[None]:
    """Map psutil failures for a pid to PlatformQueryFailed."""
    try:
        yield
    except psutil.NoSuchProcess as exc:
        raise PlatformQueryFailed(f"process {pid} no longer exists") from exc
    except psutil.AccessDenied as exc:
        raise PlatformQueryFailed(f"access denied to process {pid}") from exc
    except (psutil.Error, OSError, ValueError) as exc:
        raise PlatformQueryFailed(f"process {pid} query failed: {exc}") from exc


class MetricSource:
    """
    Stateless facade over a PlatformProvider.

    Normalizes raw provider tuples into snapshot records. Never retries:
    a PlatformQueryFailed from the provider propagates to the caller.
    """

    def __init__(self, provider: PlatformProvider | None = None) -> None:
        self._provider = provider if provider is not None else PsutilProvider()

    @property
    def provider(self) -> PlatformProvider:
        return self._provider

    def read_system_memory(self) -> SystemMemorySnapshot:
        total, available, load = self._provider.query_system_memory()
        return SystemMemorySnapshot(
            total_bytes=max(0, total),
            available_bytes=max(0, available),
            load_percent=min(100, max(0, load)),
        )

    def read_process_metrics(self, pid: int) -> ProcessMetrics:
        resident, private, paged = self._provider.query_process_memory(pid)
        cpu_seconds = self._provider.query_process_cpu_time(pid)
        heap = self._provider.query_managed_heap_bytes() if pid == os.getpid() else 0
        return ProcessMetrics(
            pid=pid,
            resident_bytes=resident,
            private_bytes=private,
            paged_bytes=paged,
            cpu_seconds=cpu_seconds,
            managed_heap_bytes=heap,
        )

    def read_cpu_seconds(self, pid: int) -> float:
        return self._provider.query_process_cpu_time(pid)

    def logical_processor_count(self) -> int:
        return max(1, self._provider.query_logical_processor_count())
