"""Synthetic memory pressure: allocate-and-hold blocks of committed memory."""

import logging
import threading

from memtop.config import MEGABYTE, PRESSURE
from memtop.errors import AllocationFailed, InvalidArgument, LimitExceeded
from memtop.models import AllocationHandle

logger = logging.getLogger(__name__)


class PressureArena:
    """
    Owns a list of held memory blocks and a running total of their size.

    Blocks stay referenced until release_all(). Every page of a block is
    written on allocation so the memory shows up as resident, not merely
    reserved.
    """

    def __init__(
        self,
        max_megabytes: int = PRESSURE.max_megabytes,
        page_stride: int = PRESSURE.page_stride,
    ) -> None:
        self._max_megabytes = max_megabytes
        self._page_stride = page_stride
        self._blocks: list[bytearray] = []
        self._held_total = 0
        self._lock = threading.Lock()

    @property
    def max_megabytes(self) -> int:
        """Get the largest allocation accepted in one call."""
        return self._max_megabytes

    @property
    def block_count(self) -> int:
        """Get the number of blocks currently held."""
        with self._lock:
            return len(self._blocks)

    def held_total(self) -> int:
        """Bytes currently held across all blocks."""
        with self._lock:
            return self._held_total

    def allocate(self, megabytes: int) -> AllocationHandle:
        """
        Allocate a block of ``megabytes`` MiB, commit its pages and hold it.

        Raises:
            InvalidArgument: ``megabytes`` is not a positive integer.
            LimitExceeded: ``megabytes`` is above the ceiling.
            AllocationFailed: The host could not provide the memory.
        """
        if isinstance(megabytes, bool) or not isinstance(megabytes, int):
            raise InvalidArgument(f"megabytes must be an integer, got {megabytes!r}")
        if megabytes <= 0:
            raise InvalidArgument(f"megabytes must be positive, got {megabytes}")
        if megabytes > self._max_megabytes:
            raise LimitExceeded(
                f"{megabytes} MB is above the {self._max_megabytes} MB allocation limit"
            )

        size = megabytes * MEGABYTE
        try:
            block = bytearray(size)
            # Touch one byte per page so the pages are committed
            self._commit(block)
        except MemoryError as exc:
            raise AllocationFailed(f"could not allocate {megabytes} MB") from exc

        with self._lock:
            self._blocks.append(block)
            self._held_total += size
            handle = AllocationHandle(
                block_bytes=size,
                block_count=len(self._blocks),
                held_total_bytes=self._held_total,
            )
        logger.info(
            "allocated %d MB, holding %d block(s), %d bytes",
            megabytes,
            handle.block_count,
            handle.held_total_bytes,
        )
        return handle

    def release_all(self) -> int:
        """
        Drop every held block and return the number of bytes that were held.

        References are released, but the memory may remain resident until
        the next reclamation cycle.
        """
        with self._lock:
            freed = self._held_total
            self._blocks = []
            self._held_total = 0
        logger.info("released %d bytes of held memory; RAM may not drop until gc runs", freed)
        return freed

    def touch(self) -> None:
        """Rewrite one byte per page of every held block."""
        with self._lock:
            blocks = list(self._blocks)
        for block in blocks:
            self._commit(block)

    def _commit(self, block: bytearray) -> None:
        stride = self._page_stride
        block[::stride] = b"\x01" * len(range(0, len(block), stride))
