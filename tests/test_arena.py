"""Tests for the PressureArena class."""

import threading

import pytest

from memtop.arena import PressureArena
from memtop.errors import AllocationFailed, InvalidArgument, LimitExceeded

MB = 1024 * 1024


class TestAllocate:
    """Tests for PressureArena.allocate."""

    @pytest.mark.parametrize("megabytes", [1, 3, 16])
    def test_allocate_adds_exact_size(self, megabytes):
        """Test a valid allocation grows the total by exactly the block size."""
        arena = PressureArena()
        arena.allocate(2)
        before = arena.held_total()

        handle = arena.allocate(megabytes)

        assert arena.held_total() == before + megabytes * MB
        assert arena.block_count == 2
        assert handle.block_bytes == megabytes * MB
        assert handle.block_count == 2
        assert handle.held_total_bytes == arena.held_total()

    def test_allocate_at_ceiling(self):
        arena = PressureArena(max_megabytes=4)
        arena.allocate(4)
        assert arena.held_total() == 4 * MB

    @pytest.mark.parametrize("megabytes", [0, -1, -1024])
    def test_non_positive_rejected(self, megabytes):
        """Test non-positive sizes are rejected with no change."""
        arena = PressureArena()
        arena.allocate(1)

        with pytest.raises(InvalidArgument):
            arena.allocate(megabytes)

        assert arena.held_total() == MB
        assert arena.block_count == 1

    @pytest.mark.parametrize("megabytes", [1025, 4096])
    def test_above_ceiling_rejected(self, megabytes):
        """Test sizes above the 1024 MB ceiling are rejected with no change."""
        arena = PressureArena()

        with pytest.raises(LimitExceeded):
            arena.allocate(megabytes)

        assert arena.held_total() == 0
        assert arena.block_count == 0

    @pytest.mark.parametrize("megabytes", [1.5, "10", None, True])
    def test_non_integer_rejected(self, megabytes):
        arena = PressureArena()
        with pytest.raises(InvalidArgument):
            arena.allocate(megabytes)
        assert arena.held_total() == 0

    def test_pages_are_touched(self):
        """Test one byte per page of a new block is written."""
        arena = PressureArena(page_stride=4096)
        arena.allocate(1)
        block = arena._blocks[0]

        assert block[0] == 1
        assert block[4096] == 1
        assert block[1] == 0
        assert sum(block) == MB // 4096

    def test_host_refusal(self, monkeypatch):
        """Test a MemoryError becomes AllocationFailed with no change."""
        arena = PressureArena()

        def refuse(block):
            raise MemoryError

        monkeypatch.setattr(arena, "_commit", refuse)

        with pytest.raises(AllocationFailed):
            arena.allocate(1)
        assert arena.held_total() == 0
        assert arena.block_count == 0


class TestReleaseAll:
    """Tests for PressureArena.release_all."""

    def test_release_returns_sum(self):
        """Test releasing returns everything held and empties the arena."""
        arena = PressureArena()
        for megabytes in (1, 2, 3):
            arena.allocate(megabytes)

        assert arena.release_all() == 6 * MB
        assert arena.held_total() == 0
        assert arena.block_count == 0

    def test_release_empty_arena(self):
        assert PressureArena().release_all() == 0

    def test_allocate_after_release(self):
        arena = PressureArena()
        arena.allocate(2)
        arena.release_all()
        arena.allocate(1)
        assert arena.held_total() == MB
        assert arena.block_count == 1


class TestTouch:
    """Tests for PressureArena.touch."""

    def test_touch_rewrites_pages(self):
        arena = PressureArena()
        arena.allocate(1)
        block = arena._blocks[0]
        block[0] = 0
        block[8192] = 0

        arena.touch()

        assert block[0] == 1
        assert block[8192] == 1

    def test_touch_empty_arena(self):
        PressureArena().touch()


def test_concurrent_accounting():
    """Test the running total matches the block list under concurrent use."""
    arena = PressureArena()

    def worker():
        for _ in range(5):
            arena.allocate(1)
            arena.touch()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert arena.block_count == 20
    assert arena.held_total() == 20 * MB
    assert arena.held_total() == sum(len(block) for block in arena._blocks)
