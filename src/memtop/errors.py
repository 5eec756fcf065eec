"""Exception types raised by memtop."""


class MemtopError(Exception):
    """Base class for every error memtop reports to its caller."""


class PlatformQueryFailed(MemtopError):
    """A platform query failed or the target process no longer exists.

    Transient: callers may retry on the next tick.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class InvalidArgument(MemtopError):
    """A caller-supplied size, duration or target is outside the accepted domain."""


class LimitExceeded(MemtopError):
    """An allocation request is above the safety ceiling."""


class AllocationFailed(MemtopError):
    """The host refused to provide the requested memory."""
