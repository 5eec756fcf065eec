"""Forced reclamation with before/after reporting."""

import logging

from memtop.models import ReclaimReport
from memtop.sources import MetricSource, PlatformProvider

logger = logging.getLogger(__name__)


class ReclaimController:
    """Runs collect -> wait for finalizers -> collect around two snapshots."""

    def __init__(self, source: MetricSource, runtime: PlatformProvider | None = None) -> None:
        self._source = source
        self._runtime = runtime if runtime is not None else source.provider

    def reclaim_and_report(self, pid: int) -> ReclaimReport:
        """
        Force a full reclamation cycle and report ``pid``'s metrics around it.

        The second collection reclaims objects whose finalizers ran during the
        wait. A failed snapshot raises PlatformQueryFailed and no report is
        produced.
        """
        before = self._source.read_process_metrics(pid)

        collected = self._runtime.request_collection()
        self._runtime.wait_for_pending_finalizers()
        collected += self._runtime.request_collection()

        after = self._source.read_process_metrics(pid)
        report = ReclaimReport(before=before, after=after, collected=collected)
        logger.info(
            "reclaimed %d objects, resident %d -> %d bytes",
            collected,
            before.resident_bytes,
            after.resident_bytes,
        )
        return report
