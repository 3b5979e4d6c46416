"""
Drains the offline queue into the remote service-record store.
"""

import logging
import threading

from pool_scheduler.models import RemoteRejected
from pool_scheduler.models import RemoteUnavailable
from pool_scheduler.models import SyncFailure
from pool_scheduler.models import SyncReport
from pool_scheduler.models import SyncState
from pool_scheduler.offline_queue import OfflineQueue
from pool_scheduler.stores import NotificationSink
from pool_scheduler.stores import ServiceRecordStore
from pool_scheduler.sync.connectivity import ConnectivitySignal


class SyncCoordinator:
    """
    Sequential, exclusive drain of the offline queue.

    A run captures the ids queued when it starts and processes them one at a
    time: confirmed commits are removed, failures stay queued as ``failed``
    for the next trigger.  A trigger that arrives while a run is draining is
    coalesced into a no-op.
    """

    def __init__(
        self,
        queue: OfflineQueue,
        remote: ServiceRecordStore,
        notifier: NotificationSink | None = None,
        timeout: float = 15.0,
    ):
        self.queue = queue
        self.remote = remote
        self.notifier = notifier
        self.timeout = timeout
        self.state = SyncState.IDLE
        self.last_report: SyncReport | None = None
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._draining = False

    def attach(self, signal: ConnectivitySignal):
        """Sync once on every offline→online transition of ``signal``."""
        signal.subscribe(self.on_connectivity_change)

    def on_connectivity_change(self, online: bool):
        if online:
            self.logger.info("Back online, syncing queued service records...")
            self.sync()

    def sync(self) -> SyncReport | None:
        """Run one drain; returns None when a drain was already in progress."""
        with self._lock:
            if self._draining:
                self.logger.info("Sync already in progress; trigger coalesced")
                return None
            self._draining = True
            self.state = SyncState.DRAINING

        report = SyncReport()
        try:
            snapshot = [record.id for record in self.queue.list()]
            self.logger.info(f"Syncing {len(snapshot)} queued service record(s)...")
            for record_id in snapshot:
                self._sync_one(record_id, report)
        finally:
            with self._lock:
                self._draining = False
                self.state = report.outcome

        self.last_report = report
        self.logger.info(f"Sync complete: {report.summary()}")
        self._notify(report)
        return report

    def _sync_one(self, record_id: str, report: SyncReport):
        record = self.queue.get(record_id)
        if record is None:
            # Removed since the snapshot was taken (e.g. a manual clear).
            report.skipped.append(record_id)
            return

        try:
            result = self.remote.upsert_service_record(record.id, record.payload, self.timeout)
        except RemoteUnavailable as e:
            self._fail(report, record_id, str(e), "unavailable")
            return
        except RemoteRejected as e:
            self._fail(report, record_id, str(e), "rejected")
            return
        except Exception as e:
            self.logger.error(f"Unexpected error syncing {record_id}: {e}", exc_info=True)
            self._fail(report, record_id, str(e) or type(e).__name__, "unexpected")
            return

        if not result.committed:
            self._fail(report, record_id, "Remote store did not confirm the write", "unavailable")
            return

        self.queue.remove(record_id)
        report.committed.append(record_id)
        self.logger.debug(f"Committed service record {record_id}")

    def _fail(self, report: SyncReport, record_id: str, reason: str, kind: str):
        self.logger.warning(f"Failed to sync {record_id} ({kind}): {reason}")
        self.queue.mark_failed(record_id, reason)
        report.failed.append(SyncFailure(record_id=record_id, reason=reason, kind=kind))

    def _notify(self, report: SyncReport):
        if self.notifier is None:
            return
        try:
            self.notifier.notify(report)
        except Exception as e:
            self.logger.warning(f"Sync notification failed: {e}")
