"""Batch sync engine: snapshot, chunk, submit and reconcile pending events.

One cycle takes a frozen snapshot of each pending queue, posts it to the sink
in bounded batches one after another, and merges the failed batches back in
front of whatever the recorder appended while the cycle was running. A
failed batch never aborts the remaining ones, and nothing raised inside a
cycle escapes to the caller.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .config import SyncConfig
from .consent import ConsentGate
from .errors import ConcurrencyBusy, ConfigurationError, QueueWriteError
from .identity import IdentityManager
from .models import (
    STATUS_BUSY,
    STATUS_COMPLETED,
    STATUS_CONSENT_DISABLED,
    STATUS_EMPTY,
    STATUS_ERROR,
    AnalyticsEvent,
    FeedbackEvent,
    SyncResult,
    now_ms,
)
from .pending import PENDING_ANALYTICS_KEY, PENDING_FEEDBACK_KEY, HeldEntry, PendingQueue
from .ports import KeyValueStore
from .sink import RemoteSinkClient, SinkOutcome, SinkResult

logger = logging.getLogger(__name__)

LAST_SYNC_TIME_KEY = "lastSyncTime"
LAST_SYNC_RESULT_KEY = "lastSyncResult"


def chunk(items: Sequence[Any], size: int) -> List[Tuple[Any, ...]]:
    """Split ``items`` into consecutive slices of at most ``size``."""
    if size < 1:
        raise ValueError("batch size must be >= 1")
    return [tuple(items[start : start + size]) for start in range(0, len(items), size)]


@dataclass(frozen=True)
class _Lane:
    name: str
    queue: PendingQueue
    table: Callable[[RemoteSinkClient], str]


def analytics_queue(store: KeyValueStore) -> PendingQueue[AnalyticsEvent]:
    return PendingQueue(store, PENDING_ANALYTICS_KEY, AnalyticsEvent.from_dict, AnalyticsEvent.to_dict)


def feedback_queue(store: KeyValueStore) -> PendingQueue[FeedbackEvent]:
    return PendingQueue(store, PENDING_FEEDBACK_KEY, FeedbackEvent.from_dict, FeedbackEvent.to_dict)


class BatchSyncEngine:
    """Owns the sync state and runs at most one cycle at a time."""

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[SyncConfig] = None,
        sink: Optional[RemoteSinkClient] = None,
        identity: Optional[IdentityManager] = None,
        consent: Optional[ConsentGate] = None,
        analytics: Optional[PendingQueue[AnalyticsEvent]] = None,
        feedback: Optional[PendingQueue[FeedbackEvent]] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.config = config or SyncConfig()
        self.sink = sink
        self.identity = identity or IdentityManager(store)
        self.consent = consent or ConsentGate(default=self.config.share_analytics)
        self.analytics = analytics or analytics_queue(store)
        self.feedback = feedback or feedback_queue(store)
        self.clock = clock

        self._lanes = (
            _Lane("analytics", self.analytics, lambda client: client.config.analytics_table),
            _Lane("feedback", self.feedback, lambda client: client.config.feedback_table),
        )
        self._cycle_lock = threading.Lock()

        self.sync_error_count = 0
        self.last_sync_result: Optional[SyncResult] = None
        self.last_sync_time = self._load_last_sync_time()
        self.identity.new_session_id()

    @property
    def is_syncing(self) -> bool:
        return self._cycle_lock.locked()

    @property
    def degraded(self) -> bool:
        return self.sync_error_count > self.config.max_retry_attempts

    def pending_count(self) -> int:
        return len(self.analytics) + len(self.feedback)

    def run_cycle(self) -> SyncResult:
        """Run one cycle unless another is in flight, in which case return a ``busy`` no-op."""
        if not self._cycle_lock.acquire(blocking=False):
            logger.debug("Sync already in progress, skipping")
            return SyncResult(timestamp=self.clock(), status=STATUS_BUSY)
        try:
            return self._run_locked()
        finally:
            self._cycle_lock.release()

    def force_sync(self) -> SyncResult:
        """Run a cycle now, waiting a bounded time for an in-flight one to finish.

        Raises ``ConcurrencyBusy`` if the mutex cannot be taken in time.
        """
        if not self._acquire_with_wait():
            raise ConcurrencyBusy("sync already in progress and didn't complete in time")
        try:
            return self._run_locked()
        finally:
            self._cycle_lock.release()

    def clear_pending(self) -> None:
        """Drop every pending event. Waits for an in-flight cycle first."""
        with self._cycle_lock:
            for lane in self._lanes:
                lane.queue.clear()
            logger.info("Cleared pending analytics and feedback")

    def _acquire_with_wait(self) -> bool:
        if self._cycle_lock.acquire(blocking=False):
            return True
        logger.info("Sync already in progress, waiting for completion")
        interval = self.config.force_wait_interval_s
        for _ in range(self.config.force_wait_attempts):
            if interval > 0:
                acquired = self._cycle_lock.acquire(timeout=interval)
            else:
                acquired = self._cycle_lock.acquire(blocking=False)
            if acquired:
                return True
        return False

    def _run_locked(self) -> SyncResult:
        try:
            if not self.consent.is_enabled():
                logger.info("Analytics sharing disabled, skipping sync")
                return SyncResult(timestamp=self.clock(), status=STATUS_CONSENT_DISABLED)

            snapshots = [(lane, lane.queue.snapshot()) for lane in self._lanes]
            total = sum(len(snapshot) for _, snapshot in snapshots)
            if total == 0:
                logger.debug("No pending events to sync")
                return SyncResult(timestamp=self.clock(), status=STATUS_EMPTY)

            try:
                sink = self._ensure_initialized()
            except ConfigurationError as exc:
                logger.error("Sink misconfigured, aborting cycle: %s", exc)
                return self._finish(0, 0, status=STATUS_ERROR, error=str(exc))

            logger.info("Starting sync of %d pending events", total)
            successful = 0
            failed = 0
            status = STATUS_COMPLETED
            errors: List[str] = []
            for lane, snapshot in snapshots:
                if not snapshot:
                    continue
                ok, retained, lane_failed, lane_errors = self._sync_lane(lane, snapshot, sink)
                successful += ok
                failed += lane_failed
                errors.extend(lane_errors)
                try:
                    appended = lane.queue.merge_back(len(snapshot), retained)
                except QueueWriteError as exc:
                    # The whole snapshot stays queued; delivered events go out again next cycle.
                    logger.error("Could not write back %s queue: %s", lane.name, exc)
                    errors.append(f"{lane.name} write-back: {exc}")
                    status = STATUS_ERROR
                    continue
                if appended:
                    logger.debug("Kept %d %s events recorded during the cycle", appended, lane.name)

            logger.info("Sync completed: %d synced, %d failed", successful, failed)
            return self._finish(successful, failed, status=status, error="; ".join(errors) or None)
        except Exception as exc:
            logger.exception("Error syncing analytics")
            return self._finish(0, 0, status=STATUS_ERROR, error=str(exc))

    def _ensure_initialized(self) -> RemoteSinkClient:
        if self.sink is None:
            raise ConfigurationError("no remote sink configured")
        self.sink.validate()
        # Identity problems degrade to sentinel ids inside the manager.
        self.identity.get_or_create_client_id()
        return self.sink

    def _sync_lane(
        self,
        lane: _Lane,
        snapshot: Sequence[Any],
        sink: RemoteSinkClient,
    ) -> Tuple[int, List[Any], int, List[str]]:
        """Send one lane's snapshot. Returns (successful, retained, failed, errors).

        ``retained`` keeps snapshot order and includes held entries, which are
        never sent and not counted as failed.
        """
        table = lane.table(sink)
        client_id = self.identity.client_id
        session_id = self.identity.session_id
        positions = [index for index, item in enumerate(snapshot) if not isinstance(item, HeldEntry)]
        keep = set(range(len(snapshot))) - set(positions)
        if keep:
            logger.warning("Holding back %d undecodable %s entries", len(keep), lane.name)
        batches = chunk(positions, self.config.batch_size)
        logger.debug("Created %d %s batches for syncing", len(batches), lane.name)

        successful = 0
        failed = 0
        errors: List[str] = []
        for index, batch_positions in enumerate(batches, start=1):
            batch = [snapshot[position] for position in batch_positions]
            result = self._submit(sink, table, batch, client_id, session_id)
            if result.ok:
                successful += len(batch)
                logger.debug("Synced %s batch %d/%d (%d records)", lane.name, index, len(batches), len(batch))
            else:
                failed += len(batch)
                keep.update(batch_positions)
                errors.append(f"{lane.name} batch {index}: {result.error or result.outcome.value}")
                logger.warning(
                    "Failed to sync %s batch %d/%d: %s",
                    lane.name,
                    index,
                    len(batches),
                    result.error or result.outcome.value,
                )
        retained = [snapshot[position] for position in sorted(keep)]
        return successful, retained, failed, errors

    def _submit(
        self,
        sink: RemoteSinkClient,
        table: str,
        batch: Sequence[Any],
        client_id: str,
        session_id: str,
    ) -> SinkResult:
        try:
            records = [event.to_wire(client_id, session_id) for event in batch]
            return sink.send_batch(table, records)
        except Exception as exc:
            logger.exception("Error processing batch for %s", table)
            return SinkResult(SinkOutcome.TRANSPORT_ERROR, error=str(exc))

    def _finish(
        self,
        successful: int,
        failed: int,
        status: str = STATUS_COMPLETED,
        error: Optional[str] = None,
    ) -> SyncResult:
        now = self.clock()
        result = SyncResult(successful=successful, failed=failed, timestamp=now, status=status, error=error)
        self.last_sync_time = now
        self.last_sync_result = result

        if failed > 0 or status == STATUS_ERROR:
            self.sync_error_count += 1
        elif successful > 0:
            self.sync_error_count = 0

        if self.degraded:
            logger.warning(
                "Too many sync errors (%d), extending sync interval",
                self.sync_error_count,
            )

        try:
            self.store.set({LAST_SYNC_TIME_KEY: now, LAST_SYNC_RESULT_KEY: result.to_dict()})
        except Exception as exc:
            logger.warning("Could not persist sync status: %s", exc)
        return result

    def _load_last_sync_time(self) -> int:
        try:
            value = self.store.get([LAST_SYNC_TIME_KEY]).get(LAST_SYNC_TIME_KEY)
        except Exception as exc:
            logger.warning("Could not read last sync time: %s", exc)
            return 0
        try:
            return int(value or 0)
        except (TypeError, ValueError):
            return 0

    def status(self) -> Dict[str, Any]:
        """Snapshot of engine state for debug/status surfaces."""
        return {
            "isSyncing": self.is_syncing,
            "lastSyncTime": self.last_sync_time,
            "errorCount": self.sync_error_count,
            "degraded": self.degraded,
            "lastSyncResult": self.last_sync_result.to_dict() if self.last_sync_result else None,
        }
