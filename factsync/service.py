"""Application service wiring the recorder, scheduler and sync engine for the host."""

import logging
from concurrent.futures import Future
from typing import Callable, Dict, Optional

from .analytics import compute_feedback_summary, compute_usage_summary
from .config import SyncConfig
from .consent import ConsentGate
from .engine import BatchSyncEngine
from .errors import ConcurrencyBusy, FactSyncError
from .identity import IdentityManager
from .models import (
    STATUS_CONSENT_DISABLED,
    STATUS_EMPTY,
    STATUS_ERROR,
    AnalyticsEvent,
    FeedbackEvent,
    now_ms,
)
from .ports import KeyValueStore
from .recorder import EventRecorder, LocalHistory
from .scheduler import SyncScheduler
from .sink import RemoteSinkClient

logger = logging.getLogger(__name__)


class TelemetryService:
    """Facade exposing the telemetry API to the host application.

    ``store`` is the durable local store for queues and identity;
    ``settings`` is where the host keeps user preferences such as
    ``shareAnalytics`` (defaults to ``store``).
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[SyncConfig] = None,
        sink: Optional[RemoteSinkClient] = None,
        settings: Optional[KeyValueStore] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.config = config or SyncConfig()
        self.sink = sink
        self.identity = IdentityManager(store)
        self.consent = ConsentGate(settings if settings is not None else store, default=self.config.share_analytics)
        self.engine = BatchSyncEngine(
            store,
            self.config,
            sink=sink,
            identity=self.identity,
            consent=self.consent,
            clock=clock,
        )
        self.scheduler = SyncScheduler(self.engine, self.config, clock=clock)
        self.history = LocalHistory(store, limit=self.config.history_limit)
        self.recorder = EventRecorder(
            self.engine.analytics,
            self.engine.feedback,
            self.config.min_batch_threshold,
            on_threshold=self.scheduler.trigger,
            is_busy=lambda: self.engine.is_syncing,
            history=self.history,
        )

    def start(self) -> None:
        self.scheduler.start()

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop the timer and wait for triggered cycles to finish."""
        self.scheduler.drain(timeout)
        self.scheduler.stop(timeout)
        if self.sink is not None:
            self.sink.close()

    def record_fact_check(self, event: AnalyticsEvent) -> Optional[Future]:
        """Queue one fact-check event. Returns a handle if it triggered a sync."""
        return self.recorder.record(event)

    def record_feedback(self, event: FeedbackEvent) -> Optional[Future]:
        return self.recorder.record(event)

    def force_sync_now(self) -> Dict:
        pending = self.engine.pending_count()
        try:
            result = self.scheduler.force_sync_now()
        except ConcurrencyBusy as exc:
            return {"success": False, "error": str(exc)}
        except Exception as exc:
            logger.exception("Force sync error")
            return {"success": False, "error": str(exc)}

        if result.status == STATUS_EMPTY:
            return {"success": True, "message": "No pending analytics to sync"}
        if result.status == STATUS_CONSENT_DISABLED:
            return {"success": True, "message": "Analytics sharing disabled, nothing sent"}
        if result.status == STATUS_ERROR:
            return {"success": False, "error": result.error or "sync failed"}
        message = f"Forced sync completed for {pending} records: {result.successful} synced, {result.failed} failed"
        return {"success": True, "message": message}

    def get_sync_status(self) -> Dict:
        status = self.engine.status()
        try:
            status["pendingCount"] = len(self.engine.analytics)
            status["pendingFeedbackCount"] = len(self.engine.feedback)
        except Exception as exc:
            status["pendingCount"] = 0
            status["pendingFeedbackCount"] = 0
            status["error"] = str(exc)
        status["effectiveIntervalMs"] = self.scheduler.effective_interval_ms()
        status["identityDegraded"] = self.identity.degraded
        status["analyticsEnabled"] = self.consent.is_enabled()
        return status

    def get_usage_summary(self) -> Dict:
        return {
            "usage": compute_usage_summary(self.history.analytics()),
            "feedback": compute_feedback_summary(self.history.feedback()),
        }

    def test_connection(self) -> Dict:
        if self.sink is None:
            return {"success": False, "error": "no remote sink configured"}
        try:
            self.sink.test_connection()
        except FactSyncError as exc:
            return {"success": False, "error": str(exc)}
        return {"success": True}

    def clear_stored_data(self) -> None:
        """Forget pending events, local history and the client id."""
        self.engine.clear_pending()
        self.history.clear()
        self.identity.clear_client_data()
