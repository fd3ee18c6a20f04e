"""Decides when a sync cycle should run."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Optional, Set

from .config import SyncConfig
from .engine import BatchSyncEngine
from .models import SyncResult, now_ms

logger = logging.getLogger(__name__)


class SyncScheduler:
    """Periodic timer and threshold trigger converging on :meth:`maybe_run_cycle`.

    Small trickles of events are debounced: a cycle is skipped while fewer than
    ``min_batch_threshold`` events are pending, unless no cycle ever ran or the
    last one is more than two sync intervals old. After more than
    ``max_retry_attempts`` consecutive failing cycles the timer interval doubles
    per extra failure, capped at ``max_backoff_factor`` times the base interval.
    """

    def __init__(
        self,
        engine: BatchSyncEngine,
        config: Optional[SyncConfig] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.engine = engine
        self.config = config or engine.config
        self.clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._executor = _trigger_executor()
        self._futures: Set[Future] = set()
        self._futures_lock = threading.Lock()
        self._closed = False

    def should_run(self) -> bool:
        last = self.engine.last_sync_time
        if last == 0:
            return True
        if self.engine.pending_count() >= self.config.min_batch_threshold:
            return True
        return self.clock() - last >= 2 * self.config.sync_interval_ms

    def maybe_run_cycle(self) -> Optional[SyncResult]:
        if not self.should_run():
            logger.debug("Too few events pending, waiting for more before syncing")
            return None
        return self.engine.run_cycle()

    def effective_interval_ms(self) -> int:
        excess = self.engine.sync_error_count - self.config.max_retry_attempts
        if excess <= 0:
            return self.config.sync_interval_ms
        factor = min(2 ** excess, self.config.max_backoff_factor)
        return self.config.sync_interval_ms * factor

    def trigger(self) -> Optional[Future]:
        """Ask for a cycle in the background. Advisory: returns ``None`` if one is already running."""
        if self.engine.is_syncing or self._closed:
            return None
        try:
            future = self._executor.submit(self._run_safely)
        except RuntimeError:
            # Executor shut down between the check and the submit.
            return None
        with self._futures_lock:
            self._futures.add(future)
        future.add_done_callback(self._forget)
        return future

    def force_sync_now(self) -> SyncResult:
        """Bypass debouncing. Raises ``ConcurrencyBusy`` if a cycle will not finish in time."""
        return self.engine.force_sync()

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for triggered cycles to finish. Returns ``False`` on timeout."""
        with self._futures_lock:
            pending = list(self._futures)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def start(self) -> None:
        """Start the timer thread. A stopped scheduler can be started again."""
        if self._thread is not None and self._thread.is_alive():
            return
        if self._closed:
            self._executor = _trigger_executor()
            self._closed = False
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="factsync-timer", daemon=True)
        self._thread.start()
        logger.info("Sync scheduler started (interval=%dms)", self.config.sync_interval_ms)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self._closed = True
        self._executor.shutdown(wait=True)
        logger.info("Sync scheduler stopped")

    def _loop(self) -> None:
        delay_ms = self.config.initial_delay_ms
        while not self._stop.wait(delay_ms / 1000):
            self._run_safely()
            delay_ms = self.effective_interval_ms()

    def _run_safely(self) -> Optional[SyncResult]:
        try:
            return self.maybe_run_cycle()
        except Exception:
            logger.exception("Scheduled sync error")
            return None

    def _forget(self, future: Future) -> None:
        with self._futures_lock:
            self._futures.discard(future)


def _trigger_executor() -> ThreadPoolExecutor:
    return ThreadPoolExecutor(max_workers=1, thread_name_prefix="factsync-trigger")
