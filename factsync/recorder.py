"""Appends incoming events to the durable pending queues."""

import logging
from typing import Any, Callable, Dict, List, Optional, Union

from .models import AnalyticsEvent, FeedbackEvent
from .pending import PendingQueue
from .ports import KeyValueStore

logger = logging.getLogger(__name__)

HISTORY_ANALYTICS_KEY = "factCheckAnalytics"
HISTORY_FEEDBACK_KEY = "factCheckFeedback"

Event = Union[AnalyticsEvent, FeedbackEvent]


class LocalHistory:
    """Bounded on-device log of recent events that feeds local usage statistics.

    Independent of delivery: entries stay here after they reach the sink.
    """

    def __init__(self, store: KeyValueStore, limit: int = 100):
        self.store = store
        self.limit = limit

    def add(self, event: Event) -> None:
        key = HISTORY_ANALYTICS_KEY if isinstance(event, AnalyticsEvent) else HISTORY_FEEDBACK_KEY
        entries: List[Dict[str, Any]] = self.store.get([key]).get(key) or []
        entries.append(event.to_dict())
        if len(entries) > self.limit:
            entries = entries[-self.limit :]
        self.store.set({key: entries})

    def analytics(self) -> List[AnalyticsEvent]:
        raw = self.store.get([HISTORY_ANALYTICS_KEY]).get(HISTORY_ANALYTICS_KEY) or []
        events = []
        for entry in raw:
            try:
                events.append(AnalyticsEvent.from_dict(entry))
            except (TypeError, ValueError, AttributeError):
                continue
        return events

    def feedback(self) -> List[FeedbackEvent]:
        raw = self.store.get([HISTORY_FEEDBACK_KEY]).get(HISTORY_FEEDBACK_KEY) or []
        events = []
        for entry in raw:
            try:
                events.append(FeedbackEvent.from_dict(entry))
            except (TypeError, ValueError, AttributeError):
                continue
        return events

    def clear(self) -> None:
        self.store.remove([HISTORY_ANALYTICS_KEY, HISTORY_FEEDBACK_KEY])


class EventRecorder:
    """Producer side of the pending queues.

    ``record`` persists synchronously and raises ``QueueWriteError`` if the
    append cannot be stored. Once the queue reaches ``min_batch_threshold`` it
    calls ``on_threshold`` (unless a cycle is running) and hands back whatever
    that returns, typically a ``Future`` for the triggered cycle. It never
    performs network I/O.
    """

    def __init__(
        self,
        analytics: PendingQueue[AnalyticsEvent],
        feedback: PendingQueue[FeedbackEvent],
        min_batch_threshold: int,
        on_threshold: Optional[Callable[[], Any]] = None,
        is_busy: Callable[[], bool] = lambda: False,
        history: Optional[LocalHistory] = None,
    ):
        self.analytics = analytics
        self.feedback = feedback
        self.min_batch_threshold = min_batch_threshold
        self.on_threshold = on_threshold
        self.is_busy = is_busy
        self.history = history

    def record(self, event: Event) -> Optional[Any]:
        if isinstance(event, AnalyticsEvent):
            queue = self.analytics
        elif isinstance(event, FeedbackEvent):
            queue = self.feedback
        else:
            raise TypeError(f"cannot record {type(event).__name__}")

        length = queue.append(event)
        logger.debug("Recorded %s event, %d pending", queue.key, length)

        if self.history is not None:
            try:
                self.history.add(event)
            except Exception as exc:
                logger.warning("Could not update local history: %s", exc)

        if length < self.min_batch_threshold or self.on_threshold is None:
            return None
        if self.is_busy():
            logger.debug("Threshold reached but a sync is already running")
            return None
        logger.debug("Reached batch threshold (%d records), triggering sync", length)
        try:
            return self.on_threshold()
        except Exception as exc:
            logger.warning("Error triggering sync: %s", exc)
            return None
