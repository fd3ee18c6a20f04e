"""factsync - durable batching and delivery of fact-check telemetry."""

from .analytics import compute_feedback_summary, compute_usage_summary
from .config import SinkConfig, SyncConfig
from .engine import BatchSyncEngine
from .models import AnalyticsEvent, FeedbackEvent, SyncResult
from .scheduler import SyncScheduler
from .service import TelemetryService
from .sink import RemoteSinkClient

__all__ = [
    "TelemetryService",
    "BatchSyncEngine",
    "SyncScheduler",
    "RemoteSinkClient",
    "SyncConfig",
    "SinkConfig",
    "AnalyticsEvent",
    "FeedbackEvent",
    "SyncResult",
    "compute_usage_summary",
    "compute_feedback_summary",
]

__version__ = "0.1.0"
