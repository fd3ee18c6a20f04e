"""Core domain models used by the sync engine."""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

FEEDBACK_RATINGS = ("positive", "negative")

STATUS_COMPLETED = "completed"
STATUS_EMPTY = "empty"
STATUS_CONSENT_DISABLED = "consent_disabled"
STATUS_BUSY = "busy"
STATUS_ERROR = "error"


# datetime cannot render anything past 9999-12-31T23:59:59.999Z.
MAX_TIMESTAMP_MS = 253_402_300_799_999


def now_ms() -> int:
    return int(time.time() * 1000)


def iso_timestamp(timestamp_ms: int) -> str:
    """Render an epoch-milliseconds timestamp as ISO-8601 UTC, e.g. 2026-01-08T12:00:00.000Z."""
    seconds, millis = divmod(int(timestamp_ms), 1000)
    moment = datetime.fromtimestamp(seconds, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{millis:03d}Z"


@dataclass(frozen=True)
class AnalyticsEvent:
    """One completed fact check, as handed over by the fact-check pipeline."""

    domain: str = "unknown"
    text_length: int = 0
    query_length: int = 0
    model: str = "unknown"
    rating: Optional[int] = None
    search_used: bool = False
    is_credible_source: bool = False
    is_fact_check_source: bool = False
    timestamp: int = field(default_factory=now_ms)

    def __post_init__(self):
        object.__setattr__(self, "text_length", _count("text_length", self.text_length))
        object.__setattr__(self, "query_length", _count("query_length", self.query_length))
        if self.rating is not None:
            object.__setattr__(self, "rating", _integer("rating", self.rating))
        object.__setattr__(self, "timestamp", _timestamp_ms(self.timestamp))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "textLength": self.text_length,
            "queryLength": self.query_length,
            "domain": self.domain,
            "model": self.model,
            "rating": self.rating,
            "searchUsed": self.search_used,
            "isCredibleSource": self.is_credible_source,
            "isFactCheckSource": self.is_fact_check_source,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AnalyticsEvent":
        timestamp = data.get("timestamp")
        return cls(
            domain=data.get("domain") or "unknown",
            text_length=data.get("textLength") or 0,
            query_length=data.get("queryLength") or 0,
            model=data.get("model") or "unknown",
            rating=data.get("rating"),
            search_used=bool(data.get("searchUsed", False)),
            is_credible_source=bool(data.get("isCredibleSource", False)),
            is_fact_check_source=bool(data.get("isFactCheckSource", False)),
            timestamp=timestamp if timestamp is not None else now_ms(),
        )

    def to_wire(self, client_id: str, session_id: str) -> Dict[str, Any]:
        return {
            "domain": self.domain or "unknown",
            "text_length": self.text_length,
            "model_used": self.model or "unknown",
            "rating": self.rating,
            "search_used": self.search_used,
            "is_credible_source": self.is_credible_source,
            "is_fact_check_source": self.is_fact_check_source,
            "client_id": client_id,
            "session_id": session_id,
            "timestamp": iso_timestamp(self.timestamp),
        }


@dataclass(frozen=True)
class FeedbackEvent:
    """A thumbs up/down on one fact check result."""

    rating: str
    analytics_id: Optional[str] = None
    domain: str = "unknown"
    timestamp: int = field(default_factory=now_ms)

    def __post_init__(self):
        if self.rating not in FEEDBACK_RATINGS:
            raise ValueError(f"feedback rating must be one of {FEEDBACK_RATINGS}, got {self.rating!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "analyticsId": self.analytics_id,
            "rating": self.rating,
            "domain": self.domain,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FeedbackEvent":
        timestamp = data.get("timestamp")
        return cls(
            rating=data.get("rating"),
            analytics_id=data.get("analyticsId"),
            domain=data.get("domain") or "unknown",
            timestamp=int(timestamp) if timestamp is not None else now_ms(),
        )

    def to_wire(self, client_id: str, session_id: str) -> Dict[str, Any]:
        return {"analytics_id": self.analytics_id, "rating": self.rating}


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one sync cycle."""

    successful: int = 0
    failed: int = 0
    timestamp: int = field(default_factory=now_ms)
    status: str = STATUS_COMPLETED
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.successful > 0,
            "processed": self.successful + self.failed,
            "successful": self.successful,
            "failed": self.failed,
            "timestamp": self.timestamp,
            "status": self.status,
            "error": self.error,
        }


def _integer(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _count(name: str, value: Any) -> int:
    number = _integer(name, value)
    if number < 0:
        raise ValueError(f"{name} must be >= 0, got {value!r}")
    return number


def _timestamp_ms(value: Any) -> int:
    timestamp = _integer("timestamp", value)
    if not 0 <= timestamp <= MAX_TIMESTAMP_MS:
        raise ValueError(f"timestamp must be epoch milliseconds, got {value!r}")
    return timestamp
