"""Explicit configuration for the sync engine and the remote sink.

Options can be built directly, from a settings mapping using the add-on's
camelCase keys, or from ``FACTSYNC_*`` environment variables (a ``.env`` file
in the working directory is loaded first).
"""

import os
from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

DEFAULT_BATCH_SIZE = 50
DEFAULT_SYNC_INTERVAL_MS = 15 * 60 * 1000
DEFAULT_MIN_BATCH_THRESHOLD = 5
# Shared with the host's general request-retry policy.
DEFAULT_MAX_RETRY_ATTEMPTS = 3
DEFAULT_INITIAL_DELAY_MS = 5000
DEFAULT_MAX_BACKOFF_FACTOR = 8
DEFAULT_HISTORY_LIMIT = 100

DEFAULT_ANALYTICS_TABLE = "fact_check_analytics"
DEFAULT_FEEDBACK_TABLE = "user_feedback"
DEFAULT_TIMEOUT_S = 10.0

ENV_PREFIX = "FACTSYNC_"

_SYNC_KEYS = {
    "shareAnalytics": "share_analytics",
    "batchSize": "batch_size",
    "syncIntervalMs": "sync_interval_ms",
    "minBatchThreshold": "min_batch_threshold",
    "maxRetryAttempts": "max_retry_attempts",
    "initialDelayMs": "initial_delay_ms",
    "maxBackoffFactor": "max_backoff_factor",
    "forceWaitAttempts": "force_wait_attempts",
    "forceWaitIntervalS": "force_wait_interval_s",
    "historyLimit": "history_limit",
}

_SINK_KEYS = {
    "projectUrl": "project_url",
    "apiKey": "api_key",
    "analyticsTable": "analytics_table",
    "feedbackTable": "feedback_table",
    "timeoutS": "timeout_s",
}


@dataclass(frozen=True)
class SyncConfig:
    """Batching, scheduling and consent options."""

    share_analytics: bool = True
    batch_size: int = DEFAULT_BATCH_SIZE
    sync_interval_ms: int = DEFAULT_SYNC_INTERVAL_MS
    min_batch_threshold: int = DEFAULT_MIN_BATCH_THRESHOLD
    max_retry_attempts: int = DEFAULT_MAX_RETRY_ATTEMPTS
    initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS
    max_backoff_factor: int = DEFAULT_MAX_BACKOFF_FACTOR
    force_wait_attempts: int = 10
    force_wait_interval_s: float = 1.0
    history_limit: int = DEFAULT_HISTORY_LIMIT

    def __post_init__(self):
        for name in ("batch_size", "sync_interval_ms", "max_backoff_factor", "force_wait_attempts"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be >= 1, got {getattr(self, name)!r}")
        for name in ("min_batch_threshold", "max_retry_attempts", "initial_delay_ms", "history_limit"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be >= 0, got {getattr(self, name)!r}")
        if self.force_wait_interval_s < 0:
            raise ConfigurationError("force_wait_interval_s must be >= 0")

    @classmethod
    def from_mapping(cls, settings: Mapping[str, Any]) -> "SyncConfig":
        """Build from a settings dict; unknown keys are ignored."""
        return cls(**_coerce(cls, _pick(settings, _SYNC_KEYS)))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SyncConfig":
        return cls(**_coerce(cls, _from_environ(_SYNC_KEYS, environ)))


@dataclass(frozen=True)
class SinkConfig:
    """Where and how batches are posted."""

    project_url: str
    api_key: str
    analytics_table: str = DEFAULT_ANALYTICS_TABLE
    feedback_table: str = DEFAULT_FEEDBACK_TABLE
    timeout_s: float = DEFAULT_TIMEOUT_S

    @property
    def base_url(self) -> str:
        return f"{self.project_url.rstrip('/')}/rest/v1"

    @classmethod
    def from_mapping(cls, settings: Mapping[str, Any]) -> "SinkConfig":
        values = _pick(settings, _SINK_KEYS)
        if "project_url" not in values or "api_key" not in values:
            raise ConfigurationError("projectUrl and apiKey are required")
        return cls(**_coerce(cls, values))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SinkConfig":
        values = _from_environ(_SINK_KEYS, environ)
        if "project_url" not in values or "api_key" not in values:
            raise ConfigurationError(
                f"{ENV_PREFIX}PROJECT_URL and {ENV_PREFIX}API_KEY must be set"
            )
        return cls(**_coerce(cls, values))


def _pick(settings: Mapping[str, Any], keys: Mapping[str, str]) -> dict:
    values = {}
    for key, attr in keys.items():
        if key in settings and settings[key] is not None:
            values[attr] = settings[key]
        elif attr in settings and settings[attr] is not None:
            values[attr] = settings[attr]
    return values


def _from_environ(keys: Mapping[str, str], environ: Optional[Mapping[str, str]]) -> dict:
    if environ is None:
        load_dotenv()
        environ = os.environ
    values = {}
    for attr in keys.values():
        raw = environ.get(ENV_PREFIX + attr.upper())
        if raw is not None and raw.strip() != "":
            values[attr] = raw.strip()
    return values


def _coerce(cls, values: dict) -> dict:
    types = {f.name: f.type for f in fields(cls)}
    result = {}
    for name, value in values.items():
        kind = types[name]
        try:
            if kind in (bool, "bool"):
                result[name] = _to_bool(value)
            elif kind in (int, "int"):
                result[name] = int(value)
            elif kind in (float, "float"):
                result[name] = float(value)
            else:
                result[name] = str(value)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"invalid value for {name}: {value!r}") from exc
    return result


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ValueError(value)
