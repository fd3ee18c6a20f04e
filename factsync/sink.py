"""HTTP client for batch inserts into the remote analytics sink."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import requests

from .config import SinkConfig
from .errors import ConfigurationError, NetworkError, RemoteRejection
from .ports import HttpSession

logger = logging.getLogger(__name__)

MIN_API_KEY_LENGTH = 10
# Truncate diagnostic bodies kept on results and in logs.
MAX_BODY_CHARS = 500


class SinkOutcome(str, Enum):
    SUCCESS = "success"
    REJECTED = "rejected"
    TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class SinkResult:
    """Classified outcome of one batch POST."""

    outcome: SinkOutcome
    count: int = 0
    status: Optional[int] = None
    body: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is SinkOutcome.SUCCESS


class RemoteSinkClient:
    """Stateless wrapper around the sink's REST insert endpoint.

    Builds the request and classifies what came back. It never retries;
    failed batches are requeued by the sync engine.
    """

    def __init__(self, config: SinkConfig, session: Optional[HttpSession] = None):
        self.config = config
        self._session = session
        self._owns_session = session is None

    @property
    def session(self) -> HttpSession:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def validate(self) -> None:
        """Raise ``ConfigurationError`` if the URL or key is obviously malformed."""
        url = self.config.project_url or ""
        key = self.config.api_key or ""
        if not url or not key:
            raise ConfigurationError("missing sink URL or API key")
        if not url.startswith("https://"):
            raise ConfigurationError("sink URL must start with https://")
        if len(key) < MIN_API_KEY_LENGTH:
            raise ConfigurationError("sink API key appears to be invalid")

    def headers(self, minimal: bool = True) -> Dict[str, str]:
        return {
            "apikey": self.config.api_key,
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
            "Prefer": "return=minimal" if minimal else "return=representation",
        }

    def send_batch(self, table: str, records: Sequence[Dict[str, Any]]) -> SinkResult:
        payload: List[Dict[str, Any]] = list(records)
        if not payload:
            return SinkResult(SinkOutcome.SUCCESS, count=0)

        url = f"{self.config.base_url}/{table}"
        try:
            response = self.session.post(
                url,
                json=payload,
                headers=self.headers(minimal=True),
                timeout=self.config.timeout_s,
            )
        except requests.Timeout as exc:
            logger.warning("Batch of %d to %s timed out: %s", len(payload), table, exc)
            return SinkResult(SinkOutcome.TRANSPORT_ERROR, error=f"timeout: {exc}")
        except requests.RequestException as exc:
            logger.warning("Batch of %d to %s failed in transport: %s", len(payload), table, exc)
            return SinkResult(SinkOutcome.TRANSPORT_ERROR, error=str(exc))

        if 200 <= response.status_code < 300:
            logger.debug("Inserted %d records into %s", len(payload), table)
            return SinkResult(SinkOutcome.SUCCESS, count=len(payload), status=response.status_code)

        body = _body_text(response)
        logger.error(
            "Sink rejected batch of %d for %s: status=%s body=%s",
            len(payload),
            table,
            response.status_code,
            body,
        )
        return SinkResult(
            SinkOutcome.REJECTED,
            status=response.status_code,
            body=body,
            error=f"status {response.status_code}",
        )

    def test_connection(self) -> bool:
        """Ping the REST root. Raises ``NetworkError`` or ``RemoteRejection`` on failure."""
        self.validate()
        try:
            response = self.session.get(
                f"{self.config.base_url}/",
                headers={
                    "apikey": self.config.api_key,
                    "Authorization": f"Bearer {self.config.api_key}",
                },
                timeout=self.config.timeout_s,
            )
        except requests.RequestException as exc:
            raise NetworkError(f"sink connection failed: {exc}") from exc
        if not 200 <= response.status_code < 300:
            raise RemoteRejection(response.status_code, _body_text(response))
        return True

    def close(self) -> None:
        if self._session is not None and self._owns_session:
            self._session.close()
            self._session = None


def _body_text(response: Any) -> Optional[str]:
    try:
        text = response.text
    except Exception:
        return None
    if not text:
        return None
    return text[:MAX_BODY_CHARS]
