"""Pseudonymous client and session identifiers."""

import logging
import secrets
import threading
from typing import Optional

from .errors import IdentityDegraded
from .ports import KeyValueStore

logger = logging.getLogger(__name__)

CLIENT_ID_KEY = "anonymousClientId"
UNKNOWN_CLIENT = "unknown-client"
UNKNOWN_SESSION = "unknown-session"

CLIENT_ID_BYTES = 16
SESSION_ID_BYTES = 8


class IdentityManager:
    """Owns the installation-wide client id and the per-initialization session id.

    Identity problems never block delivery: on failure the manager hands out
    sentinel ids and sets :attr:`degraded`.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store
        self.degraded = False
        self._client_id: Optional[str] = None
        self._session_id: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def client_id(self) -> str:
        return self._client_id or self.get_or_create_client_id()

    @property
    def session_id(self) -> str:
        if self._session_id is None:
            self._session_id = self.new_session_id()
        return self._session_id

    def get_or_create_client_id(self) -> str:
        with self._lock:
            if self._client_id is not None:
                return self._client_id
            try:
                self._client_id = self._load_or_generate()
            except IdentityDegraded as exc:
                logger.warning("Falling back to sentinel client id: %s", exc)
                self.degraded = True
                return UNKNOWN_CLIENT
            return self._client_id

    def new_session_id(self) -> str:
        """Generate a fresh session id and make it current. Never persisted."""
        try:
            session_id = secrets.token_hex(SESSION_ID_BYTES)
        except Exception as exc:
            logger.warning("Falling back to sentinel session id: %s", exc)
            self.degraded = True
            session_id = UNKNOWN_SESSION
        self._session_id = session_id
        return session_id

    def clear_client_data(self) -> None:
        """Forget the persisted client id; the next request creates a new one."""
        with self._lock:
            self.store.remove([CLIENT_ID_KEY])
            self._client_id = None
            self.degraded = False

    def _load_or_generate(self) -> str:
        try:
            existing = self.store.get([CLIENT_ID_KEY]).get(CLIENT_ID_KEY)
        except Exception as exc:
            raise IdentityDegraded(f"store unavailable: {exc}") from exc
        if existing:
            return str(existing)

        try:
            client_id = secrets.token_hex(CLIENT_ID_BYTES)
        except Exception as exc:
            raise IdentityDegraded(f"random source unavailable: {exc}") from exc
        try:
            self.store.set({CLIENT_ID_KEY: client_id})
        except Exception as exc:
            raise IdentityDegraded(f"could not persist client id: {exc}") from exc
        logger.info("Created new anonymous client id")
        return client_id
