"""Port definitions for the storage and HTTP collaborators of the sync engine."""

from typing import Any, Dict, Iterable, Mapping, Protocol


class KeyValueStore(Protocol):
    """Durable key/value storage that adapters can implement for any backend.

    Values are JSON-compatible. Implementations must make ``set`` atomic per
    call: either every item is written or none is.
    """

    def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Return the stored values for the keys that exist."""

    def set(self, items: Mapping[str, Any]) -> None:
        """Write all items."""

    def remove(self, keys: Iterable[str]) -> None:
        """Delete the given keys; missing keys are ignored."""


class HttpSession(Protocol):
    """The slice of ``requests.Session`` used by the sink client."""

    def post(self, url: str, **kwargs: Any) -> Any:
        """Send a POST request."""

    def get(self, url: str, **kwargs: Any) -> Any:
        """Send a GET request."""

    def close(self) -> None:
        """Release pooled connections."""
