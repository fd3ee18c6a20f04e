"""In-process key/value store adapter."""

import copy
import threading
from typing import Any, Dict, Iterable, Mapping, Optional


class InMemoryStore:
    """Keeps values in a dict. Values are deep-copied in and out so callers never share state."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(dict(initial or {}))
        self._lock = threading.Lock()

    def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        with self._lock:
            return {key: copy.deepcopy(self._data[key]) for key in keys if key in self._data}

    def set(self, items: Mapping[str, Any]) -> None:
        with self._lock:
            self._data.update(copy.deepcopy(dict(items)))

    def remove(self, keys: Iterable[str]) -> None:
        with self._lock:
            for key in keys:
                self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
