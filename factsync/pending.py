"""Durable, order-preserving queue of events awaiting delivery."""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterator, List, Mapping, Tuple, TypeVar, Union

from .errors import QueueWriteError
from .ports import KeyValueStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

PENDING_ANALYTICS_KEY = "pendingAnalytics"
PENDING_FEEDBACK_KEY = "pendingFeedback"


@dataclass(frozen=True)
class HeldEntry:
    """A stored entry that no longer decodes. Kept verbatim and never sent."""

    raw: Any
    reason: str


class PendingQueue(Generic[T]):
    """A list of events persisted under one store key.

    Every mutation goes through :meth:`write_path`, which holds the queue lock
    for the whole read-modify-write so the recorder (appending) and the sync
    engine (merging back residuals) never interleave.

    Entries that fail to decode are kept in place as :class:`HeldEntry` so a
    write never drops them.
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: str,
        decode: Callable[[Mapping[str, Any]], T],
        encode: Callable[[T], Mapping[str, Any]],
    ):
        self.store = store
        self.key = key
        self._decode = decode
        self._encode = encode
        self._lock = threading.RLock()

    def load(self) -> List[Union[T, HeldEntry]]:
        raw = self.store.get([self.key]).get(self.key) or []
        items: List[Union[T, HeldEntry]] = []
        for entry in raw:
            try:
                items.append(self._decode(entry))
            except (TypeError, ValueError, AttributeError) as exc:
                logger.warning("Holding undecodable entry in %s: %s", self.key, exc)
                items.append(HeldEntry(entry, str(exc)))
        return items

    def events(self) -> List[T]:
        """Decoded entries only."""
        return [item for item in self.load() if not isinstance(item, HeldEntry)]

    def __len__(self) -> int:
        # Held entries count: they are part of the queue until cleared.
        return len(self.store.get([self.key]).get(self.key) or [])

    @contextmanager
    def write_path(self) -> Iterator[List[Union[T, HeldEntry]]]:
        """Yield the current items for in-place mutation and persist them on exit.

        If the block raises, nothing is written. If the write itself fails,
        ``QueueWriteError`` is raised and the stored queue is left as it was.
        """
        with self._lock:
            items = self.load()
            yield items
            try:
                self.store.set({self.key: [self._dump(item) for item in items]})
            except Exception as exc:
                raise QueueWriteError(f"could not persist {self.key}: {exc}") from exc

    def append(self, item: T) -> int:
        """Append one item and return the new queue length."""
        with self.write_path() as items:
            items.append(item)
            return len(items)

    def snapshot(self) -> Tuple[Union[T, HeldEntry], ...]:
        """Freeze the current contents for one sync cycle."""
        with self._lock:
            return tuple(self.load())

    def merge_back(self, snapshot_length: int, retained: List[Union[T, HeldEntry]]) -> int:
        """Replace the snapshotted prefix with ``retained``, keeping later appends.

        Returns the number of items that were appended after the snapshot.
        """
        with self.write_path() as items:
            appended = items[snapshot_length:]
            items[:] = list(retained) + appended
            return len(appended)

    def clear(self) -> None:
        with self._lock:
            self.store.remove([self.key])

    def _dump(self, item: Union[T, HeldEntry]) -> Any:
        if isinstance(item, HeldEntry):
            return item.raw
        return dict(self._encode(item))
