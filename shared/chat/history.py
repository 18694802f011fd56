"""Bounded in-memory chat history."""

from __future__ import annotations

from collections import deque
from typing import Deque, Generic, Iterable, List, Optional, TypeVar

T = TypeVar("T")


class MessageHistoryBuffer(Generic[T]):
    """
    FIFO ring buffer of the most recent chat messages.

    - append() evicts the oldest entry once at capacity
    - replace() keeps only the newest `capacity` entries, in order
    - snapshot() always returns a copy, newest last
    """

    def __init__(self, capacity: int):
        if int(capacity) <= 0:
            raise ValueError("history capacity must be > 0")
        self._capacity = int(capacity)
        self._items: Deque[T] = deque(maxlen=self._capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._items)

    def append(self, item: T) -> None:
        self._items.append(item)

    def replace(self, items: Iterable[T]) -> List[T]:
        # deque(maxlen) drops from the left, so the oldest entries go first.
        self._items = deque(items, maxlen=self._capacity)
        return list(self._items)

    def snapshot(self, limit: Optional[int] = None) -> List[T]:
        items = list(self._items)
        if limit is None or limit <= 0:
            return items
        return items[-limit:]

    def latest(self) -> Optional[T]:
        return self._items[-1] if self._items else None

    def clear(self) -> None:
        self._items.clear()
