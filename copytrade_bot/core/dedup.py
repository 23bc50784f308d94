"""Bounded recency set of processed transaction ids."""

from collections import deque


class ProcessedEventCache:
    """Fixed-capacity FIFO of event keys with an O(1) membership index.

    The deque keeps insertion order for eviction; the set answers membership.
    `mark()` does check-and-insert without yielding to the event loop, so two
    coroutines handling the same key can never both see it as new.
    """

    def __init__(self, capacity: int = 1000) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._order: deque[str] = deque()
        self._index: set[str] = set()

    def __contains__(self, key: str) -> bool:
        return key in self._index

    def __len__(self) -> int:
        return len(self._index)

    @property
    def capacity(self) -> int:
        return self._capacity

    def mark(self, key: str) -> bool:
        """Record `key`. Returns False if it was already recorded."""
        if key in self._index:
            return False
        if len(self._order) >= self._capacity:
            self._index.discard(self._order.popleft())
        self._order.append(key)
        self._index.add(key)
        return True

    def discard(self, key: str) -> None:
        """Forget `key` so a later delivery of it is processed again."""
        if key in self._index:
            self._index.remove(key)
            self._order.remove(key)
