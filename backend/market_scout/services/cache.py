from __future__ import annotations

import asyncio
import inspect
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


def _retrieve_exception(task: asyncio.Task) -> None:
    # Marks a failure as seen even when every waiter was cancelled.
    if not task.cancelled():
        task.exception()


@dataclass
class _CacheEntry(Generic[T]):
    value: T
    inserted_at: float
    expires_at: float


class Cache(Generic[T]):
    """In-memory key/value store bounded by time and by entry count.

    Expiry is lazy: stale entries are only dropped when ``get`` reads them, so
    ``size()`` may include entries that have expired but were not read since.
    When a new key would push the cache past ``max_size`` the oldest-inserted
    entry is evicted (FIFO, not LRU).

    ``get_or_set`` coalesces concurrent population of the same key into a
    single factory call shared by every waiter.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_size: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, _CacheEntry[T]] = OrderedDict()
        self._inflight: dict[str, asyncio.Task] = {}

    def set(self, key: str, value: T, ttl: float | None = None) -> None:
        now = self._clock()
        ttl_seconds = self.ttl_seconds if ttl is None else ttl
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self.max_size:
            self._entries.popitem(last=False)
        self._entries[key] = _CacheEntry(value=value, inserted_at=now, expires_at=now + ttl_seconds)

    def get(self, key: str) -> T | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not self._is_fresh(entry):
            del self._entries[key]
            return None
        return entry.value

    def has(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and self._is_fresh(entry)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def size(self) -> int:
        return len(self._entries)

    def keys(self) -> list[str]:
        return list(self._entries)

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[T] | T],
        ttl: float | None = None,
    ) -> T:
        entry = self._entries.get(key)
        if entry is not None and self._is_fresh(entry):
            return entry.value

        task = self._inflight.get(key)
        if task is not None and (task.done() or task.get_loop() is not asyncio.get_running_loop()):
            # Left behind by a cancelled population or a loop that has since stopped.
            del self._inflight[key]
            task = None
        if task is None:
            task = asyncio.ensure_future(self._populate(key, factory, ttl))
            task.add_done_callback(_retrieve_exception)
            self._inflight[key] = task
        # A cancelled waiter must not cancel the population other waiters share.
        return await asyncio.shield(task)

    async def _populate(self, key: str, factory: Callable[[], Awaitable[T] | T], ttl: float | None) -> T:
        try:
            value = factory()
            if inspect.isawaitable(value):
                value = await value
            self.set(key, value, ttl)
            return value
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]

    def _is_fresh(self, entry: _CacheEntry[T]) -> bool:
        return self._clock() < entry.expires_at
