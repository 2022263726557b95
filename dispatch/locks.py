"""
Per-record serialization. One registry is shared by every component that mutates orders or
rider locations, so the same lock guards RiderLocation.current_order for the coordinator and
the lifecycle engine.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from dispatch.errors import Conflict


def order_key(order_id: str) -> str:
    return f"order:{order_id}"


def rider_key(rider_id: str) -> str:
    return f"rider:{rider_id}"


class KeyedLocks:
    def __init__(self, timeout: float = 5.0):
        self._timeout = timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    def _checkout(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        return lock

    def _release(self, key: str) -> None:
        remaining = self._waiters[key] - 1
        if remaining:
            self._waiters[key] = remaining
        else:
            # Last holder gone: drop the lock so the registry doesn't grow with every record.
            del self._waiters[key]
            del self._locks[key]

    @asynccontextmanager
    async def hold(self, *keys: str) -> AsyncIterator[None]:
        """
        Acquire every key in sorted order (no lock-order deadlocks between callers).
        Raises Conflict if a lock is not obtained within the timeout.
        """
        ordered = sorted(set(keys))
        acquired: list[str] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    await asyncio.wait_for(lock.acquire(), timeout=self._timeout)
                except asyncio.TimeoutError:
                    self._release(key)
                    raise Conflict(f"Record {key} is busy, retry later")
                except asyncio.CancelledError:
                    self._release(key)
                    raise
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._release(key)

    def __len__(self) -> int:
        return len(self._locks)
