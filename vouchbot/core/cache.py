from __future__ import annotations
import logging
import time
from typing import Any, Awaitable, Callable

log = logging.getLogger(__name__)

DEFAULT_TTL = 60.0


class QueryCache:
    """
    In-process memo for read queries.

    Entries live for `ttl` seconds. Writers call `invalidate` with a key
    fragment so a later read never serves a row the store already changed.
    """

    def __init__(self, ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = float(ttl)
        self._clock = clock
        self._entries: dict[str, tuple[Any, float, float]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    async def cached(self, key: str, producer: Callable[[], Awaitable[Any]], ttl: float | None = None) -> Any:
        """Return the stored value for key if still fresh, else run producer and store it."""
        ttl = self.ttl if ttl is None else float(ttl)
        hit = self._entries.get(key)
        now = self._clock()
        if hit is not None and now - hit[1] < ttl:
            return hit[0]

        value = await producer()
        self.prune()
        self._entries[key] = (value, self._clock(), ttl)
        return value

    def prune(self) -> int:
        """Drop entries older than the TTL they were stored with. Returns how many were dropped."""
        now = self._clock()
        expired = [k for k, (_, stored_at, ttl) in self._entries.items() if now - stored_at >= ttl]
        for k in expired:
            del self._entries[k]
        if expired:
            log.debug("cache: pruned %d expired key(s)", len(expired))
        return len(expired)

    def invalidate(self, pattern: str) -> int:
        """Drop every key containing pattern. Returns how many were dropped."""
        stale = [k for k in self._entries if pattern in k]
        for k in stale:
            del self._entries[k]
        if stale:
            log.debug("cache: invalidated %d key(s) matching %r", len(stale), pattern)
        return len(stale)

    def invalidate_all(self) -> None:
        self._entries.clear()
