"""In-memory store — the default when no store is configured.

Records live for the lifetime of the server process only. Using a real
TTL-aware store rather than a bare dict means the API behaves identically
whichever backend is configured. Expired entries are swept on every write, so
reviews nobody reads again do not accumulate.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from codelens_store.base import DEFAULT_TTL_SECONDS, BaseStore


class MemoryStore(BaseStore):
    """Keeps serialized records in a dict with per-key expiry timestamps."""

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        super().__init__(ttl_seconds)
        self._clock = clock
        self._data: dict[str, tuple[str, float]] = {}

    async def _read(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        payload, expires_at = entry
        now = self._clock()
        if expires_at <= now:
            del self._data[key]
            return None
        self._data[key] = (payload, now + self.ttl_seconds)
        return payload

    async def _write(self, key: str, payload: str) -> None:
        now = self._clock()
        self._purge(now)
        self._data[key] = (payload, now + self.ttl_seconds)

    async def _remove(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def _purge(self, now: float) -> int:
        expired = [key for key, (_, expires_at) in self._data.items() if expires_at <= now]
        for key in expired:
            del self._data[key]
        return len(expired)

    def __len__(self) -> int:
        now = self._clock()
        return sum(1 for _, expires_at in self._data.values() if expires_at > now)
