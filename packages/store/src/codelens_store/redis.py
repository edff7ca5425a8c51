"""RedisStore — shared store for multi-process deployments.

Several API workers can serve the same review ids, so the per-id asyncio.Lock
in BaseStore is not enough on its own: mutations also run as an optimistic
WATCH/MULTI transaction and are retried when another writer gets in first.
Expiry is native (``SET ... EX`` on write, ``EXPIRE`` on read).
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import redis.asyncio as redis
from redis.exceptions import WatchError

from codelens_store.base import DEFAULT_TTL_SECONDS, BaseStore
from codelens_store.errors import ReviewNotFoundError, StoreError
from codelens_store.models import ReviewRecord

logger = logging.getLogger(__name__)

MAX_CAS_ATTEMPTS = 10


class RedisStore(BaseStore):
    """Stores review records as JSON strings under ``review:<id>`` keys."""

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        client: redis.Redis | None = None,
    ):
        super().__init__(ttl_seconds)
        self._redis = client if client is not None else redis.from_url(url, decode_responses=True)

    async def _read(self, key: str) -> str | None:
        payload = await self._redis.get(key)
        if payload is not None:
            await self._redis.expire(key, self.ttl_seconds)
        return payload

    async def _write(self, key: str, payload: str) -> None:
        await self._redis.set(key, payload, ex=self.ttl_seconds)

    async def _remove(self, key: str) -> bool:
        return bool(await self._redis.delete(key))

    async def _mutate(self, review_id: str, fn: Callable[[ReviewRecord], None]) -> ReviewRecord:
        key = self.key(review_id)
        async with self._lock(review_id):
            async with self._redis.pipeline(transaction=True) as pipe:
                for attempt in range(MAX_CAS_ATTEMPTS):
                    try:
                        await pipe.watch(key)
                        payload = await pipe.get(key)
                        if payload is None:
                            await pipe.reset()
                            raise ReviewNotFoundError(review_id)
                        record = self._apply(payload, fn)
                        pipe.multi()
                        pipe.set(key, record.to_json(), ex=self.ttl_seconds)
                        await pipe.execute()
                        return record
                    except WatchError:
                        logger.debug("Concurrent update on %s, retrying (attempt %d)", key, attempt + 1)
        raise StoreError(f"Review {review_id}: gave up after {MAX_CAS_ATTEMPTS} conflicting updates")

    async def close(self) -> None:
        await self._redis.aclose()
