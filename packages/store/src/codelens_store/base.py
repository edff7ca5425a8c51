"""Abstract store interface.

Every backend (memory, SQLite, Redis) implements three primitives on
serialized records — read, write, remove — and inherits the review lifecycle
operations defined here. The review service depends on BaseStore, not on a
concrete backend, so backends are swappable without touching pipeline code.

Persisted layout: key ``review:<id>`` → JSON-serialized ReviewRecord. Every
write resets the TTL and every read refreshes it.
"""

from __future__ import annotations

import asyncio
import logging
import time
import weakref
from abc import ABC, abstractmethod
from collections.abc import Callable

from codelens_store.errors import InvalidTransitionError, ReviewNotFoundError
from codelens_store.models import ReviewRecord, ReviewStatus, can_transition

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300
KEY_PREFIX = "review:"

# Statuses in which a parsed result may still be written.
_RESULT_WRITABLE = frozenset({ReviewStatus.PROCESSING, ReviewStatus.REPAIRING})


class BaseStore(ABC):
    """Keyed, time-expiring storage for review records.

    Mutations are full read-modify-write cycles. To keep concurrent chunk
    completions from overwriting each other, all mutations for one review id
    are serialized through a per-id asyncio.Lock. Backends shared between
    processes (Redis) add their own compare-and-swap on top by overriding
    _mutate.
    """

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    @staticmethod
    def key(review_id: str) -> str:
        return f"{KEY_PREFIX}{review_id}"

    # ------------------------------------------------------------------ #
    # Abstract: implement in each backend                                  #
    # ------------------------------------------------------------------ #

    @abstractmethod
    async def _read(self, key: str) -> str | None:
        """Return the serialized record and refresh its TTL, or None if absent/expired."""

    @abstractmethod
    async def _write(self, key: str, payload: str) -> None:
        """Store the serialized record, resetting its TTL."""

    @abstractmethod
    async def _remove(self, key: str) -> bool:
        """Delete the record. Return True if it existed."""

    async def close(self) -> None:
        """Release any resources held by the store.

        Default is a no-op so callers can always call close() safely.
        """

    # ------------------------------------------------------------------ #
    # Lifecycle operations                                                 #
    # ------------------------------------------------------------------ #

    async def create(
        self,
        review_id: str,
        language: str | None = None,
        filename: str | None = None,
        kind: str = "review",
    ) -> ReviewRecord:
        record = ReviewRecord(id=review_id, language=language, filename=filename, kind=kind)
        async with self._lock(review_id):
            await self._write(self.key(review_id), record.to_json())
        logger.debug("Created %s record %s", kind, review_id)
        return record

    async def get(self, review_id: str) -> ReviewRecord | None:
        payload = await self._read(self.key(review_id))
        if payload is None:
            logger.debug("Review not found: %s", review_id)
            return None
        return ReviewRecord.from_json(payload)

    async def append_raw_text(self, review_id: str, fragment: str) -> ReviewRecord:
        def apply(record: ReviewRecord) -> None:
            if record.status != ReviewStatus.PROCESSING:
                raise InvalidTransitionError(
                    review_id, str(record.status), str(record.status), "fragments can only be appended while processing"
                )
            record.chunks.append(fragment)

        return await self._mutate(review_id, apply)

    async def set_status(self, review_id: str, status: ReviewStatus, error: str | None = None) -> ReviewRecord:
        def apply(record: ReviewRecord) -> None:
            if not can_transition(record.status, status):
                raise InvalidTransitionError(review_id, str(record.status), str(status))
            record.status = status
            if error:
                record.error = error
            if status == ReviewStatus.COMPLETED:
                record.progress = 100

        record = await self._mutate(review_id, apply)
        logger.info("Review %s → %s", review_id, status)
        return record

    async def set_parsed_result(
        self, review_id: str, result: dict | None, parse_error: str | None = None
    ) -> ReviewRecord:
        """Store the latest parsed result and/or parse error.

        A None result with a parse_error records the failure while keeping any
        earlier successful parse.
        """

        def apply(record: ReviewRecord) -> None:
            if record.status not in _RESULT_WRITABLE:
                raise InvalidTransitionError(
                    review_id, str(record.status), str(record.status), "results can only be written while processing"
                )
            if result is not None:
                record.parsed_response = result
            record.parse_error = parse_error

        return await self._mutate(review_id, apply)

    async def set_progress(self, review_id: str, progress: int) -> ReviewRecord:
        def apply(record: ReviewRecord) -> None:
            # Progress is a hint and never moves backwards.
            record.progress = max(record.progress, min(100, int(progress)))

        return await self._mutate(review_id, apply)

    async def delete(self, review_id: str) -> bool:
        async with self._lock(review_id):
            removed = await self._remove(self.key(review_id))
        if removed:
            logger.info("Deleted review %s", review_id)
        return removed

    # ------------------------------------------------------------------ #
    # Shared implementation                                                #
    # ------------------------------------------------------------------ #

    def _lock(self, review_id: str) -> asyncio.Lock:
        lock = self._locks.get(review_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[review_id] = lock
        return lock

    @staticmethod
    def _apply(payload: str | bytes, fn: Callable[[ReviewRecord], None]) -> ReviewRecord:
        record = ReviewRecord.from_json(payload)
        fn(record)
        record.last_updated = time.time()
        return record

    async def _mutate(self, review_id: str, fn: Callable[[ReviewRecord], None]) -> ReviewRecord:
        key = self.key(review_id)
        async with self._lock(review_id):
            payload = await self._read(key)
            if payload is None:
                raise ReviewNotFoundError(review_id)
            record = self._apply(payload, fn)
            await self._write(key, record.to_json())
            return record
