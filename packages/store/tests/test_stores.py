"""Tests for codelens-store implementations."""

from __future__ import annotations

import asyncio

import pytest
from redis.exceptions import WatchError

from codelens_store.errors import InvalidTransitionError, ReviewNotFoundError, StoreError
from codelens_store.memory import MemoryStore
from codelens_store.models import ReviewRecord, ReviewStatus, can_transition
from codelens_store.redis import MAX_CAS_ATTEMPTS, RedisStore
from codelens_store.sqlite import SQLiteStore


class _Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class _FakePipeline:
    """Just enough of redis.asyncio's Pipeline for WATCH/MULTI/EXEC."""

    def __init__(self, client: _FakeRedis):
        self._client = client
        self._watched: dict[str, int] = {}
        self._queued: list[tuple] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.reset()

    async def watch(self, key):
        self._watched[key] = self._client.versions.get(key, 0)

    async def get(self, key):
        return await self._client.get(key)

    def multi(self):
        self._queued = []

    def set(self, key, value, ex=None):
        self._queued.append((key, value, ex))
        return self

    async def execute(self):
        if self._client.conflicts_remaining:
            self._client.conflicts_remaining -= 1
            self._watched.clear()
            raise WatchError("watched key changed")
        for key, version in self._watched.items():
            if self._client.versions.get(key, 0) != version:
                raise WatchError("watched key changed")
        for key, value, ex in self._queued:
            await self._client.set(key, value, ex=ex)
        await self.reset()
        return [True]

    async def reset(self):
        self._watched.clear()
        self._queued = []


class _FakeRedis:
    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.versions: dict[str, int] = {}
        self.conflicts_remaining = 0
        self.closed = False

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.ttls[key] = ex
        self.versions[key] = self.versions.get(key, 0) + 1

    async def expire(self, key, seconds):
        self.ttls[key] = seconds

    async def delete(self, key):
        existed = key in self.data
        self.data.pop(key, None)
        self.ttls.pop(key, None)
        return int(existed)

    def pipeline(self, transaction=True):
        return _FakePipeline(self)

    async def aclose(self):
        self.closed = True


@pytest.fixture(params=["memory", "sqlite", "redis"])
def store(request, tmp_path):
    if request.param == "memory":
        s = MemoryStore()
    elif request.param == "sqlite":
        s = SQLiteStore(db_path=str(tmp_path / "test.db"))
    else:
        s = RedisStore(client=_FakeRedis())
    yield s
    asyncio.run(s.close())


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class TestReviewRecord:
    def test_json_roundtrip(self):
        record = ReviewRecord(id="r1", status=ReviewStatus.PROCESSING, chunks=["a", "b"], progress=40)
        restored = ReviewRecord.from_json(record.to_json())
        assert restored.status == ReviewStatus.PROCESSING
        assert restored.raw_text == "ab"
        assert restored.progress == 40

    def test_status_serialized_as_string(self):
        assert ReviewRecord(id="r1").to_dict()["status"] == "queued"

    def test_transition_table(self):
        assert can_transition(ReviewStatus.QUEUED, ReviewStatus.PROCESSING)
        assert can_transition(ReviewStatus.COMPLETED, ReviewStatus.REPAIRING)
        assert not can_transition(ReviewStatus.COMPLETED, ReviewStatus.PROCESSING)
        assert not can_transition(ReviewStatus.ERROR, ReviewStatus.PROCESSING)
        assert not can_transition(ReviewStatus.QUEUED, ReviewStatus.COMPLETED)


# ---------------------------------------------------------------------------
# Lifecycle (all backends)
# ---------------------------------------------------------------------------


class TestLifecycle:
    async def test_create_and_get(self, store):
        await store.create("r1", language="python", filename="app.py")
        record = await store.get("r1")
        assert record.status == ReviewStatus.QUEUED
        assert record.language == "python"
        assert record.chunks == []

    async def test_get_missing_returns_none(self, store):
        assert await store.get("nope") is None

    async def test_append_requires_processing(self, store):
        await store.create("r1")
        with pytest.raises(InvalidTransitionError):
            await store.append_raw_text("r1", "text")

    async def test_append_in_order(self, store):
        await store.create("r1")
        await store.set_status("r1", ReviewStatus.PROCESSING)
        for piece in ("SUM", "MARY", ": ok"):
            await store.append_raw_text("r1", piece)
        record = await store.get("r1")
        assert record.raw_text == "SUMMARY: ok"

    async def test_invalid_transition_rejected(self, store):
        await store.create("r1")
        with pytest.raises(InvalidTransitionError):
            await store.set_status("r1", ReviewStatus.COMPLETED)
        record = await store.get("r1")
        assert record.status == ReviewStatus.QUEUED

    async def test_error_is_terminal(self, store):
        await store.create("r1")
        await store.set_status("r1", ReviewStatus.ERROR, error="boom")
        with pytest.raises(InvalidTransitionError):
            await store.set_status("r1", ReviewStatus.PROCESSING)
        assert (await store.get("r1")).error == "boom"

    async def test_mutating_missing_review_raises_not_found(self, store):
        with pytest.raises(ReviewNotFoundError):
            await store.set_status("ghost", ReviewStatus.PROCESSING)

    async def test_completed_sets_progress_100(self, store):
        await store.create("r1")
        await store.set_status("r1", ReviewStatus.PROCESSING)
        await store.set_status("r1", ReviewStatus.COMPLETED)
        assert (await store.get("r1")).progress == 100

    async def test_progress_is_monotonic(self, store):
        await store.create("r1")
        await store.set_progress("r1", 50)
        await store.set_progress("r1", 30)
        assert (await store.get("r1")).progress == 50

    async def test_parsed_result_keeps_previous_on_failure(self, store):
        await store.create("r1")
        await store.set_status("r1", ReviewStatus.PROCESSING)
        await store.set_parsed_result("r1", {"summary": "ok"})
        await store.set_parsed_result("r1", None, parse_error="no clean code")
        record = await store.get("r1")
        assert record.parsed_response == {"summary": "ok"}
        assert record.parse_error == "no clean code"

    async def test_parsed_result_rejected_when_completed(self, store):
        await store.create("r1")
        await store.set_status("r1", ReviewStatus.PROCESSING)
        await store.set_status("r1", ReviewStatus.COMPLETED)
        with pytest.raises(InvalidTransitionError):
            await store.set_parsed_result("r1", {"summary": "late"})

    async def test_delete(self, store):
        await store.create("r1")
        assert await store.delete("r1") is True
        assert await store.get("r1") is None
        assert await store.delete("r1") is False

    async def test_concurrent_appends_are_not_lost(self, store):
        await store.create("r1")
        await store.set_status("r1", ReviewStatus.PROCESSING)
        await asyncio.gather(*(store.append_raw_text("r1", str(i)) for i in range(20)))
        record = await store.get("r1")
        assert sorted(record.chunks, key=int) == [str(i) for i in range(20)]


# ---------------------------------------------------------------------------
# Expiry
# ---------------------------------------------------------------------------


class TestMemoryStoreExpiry:
    async def test_record_expires_after_ttl(self):
        clock = _Clock()
        store = MemoryStore(ttl_seconds=300, clock=clock)
        await store.create("r1")
        clock.advance(301)
        assert await store.get("r1") is None

    async def test_read_refreshes_ttl(self):
        clock = _Clock()
        store = MemoryStore(ttl_seconds=300, clock=clock)
        await store.create("r1")
        clock.advance(200)
        assert await store.get("r1") is not None
        clock.advance(200)
        assert await store.get("r1") is not None
        assert len(store) == 1

    async def test_write_sweeps_unread_expired_records(self):
        clock = _Clock()
        store = MemoryStore(ttl_seconds=1, clock=clock)
        for i in range(100):
            await store.create(f"old-{i}")
        clock.advance(1000)
        await store.create("fresh")
        assert len(store._data) == 1
        assert await store.get("fresh") is not None


class TestSQLiteStore:
    async def test_expired_rows_are_hidden_and_purged(self, tmp_path):
        clock = _Clock()
        store = SQLiteStore(db_path=str(tmp_path / "test.db"), ttl_seconds=300, clock=clock)
        await store.create("r1")
        await store.create("r2")
        clock.advance(301)
        assert await store.get("r1") is None
        assert store.purge_expired() == 1
        await store.close()

    async def test_write_purges_expired_rows(self, tmp_path):
        clock = _Clock()
        store = SQLiteStore(db_path=str(tmp_path / "test.db"), ttl_seconds=300, clock=clock)
        await store.create("r1")
        await store.create("r2")
        clock.advance(301)
        await store.create("r3")
        rows = store._conn.execute("SELECT key FROM reviews").fetchall()
        assert [row["key"] for row in rows] == ["review:r3"]
        assert len(store) == 1
        await store.close()

    async def test_persists_across_connections(self, tmp_path):
        """Data written by one SQLiteStore instance must be readable by another."""
        db_path = str(tmp_path / "test.db")
        store_a = SQLiteStore(db_path=db_path)
        await store_a.create("r1", language="go")
        await store_a.close()

        store_b = SQLiteStore(db_path=db_path)
        record = await store_b.get("r1")
        assert record.language == "go"
        await store_b.close()


class TestRedisStore:
    async def test_writes_use_key_prefix_and_ttl(self):
        client = _FakeRedis()
        store = RedisStore(client=client, ttl_seconds=300)
        await store.create("abc")
        assert "review:abc" in client.data
        assert client.ttls["review:abc"] == 300

    async def test_retries_on_watch_conflict(self):
        client = _FakeRedis()
        store = RedisStore(client=client)
        await store.create("r1")
        client.conflicts_remaining = 2
        record = await store.set_status("r1", ReviewStatus.PROCESSING)
        assert record.status == ReviewStatus.PROCESSING
        assert (await store.get("r1")).status == ReviewStatus.PROCESSING

    async def test_gives_up_after_repeated_conflicts(self):
        client = _FakeRedis()
        store = RedisStore(client=client)
        await store.create("r1")
        client.conflicts_remaining = MAX_CAS_ATTEMPTS
        with pytest.raises(StoreError):
            await store.set_status("r1", ReviewStatus.PROCESSING)

    async def test_close_closes_client(self):
        client = _FakeRedis()
        store = RedisStore(client=client)
        await store.close()
        assert client.closed
