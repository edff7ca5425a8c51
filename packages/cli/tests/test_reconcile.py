"""Tests for the client reconciliation loop: backoff, cancellation and re-parsing."""

import asyncio

import pytest

from codelens_cli.client import ApiError
from codelens_cli.reconcile import (
    COMPLETED,
    ERROR,
    Backoff,
    ReconciliationLoop,
    poll_until_complete,
)

GOOD_TEXT = "SUMMARY: fine\nSUGGESTIONS:\nLINE: 2\nORIGINAL: a\nSUGGESTED: b\nCLEAN_CODE:\nb"


def _page(chunks, next_id, complete=False, status="processing", error=None):
    return {"chunks": chunks, "nextChunkId": next_id, "isComplete": complete, "status": status, "error": error}


class _ScriptedClient:
    """Serves get_chunks pages in order, per review id."""

    def __init__(self, pages=None, repair_result=None, events=None):
        self.pages = {rid: list(p) for rid, p in (pages or {}).items()}
        self.repair_result = repair_result or {"success": False, "error": "not repairable"}
        self.events = events or []
        self.submitted = []
        self.cursors = []
        self.repairs = []
        self.focuses = []

    async def submit_review(self, code, language, filename=None, focus=None):
        review_id = f"r{len(self.submitted) + 1}"
        self.submitted.append((review_id, code))
        self.focuses.append(focus)
        return review_id

    async def get_chunks(self, review_id, last_chunk=-1):
        self.cursors.append((review_id, last_chunk))
        return self.pages[review_id].pop(0)

    async def repair(self, raw_text, language=None, review_id=None):
        self.repairs.append((raw_text, review_id))
        return self.repair_result

    async def stream_review(self, code, language, filename=None, focus=None):
        self.focuses.append(focus)
        for event in self.events:
            yield event


class _RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------


class TestBackoff:
    def test_grows_by_factor_up_to_ceiling(self):
        backoff = Backoff(initial=0.5, factor=1.5, ceiling=1.0)
        assert [backoff.next() for _ in range(3)] == [0.75, 1.0, 1.0]

    def test_reset_returns_to_initial(self):
        backoff = Backoff()
        backoff.next()
        backoff.next()
        backoff.reset()
        assert backoff.current == 0.5

    def test_from_config(self):
        backoff = Backoff.from_config({"poll_initial": 1.0, "poll_factor": 2.0, "poll_ceiling": 3.0})
        assert [backoff.next(), backoff.next()] == [2.0, 3.0]

    @pytest.mark.parametrize("args", [(0, 1.5, 5), (1, 0.5, 5), (2, 1.5, 1)])
    def test_rejects_bad_parameters(self, args):
        with pytest.raises(ValueError):
            Backoff(*args)


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------


class TestPolling:
    async def test_three_empty_polls_back_off_then_reset_on_new_review(self):
        pages = {
            "r1": [
                _page(["SUMMARY: fine\n"], 0),
                _page([], 0),
                _page([], 0),
                _page([], 0),
                _page(["CLEAN_CODE:\nb"], 1, complete=True, status="completed"),
            ],
            "r2": [_page([], -1), _page([GOOD_TEXT], 0, complete=True, status="completed")],
        }
        sleep = _RecordingSleep()
        loop = ReconciliationLoop(_ScriptedClient(pages), sleep=sleep)

        state = await loop.run("code", "python")

        assert state.status == COMPLETED
        first, *empties = loop.delays
        assert first == 0.5
        assert empties == [0.75, 1.125, 1.6875]
        for previous, current in zip(loop.delays, loop.delays[1:]):
            assert current <= previous * 1.5
        assert sleep.delays == loop.delays

        await loop.run("code", "python")
        assert loop.delays == [0.75]
        assert loop.backoff.current == 0.75

    async def test_interval_capped_at_ceiling(self):
        pages = {"r1": [_page([], -1)] * 5 + [_page([GOOD_TEXT], 0, complete=True, status="completed")]}
        loop = ReconciliationLoop(_ScriptedClient(pages), backoff=Backoff(0.5, 1.5, 1.0), sleep=_RecordingSleep())
        await loop.run("code", "python")
        assert loop.delays == [0.75, 1.0, 1.0, 1.0, 1.0]

    async def test_interval_unchanged_when_fragments_arrive(self):
        pages = {
            "r1": [
                _page([], -1),
                _page(["SUMMARY: a\n"], 0),
                _page(["CLEAN_CODE:\n"], 1),
                _page(["x"], 2, complete=True, status="completed"),
            ]
        }
        loop = ReconciliationLoop(_ScriptedClient(pages), sleep=_RecordingSleep())
        await loop.run("code", "python")
        assert loop.delays == [0.75, 0.75, 0.75]

    async def test_cursor_follows_next_chunk_id(self):
        client = _ScriptedClient(
            {"r1": [_page(["a", "b"], 1), _page(["c"], 2), _page([], 2, complete=True, status="completed")]}
        )
        await ReconciliationLoop(client, sleep=_RecordingSleep()).run("code", "python")
        assert client.cursors == [("r1", -1), ("r1", 1), ("r1", 2)]

    async def test_focus_reaches_every_submission(self):
        client = _ScriptedClient(
            {
                "r1": [_page([GOOD_TEXT], 0, complete=True, status="completed")],
                "r2": [_page([GOOD_TEXT], 0, complete=True, status="completed")],
            }
        )
        loop = ReconciliationLoop(client, sleep=_RecordingSleep())
        await loop.run("code", "python", focus=["security"])
        await loop.run("code", "python")
        assert client.focuses == [["security"], None]

    async def test_error_status_is_terminal_without_repair(self):
        client = _ScriptedClient({"r1": [_page(["junk"], 0, complete=True, status="error", error="Repair failed: x")]})
        state = await ReconciliationLoop(client, sleep=_RecordingSleep()).run("code", "python")

        assert state.status == ERROR
        assert state.error == "Repair failed: x"
        assert state.raw_text == "junk"
        assert client.repairs == []

    async def test_api_error_marks_state_error(self):
        class _Failing(_ScriptedClient):
            async def submit_review(self, code, language, filename=None, focus=None):
                raise ApiError(400, "Code must not be empty")

        state = await ReconciliationLoop(_Failing(), sleep=_RecordingSleep()).run("", "python")
        assert state.status == ERROR
        assert "Code must not be empty" in state.error


# ---------------------------------------------------------------------------
# Re-parsing and repair
# ---------------------------------------------------------------------------


class TestReparse:
    def test_reparse_is_independent_of_fragment_boundaries(self):
        whole = ReconciliationLoop(_ScriptedClient())
        whole.ingest([GOOD_TEXT])
        pieces = ReconciliationLoop(_ScriptedClient())
        for start in range(0, len(GOOD_TEXT), 7):
            pieces.ingest([GOOD_TEXT[start : start + 7]])

        assert pieces.state.raw_text == whole.state.raw_text
        assert pieces.state.parsed == whole.state.parsed
        assert pieces.state.parsed.suggestions[0].line_number == 2

    def test_parse_error_clears_once_text_completes(self):
        loop = ReconciliationLoop(_ScriptedClient())
        loop.ingest(["SUMMARY: a\nCLEAN_CODE:\n"])
        assert loop.state.parsed is None
        assert loop.state.parse_error

        loop.ingest(["x = 1"])
        parsed = loop.state.parsed
        assert parsed.clean_code == "x = 1"

        loop.ingest([""])
        assert loop.state.parsed == parsed

    def test_empty_batch_is_ignored(self):
        updates = []
        loop = ReconciliationLoop(_ScriptedClient(), on_update=updates.append)
        loop.ingest([])
        assert updates == []
        assert loop.state.fragments == 0

    async def test_unparsed_terminal_text_triggers_repair(self):
        repaired = {"success": True, "result": {"summary": "fixed", "cleanCode": "y", "suggestions": []}}
        client = _ScriptedClient(
            {"r1": [_page(["no markers here"], 0, complete=True, status="completed")]}, repair_result=repaired
        )
        state = await ReconciliationLoop(client, sleep=_RecordingSleep()).run("code", "python")

        assert client.repairs == [("no markers here", "r1")]
        assert state.status == COMPLETED
        assert state.parsed.summary == "fixed"
        assert state.parse_error is None

    async def test_failed_repair_is_an_error(self):
        client = _ScriptedClient(
            {"r1": [_page(["no markers"], 0, complete=True, status="completed")]},
            repair_result={"success": False, "error": "Could not extract clean code"},
        )
        state = await ReconciliationLoop(client, sleep=_RecordingSleep()).run("code", "python")
        assert state.status == ERROR
        assert state.error == "Could not extract clean code"


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class _HangingClient(_ScriptedClient):
    """Never answers polls for r1 until cancelled; optionally ignores the cancellation."""

    def __init__(self, pages, swallow_cancel=False):
        super().__init__(pages)
        self.swallow_cancel = swallow_cancel
        self.polling = asyncio.Event()
        self.cancelled = False

    async def get_chunks(self, review_id, last_chunk=-1):
        if review_id != "r1":
            return await super().get_chunks(review_id, last_chunk)
        self.polling.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            if not self.swallow_cancel:
                raise
        # A late answer for the abandoned review.
        return _page(["STALE FRAGMENT"], 0, complete=True, status="completed")


class TestCancellation:
    async def test_new_review_cancels_in_flight_poll(self):
        client = _HangingClient({"r2": [_page([GOOD_TEXT], 0, complete=True, status="completed")]})
        loop = ReconciliationLoop(client, sleep=_RecordingSleep())

        first = await loop.start_review("old", "python")
        await client.polling.wait()
        await loop.start_review("new", "python")
        state = await loop.wait()

        assert first.cancelled()
        assert client.cancelled
        assert state.review_id == "r2"
        assert state.raw_text == GOOD_TEXT
        assert state.status == COMPLETED

    async def test_stale_generation_result_is_discarded(self):
        client = _HangingClient({"r2": [_page([GOOD_TEXT], 0, complete=True, status="completed")]}, swallow_cancel=True)
        loop = ReconciliationLoop(client, sleep=_RecordingSleep())

        await loop.start_review("old", "python")
        await client.polling.wait()
        await loop.start_review("new", "python")
        state = await loop.wait()

        assert "STALE FRAGMENT" not in state.raw_text
        assert state.raw_text == GOOD_TEXT

    async def test_cancel_without_review_is_noop(self):
        loop = ReconciliationLoop(_ScriptedClient())
        await loop.cancel()
        assert (await loop.wait()).status == "idle"


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class TestStreaming:
    async def test_stream_events_build_state(self):
        events = [
            {"event": "metadata", "reviewId": "s1"},
            {"event": "chunk", "content": "SUMMARY: fine\n"},
            {"event": "chunk", "content": "CLEAN_CODE:\nb"},
            {"event": "complete", "reviewId": "s1", "parsedResponse": {"summary": "fine", "cleanCode": "b"}},
        ]
        updates = []
        loop = ReconciliationLoop(_ScriptedClient(events=events), on_update=lambda s: updates.append(s.status))
        state = await loop.run("code", "python", stream=True)

        assert state.review_id == "s1"
        assert state.fragments == 2
        assert state.parsed.clean_code == "b"
        assert updates[0] == "loading"
        assert updates[-1] == COMPLETED

    async def test_stream_error_event(self):
        events = [{"event": "metadata", "reviewId": "s1"}, {"event": "error", "error": "Stream interrupted: reset"}]
        state = await ReconciliationLoop(_ScriptedClient(events=events)).run("code", "python", stream=True)
        assert state.status == ERROR
        assert state.error == "Stream interrupted: reset"

    async def test_stream_passes_focus(self):
        events = [{"event": "metadata", "reviewId": "s1"}, {"event": "complete", "reviewId": "s1", "parsedResponse": {"summary": "ok"}}]
        client = _ScriptedClient(events=events)
        await ReconciliationLoop(client).run("code", "python", stream=True, focus=["performance", "security"])
        assert client.focuses == [["performance", "security"]]

    async def test_stream_closed_early_keeps_parsed_text(self):
        events = [{"event": "metadata", "reviewId": "s1"}, {"event": "chunk", "content": GOOD_TEXT}]
        state = await ReconciliationLoop(_ScriptedClient(events=events)).run("code", "python", stream=True)
        assert state.status == COMPLETED
        assert state.parsed.summary == "fine"


# ---------------------------------------------------------------------------
# poll_until_complete
# ---------------------------------------------------------------------------


class TestPollUntilComplete:
    async def test_backs_off_only_while_progress_stalls(self):
        records = [
            {"progress": 15, "isComplete": False},
            {"progress": 15, "isComplete": False},
            {"progress": 50, "isComplete": False},
            {"progress": 100, "isComplete": True, "status": "completed"},
        ]

        class _Client:
            async def get_review(self, review_id):
                return records.pop(0)

        sleep = _RecordingSleep()
        seen = []
        record = await poll_until_complete(_Client(), "d1", Backoff(), sleep=sleep, on_progress=seen.append)

        assert record["status"] == "completed"
        assert sleep.delays == [0.5, 0.75, 0.75]
        assert [r["progress"] for r in seen] == [15, 15, 50, 100]
