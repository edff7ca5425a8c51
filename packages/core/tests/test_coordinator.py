"""Tests for concurrent per-chunk invocation."""

import asyncio
import re
from unittest.mock import patch

import pytest

from codelens_core.chunker import chunk_code
from codelens_core.coordinator import (
    DETECTION,
    IMPLEMENTATION,
    InvocationCoordinator,
    chunk_progress,
    issues_for_chunk,
)
from codelens_core.models import Chunk, Issue
from codelens_core.providers.base import BaseProvider

CODE_250 = "\n".join(f"line_{i} = {i}" for i in range(250))

DETECTION_ANSWER = """SUMMARY: chunk reviewed
ISSUES:
ISSUE 1:
TYPE: naming
SEVERITY: high
LINES: 5
DESCRIPTION: {description}
"""


def _chunk_number(user_prompt: str) -> int:
    match = re.search(r"chunk (\d+) of", user_prompt)
    return int(match.group(1)) if match else 1


class _ChunkProvider(BaseProvider):
    """Answers per chunk; chunks listed in `fail` raise, `garbled` answer nonsense."""

    def __init__(self, fail=(), garbled=(), delays=None):
        self.fail = set(fail)
        self.garbled = set(garbled)
        self.delays = delays or {}
        self.active = 0
        self.peak = 0
        self.prompts = []
        self.finished = 0

    async def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        n = _chunk_number(user_prompt)
        self.prompts.append(user_prompt)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delays.get(n, 0.01))
        finally:
            self.active -= 1
        self.finished += 1
        if n in self.fail:
            raise RuntimeError(f"chunk {n} exploded")
        if n in self.garbled:
            return "I could not do it."
        if "implementation phase" in system_prompt:
            return f"SUMMARY: done\nCLEAN_CODE:\nchunk_{n}_fixed"
        return DETECTION_ANSWER.format(description=f"issue in chunk {n}")

    async def _stream_api(self, system_prompt: str, user_prompt: str):
        yield await self._call_api(system_prompt, user_prompt)


@pytest.fixture
def chunks():
    return chunk_code(CODE_250, "text", threshold=100)


class TestRun:
    async def test_collects_results_and_emits_offset_progress(self, chunks):
        events = []
        outcome = await InvocationCoordinator(_ChunkProvider()).run(chunks, DETECTION, "python", events.append)

        assert set(outcome.results) == {0, 1, 2}
        assert sorted(e.completed for e in events) == [1, 2, 3]
        by_chunk = {e.chunk_id: e for e in events}
        assert by_chunk[1].issues[0].line_numbers == [105]
        assert by_chunk[2].issues[0].line_numbers == [205]
        assert "SUMMARY" in by_chunk[0].raw_text
        # Chunk results themselves stay chunk-relative for the aggregator.
        assert outcome.results[1].issues[0].line_numbers == [5]

    async def test_progress_is_monotonic_and_in_band(self, chunks):
        events = []
        provider = _ChunkProvider(delays={1: 0.05, 2: 0.01, 3: 0.03})
        await InvocationCoordinator(provider).run(chunks, DETECTION, "python", events.append)

        progress = [e.progress for e in events]
        assert progress == sorted(progress)
        assert progress[-1] == 80
        assert all(15 < p <= 80 for p in progress)

    async def test_failed_chunk_does_not_abort_siblings(self, chunks):
        events = []
        provider = _ChunkProvider(fail={2}, garbled={3})
        with patch("codelens_core.providers.base.asyncio.sleep"):
            outcome = await InvocationCoordinator(provider).run(chunks, DETECTION, "python", events.append)

        assert set(outcome.results) == {0}
        assert "exploded" in outcome.errors[1]
        assert "summary" in outcome.errors[2]
        assert outcome.raw_texts[2] == "I could not do it."
        assert len(events) == 3

    async def test_concurrency_is_bounded(self):
        many = chunk_code("\n".join(f"x{i}" for i in range(1000)), "text", threshold=100)
        provider = _ChunkProvider()
        await InvocationCoordinator(provider, max_concurrency=2).run(many, DETECTION, "python")
        assert provider.peak == 2

    async def test_async_callback_is_awaited(self, chunks):
        seen = []

        async def callback(event):
            await asyncio.sleep(0)
            seen.append(event.chunk_id)

        await InvocationCoordinator(_ChunkProvider()).run(chunks, DETECTION, "python", callback)
        assert sorted(seen) == [0, 1, 2]

    async def test_implementation_skips_untouched_chunks(self, chunks):
        provider = _ChunkProvider()
        approved = [Issue(type="naming", description="d", line_numbers=[150])]
        outcome = await InvocationCoordinator(provider).run(
            chunks, IMPLEMENTATION, "python", approved_issues=approved
        )

        assert outcome.results[1].clean_code == "chunk_2_fixed"
        assert outcome.results[0].clean_code == chunks[0].code
        assert outcome.raw_texts[0] == ""

    async def test_prompts_carry_chunk_position(self, chunks):
        provider = _ChunkProvider()
        await InvocationCoordinator(provider).run(chunks, DETECTION, "python")

        prompts = sorted(provider.prompts, key=_chunk_number)
        assert "chunk 1 of 3, lines 1-100" in prompts[0]
        assert "chunk 2 of 3, lines 101-200" in prompts[1]
        assert "chunk 3 of 3, lines 201-250" in prompts[2]

    async def test_failing_callback_cancels_remaining_chunks(self, chunks):
        provider = _ChunkProvider(delays={1: 0.01, 2: 0.5, 3: 0.5})

        def callback(event):
            raise LookupError("record gone")

        with pytest.raises(LookupError):
            await InvocationCoordinator(provider).run(chunks, DETECTION, "python", callback)
        await asyncio.sleep(0.6)
        assert provider.finished == 1

    async def test_unknown_phase_rejected(self, chunks):
        with pytest.raises(ValueError):
            await InvocationCoordinator(_ChunkProvider()).run(chunks, "deploy", "python")

    def test_zero_concurrency_rejected(self):
        with pytest.raises(ValueError):
            InvocationCoordinator(_ChunkProvider(), max_concurrency=0)


class TestHelpers:
    def test_chunk_progress(self):
        assert chunk_progress(0, 3) == 15
        assert chunk_progress(1, 3) == 36
        assert chunk_progress(3, 3) == 80

    def test_issues_for_chunk_relative_lines(self):
        chunk = Chunk(id=1, code="", start_line=100, end_line=199)
        issues = [
            Issue(type="a", description="inside", line_numbers=[105, 250]),
            Issue(type="b", description="outside", line_numbers=[20]),
            Issue(type="c", description="anywhere"),
        ]
        selected = issues_for_chunk(issues, chunk)
        assert [(i.description, i.line_numbers) for i in selected] == [("inside", [5]), ("anywhere", [])]
