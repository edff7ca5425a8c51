"""Concurrent per-chunk invocation of the generative service.

Each chunk gets its own request, bounded by a semaphore. A chunk that fails
(service error or unparseable answer) is logged and contributes nothing;
siblings carry on. Progress events are emitted as chunks complete. If the
progress callback raises, the remaining chunks are cancelled and the error
propagates to the caller.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Union

from codelens_core.errors import GenerationError
from codelens_core.models import Chunk, DetectionResult, Issue, ReviewResult, Suggestion
from codelens_core.parsing import parse_detection, parse_review
from codelens_core.prompts import build_detection_prompt, build_implementation_prompt

if TYPE_CHECKING:
    from codelens_core.providers.base import BaseProvider

logger = logging.getLogger(__name__)

DETECTION = "detection"
IMPLEMENTATION = "implementation"
PHASES = (DETECTION, IMPLEMENTATION)

# Progress band owned by the chunk phase: setup below, aggregation above.
PROGRESS_START = 15
PROGRESS_SPAN = 65


@dataclass
class ChunkProgress:
    """Emitted once per finished chunk. Line numbers are already file-relative."""

    chunk_id: int
    completed: int
    total: int
    progress: int
    raw_text: str = ""
    issues: list[Issue] = field(default_factory=list)
    suggestions: list[Suggestion] = field(default_factory=list)
    error: str | None = None


@dataclass
class CoordinatorResult:
    results: dict[int, DetectionResult | ReviewResult] = field(default_factory=dict)
    raw_texts: dict[int, str] = field(default_factory=dict)
    errors: dict[int, str] = field(default_factory=dict)


ProgressCallback = Callable[[ChunkProgress], Union[Awaitable[None], None]]


def chunk_progress(completed: int, total: int) -> int:
    return PROGRESS_START + (completed * PROGRESS_SPAN) // max(total, 1)


def issues_for_chunk(issues: list[Issue], chunk: Chunk) -> list[Issue]:
    """Approved issues touching *chunk*, with line numbers made chunk-relative.

    Issues without line numbers apply to every chunk.
    """
    first, last = chunk.start_line + 1, chunk.end_line + 1
    selected = []
    for issue in issues:
        if not issue.line_numbers:
            selected.append(issue)
            continue
        inside = [n for n in issue.line_numbers if first <= n <= last]
        if inside:
            selected.append(replace(issue, line_numbers=[n - chunk.start_line for n in inside]))
    return selected


class InvocationCoordinator:
    def __init__(self, provider: BaseProvider, max_concurrency: int = 4):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.provider = provider
        self.max_concurrency = max_concurrency

    async def run(
        self,
        chunks: list[Chunk],
        phase: str,
        language: str,
        progress_callback: ProgressCallback | None = None,
        approved_issues: list[Issue] | None = None,
        senior_feedback: str | None = None,
        focus: list[str] | None = None,
    ) -> CoordinatorResult:
        if phase not in PHASES:
            raise ValueError(f"Unknown phase: {phase!r}. Choose one of {PHASES}.")

        semaphore = asyncio.Semaphore(self.max_concurrency)
        outcome = CoordinatorResult()
        total = len(chunks)
        completed = 0

        async def run_one(chunk: Chunk) -> None:
            nonlocal completed
            raw_text, result, error = "", None, None
            try:
                async with semaphore:
                    raw_text, result, error = await self._invoke(
                        chunk, total, phase, language, approved_issues or [], senior_feedback, focus
                    )
            except GenerationError as e:
                error = str(e)

            if result is not None:
                outcome.results[chunk.id] = result
            else:
                logger.warning("Chunk %d/%d failed: %s", chunk.id + 1, total, error)
                outcome.errors[chunk.id] = error or "unknown error"
            outcome.raw_texts[chunk.id] = raw_text

            completed += 1
            event = ChunkProgress(
                chunk_id=chunk.id,
                completed=completed,
                total=total,
                progress=chunk_progress(completed, total),
                raw_text=raw_text,
                issues=[i.offset(chunk.start_line) for i in getattr(result, "issues", [])],
                suggestions=[s.offset(chunk.start_line) for s in getattr(result, "suggestions", [])],
                error=error,
            )
            if progress_callback is not None:
                maybe = progress_callback(event)
                if inspect.isawaitable(maybe):
                    await maybe

        tasks = [asyncio.create_task(run_one(chunk)) for chunk in chunks]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            # A failing progress callback abandons the run: stop calling the service.
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        logger.info("%s phase finished: %d/%d chunk(s) succeeded", phase, len(outcome.results), total)
        return outcome

    async def _invoke(
        self,
        chunk: Chunk,
        total: int,
        phase: str,
        language: str,
        approved_issues: list[Issue],
        senior_feedback: str | None,
        focus: list[str] | None = None,
    ) -> tuple[str, DetectionResult | ReviewResult | None, str | None]:
        if phase == DETECTION:
            system, user = build_detection_prompt(chunk.code, language, chunk=chunk, total=total, focus=focus)
            raw_text = await self.provider.generate(system, user)
            parsed = parse_detection(raw_text)
        else:
            relevant = issues_for_chunk(approved_issues, chunk)
            if not relevant:
                logger.debug("No approved issues touch chunk %d, keeping it unchanged", chunk.id)
                return "", ReviewResult(summary="No approved issues in this chunk.", clean_code=chunk.code), None
            system, user = build_implementation_prompt(
                chunk.code, language, relevant, senior_feedback, chunk=chunk, total=total
            )
            raw_text = await self.provider.generate(system, user)
            parsed = parse_review(raw_text)
        if not parsed.success:
            return raw_text, None, parsed.error
        return raw_text, parsed.result, None
