"""Client-side reconciliation of a running review.

A ReconciliationLoop follows one review at a time, either by streaming its
events or by polling the incremental chunks route. Every batch of new
fragments is appended to the local buffer and the whole buffer is parsed
again, so the displayed result always reflects the full text received so
far. When the review ends with text that never parsed, the loop asks the
repair route for a structured result.

Starting a new review cancels whatever the loop was doing for the previous
one. Each review gets a generation number and results tagged with an older
generation are discarded, so a late response can never leak into the new
review's state.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx
from codelens_core.models import ReviewResult
from codelens_core.parsing import parse_review

from codelens_cli.client import ApiError, CodelensClient

logger = logging.getLogger(__name__)

IDLE = "idle"
LOADING = "loading"
STREAMING = "streaming"
REPAIRING = "repairing"
COMPLETED = "completed"
ERROR = "error"


class Backoff:
    """Multiplicative poll interval: ``initial``, then ×``factor`` up to ``ceiling``."""

    def __init__(self, initial: float = 0.5, factor: float = 1.5, ceiling: float = 5.0):
        if initial <= 0 or factor < 1 or ceiling < initial:
            raise ValueError("Backoff needs initial > 0, factor >= 1 and ceiling >= initial")
        self.initial = initial
        self.factor = factor
        self.ceiling = ceiling
        self.current = initial

    def next(self) -> float:
        """Grow the interval after a poll that brought nothing new."""
        self.current = min(self.current * self.factor, self.ceiling)
        return self.current

    def reset(self) -> None:
        self.current = self.initial

    @classmethod
    def from_config(cls, config: dict) -> Backoff:
        return cls(config["poll_initial"], config["poll_factor"], config["poll_ceiling"])


@dataclass
class ReconciliationState:
    review_id: str | None = None
    status: str = IDLE
    raw_text: str = ""
    parsed: ReviewResult | None = None
    parse_error: str | None = None
    error: str | None = None
    fragments: int = 0

    @property
    def is_done(self) -> bool:
        return self.status in (COMPLETED, ERROR)


@dataclass
class _Run:
    generation: int
    code: str
    language: str | None
    filename: str | None = None
    focus: list[str] | None = None
    last_chunk: int = -1


class ReconciliationLoop:
    def __init__(
        self,
        client: CodelensClient,
        backoff: Backoff | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_update: Callable[[ReconciliationState], None] | None = None,
    ):
        self.client = client
        self.backoff = backoff or Backoff()
        self.state = ReconciliationState()
        self.delays: list[float] = []
        self._sleep = sleep
        self._on_update = on_update
        self._generation = 0
        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------ #
    # Public API                                                           #
    # ------------------------------------------------------------------ #

    async def start_review(
        self,
        code: str,
        language: str | None,
        filename: str | None = None,
        stream: bool = False,
        focus: list[str] | None = None,
    ) -> asyncio.Task:
        """Abandon any review in flight, reset state and start following a new one."""
        self._generation += 1
        run = _Run(self._generation, code, language, filename, focus)
        self.backoff.reset()
        self.delays = []
        self.state = ReconciliationState(status=LOADING)
        self._notify()
        await self.cancel()
        target = self._stream(run) if stream else self._poll(run)
        self._task = asyncio.create_task(self._guarded(run, target))
        return self._task

    async def wait(self) -> ReconciliationState:
        if self._task is not None:
            await self._task
        return self.state

    async def run(
        self,
        code: str,
        language: str | None,
        filename: str | None = None,
        stream: bool = False,
        focus: list[str] | None = None,
    ):
        await self.start_review(code, language, filename=filename, stream=stream, focus=focus)
        return await self.wait()

    async def cancel(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.debug("Cancelled in-flight review task")

    def ingest(self, fragments: list[str]) -> None:
        """Append *fragments* and re-parse the whole buffer.

        The parsed result only ever moves forward: a failed parse keeps the
        previous successful result and records the error alongside it.
        """
        if not fragments:
            return
        self.state.raw_text += "".join(fragments)
        self.state.fragments += len(fragments)
        outcome = parse_review(self.state.raw_text)
        if outcome.success:
            self.state.parsed = outcome.result
            self.state.parse_error = None
        else:
            self.state.parse_error = outcome.error
        self._notify()

    # ------------------------------------------------------------------ #
    # Followers                                                            #
    # ------------------------------------------------------------------ #

    def _current(self, run: _Run) -> bool:
        return run.generation == self._generation

    async def _guarded(self, run: _Run, follower: Awaitable[None]) -> None:
        try:
            await follower
        except (ApiError, httpx.HTTPError) as e:
            if self._current(run):
                logger.warning("Review %s failed: %s", self.state.review_id, e)
                self._fail(str(e))

    async def _poll(self, run: _Run) -> None:
        review_id = await self.client.submit_review(run.code, run.language, filename=run.filename, focus=run.focus)
        if not self._current(run):
            return
        self.state.review_id = review_id
        self.state.status = STREAMING
        self._notify()

        while True:
            data = await self.client.get_chunks(review_id, run.last_chunk)
            if not self._current(run):
                return
            if data["chunks"]:
                self.ingest(data["chunks"])
                run.last_chunk = data["nextChunkId"]
                delay = self.backoff.current
            else:
                delay = self.backoff.next()

            if data["isComplete"]:
                await self._finish(run, data.get("status"), data.get("error"))
                return

            self.delays.append(delay)
            await self._sleep(delay)

    async def _stream(self, run: _Run) -> None:
        events = self.client.stream_review(run.code, run.language, filename=run.filename, focus=run.focus)
        async for event in events:
            if not self._current(run):
                return
            kind = event.get("event")
            if kind == "metadata":
                self.state.review_id = event["reviewId"]
                self.state.status = STREAMING
                self._notify()
            elif kind == "chunk":
                self.ingest([event["content"]])
            elif kind == "complete":
                self.state.parsed = ReviewResult.from_dict(event["parsedResponse"])
                self.state.parse_error = None
                self.state.status = COMPLETED
                self._notify()
            elif kind == "error":
                await self._finish(run, ERROR, event.get("error"))
        if self._current(run) and not self.state.is_done:
            # Stream closed without a terminal event.
            await self._finish(run, None, None)

    async def _finish(self, run: _Run, status: str | None, error: str | None) -> None:
        if status == ERROR:
            self._fail(error or "Unknown error during review processing")
            return
        if self.state.parsed is not None and self.state.parse_error is None:
            self.state.status = COMPLETED
            self._notify()
            return
        if not self.state.raw_text:
            self._fail("Review finished without any text")
            return

        logger.info("Review %s ended unparsed (%s), requesting repair", self.state.review_id, self.state.parse_error)
        self.state.status = REPAIRING
        self._notify()
        outcome = await self.client.repair(self.state.raw_text, run.language, review_id=self.state.review_id)
        if not self._current(run):
            return
        if outcome.get("success"):
            self.state.parsed = ReviewResult.from_dict(outcome["result"])
            self.state.parse_error = None
            self.state.status = COMPLETED
            self._notify()
        else:
            self._fail(outcome.get("error") or "Failed to repair parsing")

    def _fail(self, message: str) -> None:
        self.state.status = ERROR
        self.state.error = message
        self._notify()

    def _notify(self) -> None:
        if self._on_update is not None:
            self._on_update(self.state)


async def poll_until_complete(
    client: CodelensClient,
    review_id: str,
    backoff: Backoff,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_progress: Callable[[dict], None] | None = None,
) -> dict:
    """Poll a detection/implementation record until it reaches a terminal state."""
    backoff.reset()
    last_progress = -1
    while True:
        record = await client.get_review(review_id)
        if on_progress is not None:
            on_progress(record)
        if record["isComplete"]:
            return record
        progress = record.get("progress", 0)
        delay = backoff.current if progress > last_progress else backoff.next()
        last_progress = progress
        await sleep(delay)
