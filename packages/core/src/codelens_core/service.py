"""Review pipeline orchestration.

ReviewService ties the provider, the chunked pipeline and the record store
together. It is constructed once per application (no module-level state) and
every dependency is passed in, so tests can inject fakes.

Three flows share the store's lifecycle:

- review: one streamed answer. Each fragment is appended to the record and
  the whole buffer is re-parsed; parse failures escalate to repair.
- detection / implementation: chunk → concurrent per-chunk requests →
  aggregate, with per-chunk raw text and progress mirrored into the record.
"""

from __future__ import annotations

import contextlib
import logging
import uuid
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from codelens_store.errors import ReviewNotFoundError, StoreError
from codelens_store.models import ReviewRecord, ReviewStatus

from codelens_core.aggregator import aggregate
from codelens_core.chunker import chunk_code
from codelens_core.config import DEFAULT_CONFIG
from codelens_core.coordinator import DETECTION, IMPLEMENTATION, PROGRESS_START, ChunkProgress, InvocationCoordinator
from codelens_core.errors import GenerationError, ValidationError
from codelens_core.models import Issue, ParseResult
from codelens_core.parsing import parse_review
from codelens_core.prompts import FOCUS_AREAS, build_review_prompt
from codelens_core.repair import repair, repair_with_service

if TYPE_CHECKING:
    from codelens_store.base import BaseStore

    from codelens_core.providers.base import BaseProvider

logger = logging.getLogger(__name__)

AGGREGATION_PROGRESS = 80


def new_review_id() -> str:
    return uuid.uuid4().hex


class ReviewService:
    def __init__(self, provider: BaseProvider, store: BaseStore, config: dict | None = None):
        self.provider = provider
        self.store = store
        self.config = {**DEFAULT_CONFIG, **(config or {})}
        self.coordinator = InvocationCoordinator(provider, max_concurrency=self.config["max_concurrency"])

    # ------------------------------------------------------------------ #
    # Submission                                                           #
    # ------------------------------------------------------------------ #

    def validate(self, code, language=None, focus=None) -> None:
        """Reject input that must never enter the pipeline."""
        if code is None:
            raise ValidationError("Code is required")
        if not isinstance(code, str):
            raise ValidationError("Code must be a string")
        if not code.strip():
            raise ValidationError("Code must not be empty")
        limit = self.config["max_code_chars"]
        if len(code) > limit:
            raise ValidationError(f"Code exceeds maximum length of {limit} characters")
        if language is not None and not isinstance(language, str):
            raise ValidationError("Language must be a string")
        if focus is not None:
            if not isinstance(focus, list) or not all(isinstance(name, str) for name in focus):
                raise ValidationError("Focus must be a list of area names")
            unknown = sorted(set(focus) - set(FOCUS_AREAS))
            if unknown:
                raise ValidationError(f"Unknown focus area(s): {', '.join(unknown)}")

    async def _submit(self, code, language, filename, kind: str, focus=None) -> str:
        self.validate(code, language, focus)
        review_id = new_review_id()
        await self.store.create(review_id, language=language, filename=filename, kind=kind)
        logger.info("Queued %s %s (%d chars, %s)", kind, review_id, len(code), language)
        return review_id

    async def submit_review(self, code, language, filename=None, focus=None) -> str:
        return await self._submit(code, language, filename, "review", focus)

    async def submit_detection(self, code, language, filename=None, focus=None) -> str:
        return await self._submit(code, language, filename, "detection", focus)

    async def submit_implementation(self, code, language, issues, senior_feedback=None, filename=None) -> str:
        if not isinstance(issues, list):
            raise ValidationError("Issues must be a list")
        return await self._submit(code, language, filename, "implementation")

    async def get_review(self, review_id: str) -> ReviewRecord:
        record = await self.store.get(review_id)
        if record is None:
            raise ReviewNotFoundError(review_id)
        return record

    # ------------------------------------------------------------------ #
    # Review flow                                                          #
    # ------------------------------------------------------------------ #

    async def process_review(self, review_id: str, code: str, language: str, focus: list[str] | None = None) -> None:
        """Run a queued review to completion (background task entry point)."""
        async for _ in self.stream_review(review_id, code, language, focus):
            pass

    async def stream_review(
        self, review_id: str, code: str, language: str, focus: list[str] | None = None
    ) -> AsyncIterator[dict]:
        """Yield ``metadata``, ``chunk``\\* and then ``complete`` or ``error`` events.

        Every event is mirrored into the store record, so a client polling
        the same id sees the same review.

        If the consumer stops early (a disconnected stream client), a record
        left unfinished is marked ERROR instead of waiting out its TTL.
        """
        try:
            yield {"event": "metadata", "reviewId": review_id}
            async with contextlib.aclosing(self._stream_events(review_id, code, language, focus)) as events:
                async for event in events:
                    yield event
        finally:
            await self._fail_if_unfinished(review_id)

    async def _fail_if_unfinished(self, review_id: str) -> None:
        try:
            record = await self.store.get(review_id)
            if record is not None and not record.is_complete:
                logger.warning("Review %s stopped before finishing, marking it failed", review_id)
                await self.store.set_status(review_id, ReviewStatus.ERROR, error="Review stream was interrupted")
        except StoreError as e:
            logger.warning("Could not mark review %s as failed: %s", review_id, e)

    async def _stream_events(
        self, review_id: str, code: str, language: str, focus: list[str] | None
    ) -> AsyncIterator[dict]:
        try:
            await self.store.set_status(review_id, ReviewStatus.PROCESSING)
            system, user = build_review_prompt(code, language or "code", focus)
            buffer = ""
            try:
                async for fragment in self.provider.stream(system, user):
                    buffer += fragment
                    await self.store.append_raw_text(review_id, fragment)
                    parsed = parse_review(buffer)
                    if parsed.success:
                        await self.store.set_parsed_result(review_id, parsed.result.to_dict())
                    yield {"event": "chunk", "content": fragment}
            except GenerationError as e:
                logger.error("Review %s failed while streaming: %s", review_id, e)
                await self.store.set_status(review_id, ReviewStatus.ERROR, error=str(e))
                yield {"event": "error", "reviewId": review_id, "error": str(e)}
                return

            outcome = await self._finish_review(review_id, buffer, language)
        except StoreError as e:
            # Typically the record was deleted or expired mid-review.
            logger.warning("Review %s abandoned: %s", review_id, e)
            yield {"event": "error", "reviewId": review_id, "error": str(e)}
            return

        if outcome.success:
            yield {"event": "complete", "reviewId": review_id, "parsedResponse": outcome.result.to_dict()}
        else:
            yield {"event": "error", "reviewId": review_id, "error": outcome.error, "rawText": buffer}

    async def _finish_review(self, review_id: str, raw_text: str, language: str) -> ParseResult:
        parsed = parse_review(raw_text)
        if parsed.success:
            await self.store.set_parsed_result(review_id, parsed.result.to_dict())
            await self.store.set_status(review_id, ReviewStatus.COMPLETED)
            return parsed

        logger.info("Review %s did not parse (%s), repairing", review_id, parsed.error)
        await self.store.set_parsed_result(review_id, None, parse_error=parsed.error)
        await self.store.set_status(review_id, ReviewStatus.REPAIRING)
        outcome = await self.resolve(raw_text, language)
        if outcome.success:
            await self.store.set_parsed_result(review_id, outcome.result.to_dict())
            await self.store.set_status(review_id, ReviewStatus.COMPLETED)
        else:
            await self.store.set_status(review_id, ReviewStatus.ERROR, error=outcome.error)
        return outcome

    # ------------------------------------------------------------------ #
    # Repair                                                               #
    # ------------------------------------------------------------------ #

    async def resolve(self, raw_text: str, language: str | None) -> ParseResult:
        """Tier 1, then Tier 2 if Tier 1 could not recover both sections."""
        tolerant = repair(raw_text)
        if tolerant.success:
            return tolerant
        logger.info("Tolerant repair failed (%s), asking the service to reformat", tolerant.error)
        try:
            return await repair_with_service(raw_text, self.provider, language)
        except GenerationError as e:
            return ParseResult(success=False, result=tolerant.result, error=f"Repair failed: {e}")

    async def repair(self, raw_text: str, language: str | None = None, review_id: str | None = None) -> ParseResult:
        """Repair endpoint: recover a result from *raw_text*.

        With a *review_id*, a successful repair is written back to the record
        and the record ends up COMPLETED. Failed repairs leave it untouched.
        """
        record = await self.get_review(review_id) if review_id else None

        outcome = parse_review(raw_text)
        if not outcome.success:
            outcome = await self.resolve(raw_text, language or (record.language if record else None))

        if record is not None and outcome.success:
            await self._store_repaired(record, outcome)
        return outcome

    async def _store_repaired(self, record: ReviewRecord, outcome: ParseResult) -> None:
        if record.status == ReviewStatus.ERROR:
            logger.warning("Review %s is in a terminal error state, not storing repaired result", record.id)
            return
        if record.status != ReviewStatus.REPAIRING:
            await self.store.set_status(record.id, ReviewStatus.REPAIRING)
        await self.store.set_parsed_result(record.id, outcome.result.to_dict())
        await self.store.set_status(record.id, ReviewStatus.COMPLETED)

    # ------------------------------------------------------------------ #
    # Chunked flows                                                        #
    # ------------------------------------------------------------------ #

    async def process_detection(
        self, review_id: str, code: str, language: str, focus: list[str] | None = None
    ) -> None:
        await self._run_chunked(review_id, code, language, DETECTION, self.config["chunk_threshold"], focus=focus)

    async def process_implementation(
        self,
        review_id: str,
        code: str,
        language: str,
        issues: list[Issue],
        senior_feedback: str | None = None,
    ) -> None:
        await self._run_chunked(
            review_id,
            code,
            language,
            IMPLEMENTATION,
            self.config["implementation_chunk_threshold"],
            issues=issues,
            senior_feedback=senior_feedback,
        )

    async def _run_chunked(
        self,
        review_id: str,
        code: str,
        language: str,
        phase: str,
        threshold: int,
        issues: list[Issue] | None = None,
        senior_feedback: str | None = None,
        focus: list[str] | None = None,
    ) -> None:
        try:
            await self.store.set_status(review_id, ReviewStatus.PROCESSING)
            chunks = chunk_code(code, language, threshold=threshold)
            await self.store.set_progress(review_id, PROGRESS_START)
            logger.info("%s %s: %d chunk(s)", phase.capitalize(), review_id, len(chunks))

            partial_issues: list[dict] = []

            async def on_progress(event: ChunkProgress) -> None:
                if event.raw_text:
                    await self.store.append_raw_text(review_id, event.raw_text)
                if phase == DETECTION and event.issues:
                    partial_issues.extend(i.to_dict() for i in event.issues)
                    await self.store.set_parsed_result(
                        review_id,
                        {
                            "summary": f"Analysed {event.completed} of {event.total} chunk(s)",
                            "issues": list(partial_issues),
                            "partial": True,
                        },
                    )
                await self.store.set_progress(review_id, event.progress)

            outcome = await self.coordinator.run(
                chunks,
                phase,
                language,
                progress_callback=on_progress,
                approved_issues=issues,
                senior_feedback=senior_feedback,
                focus=focus,
            )

            if not outcome.results:
                first_error = next(iter(outcome.errors.values()), "no chunks")
                error = f"All {len(chunks)} chunk(s) failed: {first_error}"
                logger.error("%s %s failed: %s", phase.capitalize(), review_id, error)
                await self.store.set_status(review_id, ReviewStatus.ERROR, error=error)
                return

            await self.store.set_progress(review_id, AGGREGATION_PROGRESS)
            aggregated = aggregate(outcome.results, {c.id: c for c in chunks}, code)
            await self.store.set_parsed_result(review_id, aggregated.to_dict())
            await self.store.set_status(review_id, ReviewStatus.COMPLETED)
            logger.info(
                "%s %s completed: %d issue(s), score %d",
                phase.capitalize(),
                review_id,
                len(aggregated.issues),
                aggregated.quality_score.overall,
            )
        except StoreError as e:
            logger.warning("%s %s abandoned: %s", phase.capitalize(), review_id, e)
