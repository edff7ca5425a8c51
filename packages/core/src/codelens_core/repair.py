"""Repair resolver for answers the strict parser rejected.

Tier 1 (:func:`repair`) re-reads the text as loosely as possible: any summary-ish
label or the first paragraph, any bulleted/numbered item carrying code spans,
and the fenced block after a "clean code"-style label (or the last fenced
block). Tier 2 (:func:`repair_with_service`) asks the service to reformat its
own answer. Neither tier calls the other; callers decide when to escalate.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from codelens_core.models import ParseResult, ReviewResult, Suggestion
from codelens_core.parsing import FENCE, parse_review
from codelens_core.prompts import build_repair_prompt

if TYPE_CHECKING:
    from codelens_core.providers.base import BaseProvider

logger = logging.getLogger(__name__)

_SUMMARY_LABEL = re.compile(
    r"^[\s#*>\-]*(?:\w+\s+){0,2}(?:summary|review|analysis|overview|assessment)\b[^:\n]{0,40}:\**\s*(?P<rest>.*)$",
    re.IGNORECASE,
)
# Clean-code labels count only as a heading of their own, never mid-sentence.
_CLEAN_LABEL = re.compile(
    r"^[\s#*>\-]*(?:here(?:\s+is|'s)\s+)?(?:the\s+|your\s+)?"
    r"(?:clean|improved|fixed|refactored|final|updated)[ _\-]?(?:version\s+of\s+the\s+)?code\b"
    r"[\s*]*(?::|(?=```)|$)",
    re.IGNORECASE,
)
_FENCED_BLOCK = re.compile(r"```[^\n`]*\n?(.*?)```", re.DOTALL)
_CODE_SPAN = re.compile(r"```[^\n`]*\n?(.*?)```|`([^`\n]+)`", re.DOTALL)
_ITEM_START = re.compile(r"^\s*(?:[-*•]|\d+[.)]|(?:issue|problem|suggestion)\s*#?\d+\s*:?)(?:\s+|$)", re.IGNORECASE)


def repair(raw: str) -> ParseResult:
    """Tier 1: tolerant re-extraction of a review answer.

    Returns ``success=True`` only when both summary and clean code are
    non-empty. On failure the partial result is returned alongside the error.
    """
    raw = raw or ""
    clean_code, body = _extract_clean_code(raw)
    result = ReviewResult(
        summary=_extract_summary(body) or _extract_summary(raw),
        clean_code=clean_code,
        suggestions=_extract_suggestions(body),
    )
    if result.summary and result.clean_code:
        return ParseResult(success=True, result=result)
    missing = [name for name, value in (("summary", result.summary), ("clean code", result.clean_code)) if not value]
    return ParseResult(success=False, result=result, error=f"Could not extract {' and '.join(missing)}")


async def repair_with_service(raw: str, provider: BaseProvider, language: str | None = None) -> ParseResult:
    """Tier 2: ask the service to reformat *raw*, then parse its answer.

    The answer goes through the strict parser first and Tier 1 second.
    GenerationError from the provider propagates to the caller.
    """
    system, user = build_repair_prompt(raw, language or "code")
    reformatted = await provider.generate(system, user)
    parsed = parse_review(reformatted)
    if parsed.success:
        return parsed
    logger.info("Reformatted answer still fails strict parsing (%s), trying tolerant pass", parsed.error)
    tolerant = repair(reformatted)
    if tolerant.success:
        return tolerant
    return ParseResult(success=False, result=tolerant.result, error=f"Repair failed: {tolerant.error}")


def _outside_fences(lines: list[str]):
    """Yield (index, line, in_fence) where in_fence is the state at the line's start."""
    in_fence = False
    for i, line in enumerate(lines):
        yield i, line, in_fence
        if line.count(FENCE) % 2 == 1:
            in_fence = not in_fence


def _extract_clean_code(raw: str) -> tuple[str, str]:
    """Return (clean_code, text preceding the clean-code section)."""
    lines = raw.splitlines()
    for i, line, in_fence in _outside_fences(lines):
        label = None if in_fence or line.lstrip().startswith(FENCE) else _CLEAN_LABEL.match(line)
        if not label:
            continue
        after_label = "\n".join([line[label.end() :], *lines[i + 1 :]])
        block = _FENCED_BLOCK.search(after_label)
        if block:
            code = block.group(1).strip("\n").rstrip()
        else:
            code = after_label.lstrip(" :-*\t\n").rstrip()
        if code:
            return code, "\n".join(lines[:i])

    blocks = _FENCED_BLOCK.findall(raw)
    if blocks:
        return blocks[-1].strip("\n").rstrip(), raw
    return "", raw


def _extract_summary(text: str) -> str:
    lines = text.splitlines()
    for i, line, in_fence in _outside_fences(lines):
        match = None if in_fence else _SUMMARY_LABEL.match(line)
        if not match:
            continue
        paragraph = [match.group("rest")] if match.group("rest").strip() else []
        for following in lines[i + 1 :]:
            if not following.strip():
                if paragraph:
                    break
                continue
            if following.lstrip().startswith(FENCE):
                break
            paragraph.append(following)
        summary = "\n".join(paragraph).strip().strip("*").strip()
        if summary:
            return summary

    for paragraph in re.split(r"\n\s*\n", text):
        paragraph = paragraph.strip()
        if paragraph and not paragraph.startswith(FENCE):
            return paragraph
    return ""


def _extract_suggestions(text: str) -> list[Suggestion]:
    items: list[list[str]] = []
    for _, line, in_fence in _outside_fences(text.splitlines()):
        if not in_fence and _ITEM_START.match(line):
            items.append([line])
        elif items:
            items[-1].append(line)

    suggestions: list[Suggestion] = []
    seen: set[tuple[int, str, str]] = set()
    for ordinal, item in enumerate(items, start=1):
        content = "\n".join(item)
        spans = [(m.group(1) if m.group(1) is not None else m.group(2)).strip() for m in _CODE_SPAN.finditer(content)]
        spans = [s for s in spans if s][:2]
        if not spans:
            continue
        original = spans[0]
        suggested = spans[1] if len(spans) > 1 else original
        explanation = _CODE_SPAN.sub("", _ITEM_START.sub("", content, count=1)).strip()
        suggestion = Suggestion(
            line_number=ordinal,
            original_code=original,
            suggested_code=suggested,
            explanation=explanation,
        )
        if suggestion.key not in seen:
            seen.add(suggestion.key)
            suggestions.append(suggestion)
    return suggestions
