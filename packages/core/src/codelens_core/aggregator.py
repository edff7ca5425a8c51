"""Merge per-chunk results into one file-relative result.

Results are walked in chunk order (by ``start_line``), never in completion
order, so the output does not depend on which chunk finished first.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping

from codelens_core.models import (
    AggregatedResult,
    Chunk,
    DetectionResult,
    Issue,
    QualityScore,
    ReviewResult,
    Suggestion,
)

logger = logging.getLogger(__name__)

SEVERITY_PENALTY = {"critical": 15, "high": 8, "medium": 3, "low": 1}
CATEGORY_PENALTY = 5

CATEGORY_TYPES: dict[str, frozenset[str]] = {
    "readability": frozenset({"naming", "readability", "commenting", "formatting", "documentation"}),
    "maintainability": frozenset({"duplication", "structure", "architecture", "error_handling", "testing"}),
    "simplicity": frozenset({"complexity", "performance", "dead_code", "nesting"}),
    "consistency": frozenset({"consistency", "style", "conventions", "security"}),
}


def _clamp(value: float) -> int:
    return int(round(min(100.0, max(0.0, value))))


def quality_score(issues: list[Issue], total_lines: int) -> QualityScore:
    """Heuristic 0-100 score: penalise by severity, allow a little slack for size."""
    penalty = sum(SEVERITY_PENALTY.get(issue.severity, SEVERITY_PENALTY["medium"]) for issue in issues)
    overall = _clamp(100 - penalty + 2 * math.log10(max(total_lines, 10)))
    categories = {
        name: _clamp(overall - CATEGORY_PENALTY * sum(1 for issue in issues if issue.type in types))
        for name, types in CATEGORY_TYPES.items()
    }
    return QualityScore(overall=overall, categories=categories)


def _in_range(numbers: list[int], total_lines: int) -> bool:
    return all(1 <= n <= total_lines for n in numbers)


def aggregate(
    per_chunk_results: Mapping[int, DetectionResult | ReviewResult],
    chunks: Mapping[int, Chunk],
    original_code: str,
) -> AggregatedResult:
    """Combine chunk results keyed by chunk id.

    Issue and suggestion line numbers are offset by their chunk's
    ``start_line`` and must land inside the original input; anything outside
    is dropped and logged. Chunks without a result are reported as failed.
    """
    total_lines = max(len(original_code.splitlines()), 1)
    ordered = sorted(chunks.values(), key=lambda c: c.start_line)

    issues: list[Issue] = []
    suggestions: list[Suggestion] = []
    seen_issues: set[tuple[str, str]] = set()
    seen_suggestions: set[tuple[int, str, str]] = set()
    clean_parts: list[str] = []
    failed: list[int] = []
    implementation = any(isinstance(r, ReviewResult) for r in per_chunk_results.values())

    for chunk in ordered:
        result = per_chunk_results.get(chunk.id)
        if result is None:
            failed.append(chunk.id)
            if implementation:
                # Failed chunks keep their original code.
                clean_parts.append(chunk.code)
            continue

        for issue in getattr(result, "issues", []):
            key = (issue.type, issue.description)
            if key in seen_issues:
                continue
            shifted = issue.offset(chunk.start_line)
            if not _in_range(shifted.line_numbers, total_lines):
                logger.warning(
                    "Dropping issue %s from chunk %d: lines %s outside 1-%d",
                    issue.id,
                    chunk.id,
                    shifted.line_numbers,
                    total_lines,
                )
                continue
            seen_issues.add(key)
            issues.append(shifted)

        for suggestion in getattr(result, "suggestions", []):
            shifted = suggestion.offset(chunk.start_line)
            if shifted.key in seen_suggestions:
                continue
            if not _in_range([shifted.line_number], total_lines):
                logger.warning(
                    "Dropping suggestion from chunk %d: line %d outside 1-%d",
                    chunk.id,
                    shifted.line_number,
                    total_lines,
                )
                continue
            seen_suggestions.add(shifted.key)
            suggestions.append(shifted)

        clean_code = getattr(result, "clean_code", None)
        if clean_code is not None:
            clean_parts.append(clean_code)

    summary = f"Found {len(issues)} issue(s) across {len(ordered)} chunk(s)."
    if implementation:
        summary = f"Applied changes across {len(ordered)} chunk(s) with {len(suggestions)} suggestion(s)."
    if failed:
        summary += f" {len(failed)} chunk(s) could not be analysed."

    return AggregatedResult(
        summary=summary,
        quality_score=quality_score(issues, total_lines),
        issues=issues,
        suggestions=suggestions,
        clean_code="\n".join(clean_parts) if implementation else None,
        chunk_count=len(ordered),
        failed_chunks=failed,
    )
