"""Structured-text parser for generated reviews.

The service is asked to answer in a labelled plain-text layout rather than
JSON, because labelled sections survive streaming: a half-finished answer is
still readable and can be re-parsed as it grows.

Review layout::

    SUMMARY: ...
    SUGGESTIONS:
    LINE: 3
    ORIGINAL: ...
    SUGGESTED: ...
    EXPLANATION: ...
    CLEAN_CODE:
    ...

Detection layout::

    SUMMARY: ...
    ISSUES:
    ISSUE 1:
    TYPE: naming
    SEVERITY: high
    LINES: 3, 7-9
    DESCRIPTION: ...
    IMPACT: ...
    SOLUTION: ...

The scanner walks the text line by line. A marker is a label at the start of a
line (optionally decorated with markdown ``#``, ``*``, ``-`` or ``>``),
followed by ``:``/``-`` or the end of the line. Lines inside fenced code blocks
are never markers, so code samples containing ``line:`` cannot split a
section. A section runs up to the next marker; the clean-code section runs to
the end of the text.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from codelens_core.models import SEVERITIES, DetectionResult, Issue, ParseResult, ReviewResult, Suggestion

logger = logging.getLogger(__name__)

FENCE = "```"
MAX_LINE_RANGE = 1000

# Label alternatives, longest first so SUGGESTIONS wins over SUGGESTED etc.
_REVIEW_LABELS = {
    "summary": r"summary",
    "suggestions": r"suggestions",
    "line": r"line",
    "original": r"original(?:[ _]code)?",
    "suggested": r"suggested(?:[ _]code)?",
    "explanation": r"explanation",
    "clean_code": r"clean[ _\-]?code",
}
_DETECTION_LABELS = {
    "summary": r"summary",
    "issues": r"issues",
    "issue": r"issue",
    "type": r"type",
    "severity": r"severity",
    "lines": r"lines?",
    "description": r"description",
    "impact": r"impact",
    "solution": r"(?:proposed[ _])?solution",
}

_SEVERITY_ALIASES = {"blocker": "critical", "major": "high", "moderate": "medium", "minor": "low", "trivial": "low"}


@dataclass
class Section:
    label: str
    text: str


def _marker_pattern(labels: dict[str, str]) -> re.Pattern:
    alternatives = "|".join(f"(?P<{name}>{pattern})" for name, pattern in labels.items())
    return re.compile(
        rf"^[\s#*>\-]*(?:{alternatives})(?!\w)\**(?:\s*#?(?P<num>\d+))?\s*(?:[:\-]\**\s*(?P<rest>.*)|\**\s*$)",
        re.IGNORECASE,
    )


_REVIEW_MARKER = _marker_pattern(_REVIEW_LABELS)
_DETECTION_MARKER = _marker_pattern(_DETECTION_LABELS)


def scan_sections(raw: str, marker: re.Pattern, terminal: str | None = None) -> list[Section]:
    """Split *raw* into labelled sections.

    Text before the first marker is discarded. Once the *terminal* label is
    seen, everything after it belongs to that section.
    """
    sections: list[Section] = []
    current: list[str] | None = None
    in_fence = False
    for line in raw.splitlines():
        match = None if in_fence or (sections and sections[-1].label == terminal) else marker.match(line)
        if match:
            if current is not None:
                sections[-1].text = "\n".join(current).strip()
            label = next(name for name, value in match.groupdict().items() if value and name not in ("num", "rest"))
            sections.append(Section(label=label, text=""))
            rest = " ".join(part for part in (match.group("num"), match.group("rest")) if part)
            current = [rest] if rest.strip() else []
        elif current is not None:
            current.append(line)
        if line.count(FENCE) % 2 == 1:
            in_fence = not in_fence
    if current is not None:
        sections[-1].text = "\n".join(current).strip()
    return sections


def strip_code_fence(text: str) -> str:
    """Strip one outer markdown fence (with optional language tag) or inline backticks."""
    cleaned = text.strip()
    if cleaned.startswith(FENCE):
        newline_pos = cleaned.find("\n")
        if newline_pos == -1:
            return cleaned.strip("`").strip()
        body = cleaned[newline_pos + 1 :]
        if body.rstrip().endswith(FENCE):
            body = body.rstrip()[: -len(FENCE)]
        return body.strip("\n").rstrip()
    if len(cleaned) > 1 and cleaned.startswith("`") and cleaned.endswith("`") and "`" not in cleaned[1:-1]:
        return cleaned[1:-1]
    return cleaned


def _first_int(text: str) -> int | None:
    match = re.search(r"\d+", text)
    return int(match.group()) if match else None


def parse_line_numbers(text: str) -> list[int]:
    """Expand ``"3, 7-9"`` into ``[3, 7, 8, 9]``."""
    numbers: list[int] = []
    for match in re.finditer(r"(\d+)(?:\s*(?:-|–|to)\s*(\d+))?", text):
        start = int(match.group(1))
        end = int(match.group(2)) if match.group(2) else start
        if end < start or end - start > MAX_LINE_RANGE:
            end = start
        for n in range(start, end + 1):
            if n not in numbers:
                numbers.append(n)
    return numbers


def normalize_severity(text: str) -> str:
    word = re.sub(r"[^a-z]", "", (text or "").lower())
    word = _SEVERITY_ALIASES.get(word, word)
    return word if word in SEVERITIES else "medium"


def _first(sections: list[Section], label: str) -> Section | None:
    return next((s for s in sections if s.label == label), None)


def parse_review(raw: str) -> ParseResult:
    """Parse a review/implementation answer into a ReviewResult."""
    sections = scan_sections(raw or "", _REVIEW_MARKER, terminal="clean_code")

    summary = _first(sections, "summary")
    if summary is None:
        return ParseResult(success=False, error="Failed to extract summary section from response")
    clean = _first(sections, "clean_code")
    if clean is None:
        return ParseResult(success=False, error="Failed to extract clean code section from response")
    clean_code = strip_code_fence(clean.text)
    if not summary.text or not clean_code:
        return ParseResult(success=False, error="One or more sections are empty in the parsed response")

    result = ReviewResult(summary=summary.text, clean_code=clean_code, suggestions=_collect_suggestions(sections))
    return ParseResult(success=True, result=result)


def _collect_suggestions(sections: list[Section]) -> list[Suggestion]:
    suggestions: list[Suggestion] = []
    seen: set[tuple[int, str, str]] = set()
    block: dict[str, str] | None = None

    def flush():
        if block is None:
            return
        line_number = _first_int(block.get("line", ""))
        if line_number is None or "original" not in block or "suggested" not in block:
            logger.debug("Dropping incomplete suggestion block: %s", block)
            return
        suggestion = Suggestion(
            line_number=line_number,
            original_code=strip_code_fence(block["original"]),
            suggested_code=strip_code_fence(block["suggested"]),
            explanation=block.get("explanation", ""),
        )
        if suggestion.key not in seen:
            seen.add(suggestion.key)
            suggestions.append(suggestion)

    for section in sections:
        if section.label == "line":
            flush()
            block = {"line": section.text}
        elif section.label in ("original", "suggested", "explanation") and block is not None:
            block.setdefault(section.label, section.text)
        elif section.label in ("clean_code", "summary"):
            flush()
            block = None
    flush()
    return suggestions


def parse_detection(raw: str) -> ParseResult:
    """Parse a detection answer into a DetectionResult."""
    sections = scan_sections(raw or "", _DETECTION_MARKER)

    summary = _first(sections, "summary")
    if summary is None or not summary.text:
        return ParseResult(success=False, error="Failed to extract summary section from response")

    issues: list[Issue] = []
    seen: set[tuple[str, str]] = set()
    block: dict[str, str] | None = None

    def flush():
        if block is None:
            return
        if not block.get("type") or not block.get("description"):
            logger.debug("Dropping incomplete issue block: %s", block)
            return
        issue = Issue(
            type=block["type"].strip().lower().replace(" ", "_"),
            description=block["description"],
            severity=normalize_severity(block.get("severity", "")),
            line_numbers=parse_line_numbers(block.get("lines", "")),
            impact=block.get("impact") or None,
            proposed_solution=block.get("solution") or None,
        )
        if (issue.type, issue.description) not in seen:
            seen.add((issue.type, issue.description))
            issues.append(issue)

    for section in sections:
        if section.label == "issue" or (section.label == "type" and (block is None or "type" in block)):
            flush()
            block = {}
        if section.label in ("type", "severity", "lines", "description", "impact", "solution") and block is not None:
            block.setdefault(section.label, section.text)
    flush()

    return ParseResult(success=True, result=DetectionResult(summary=summary.text, issues=issues))
