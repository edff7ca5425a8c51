"""System prompts and user message builders for each pipeline phase.

Every builder returns a ``(system, user)`` pair. The answer layouts described
here are the ones codelens_core.parsing understands.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from codelens_core.models import Chunk, Issue


# ── Shared persona ───────────────────────────────────────────────────────────

_PERSONA = """You are an expert software engineer conducting a code review based on clean code \
principles and the best practices of the language under review.

Follow the exact answer layout you are given. Section headers must appear at the start \
of a line, exactly as shown. Wrap code in triple-backtick fences."""


_REVIEW_LAYOUT = """SUMMARY:
[Comprehensive analysis of the code quality: major issues and strengths.]

SUGGESTIONS:
LINE: [line number in the code as given]
ORIGINAL: [original code]
SUGGESTED: [suggested improvement]
EXPLANATION: [why this change improves the code]

[Repeat the LINE/ORIGINAL/SUGGESTED/EXPLANATION block for each suggestion, most important first]

CLEAN_CODE:
[Complete improved version of the code. It MUST include the ENTIRE code, not just the changes.]"""


_DETECTION_LAYOUT = """SUMMARY:
[Short overall assessment of this code.]

ISSUES:
ISSUE 1:
TYPE: [one of naming, readability, commenting, formatting, documentation, duplication, structure, \
architecture, error_handling, testing, complexity, performance, dead_code, nesting, consistency, \
style, conventions, security]
SEVERITY: [critical|high|medium|low]
LINES: [comma-separated line numbers or ranges, e.g. 3, 7-9]
DESCRIPTION: [what is wrong]
IMPACT: [what it costs if left as is]
SOLUTION: [how to fix it]

[Repeat the ISSUE block for each issue. Do not rewrite the code.]"""


# ── Review focus ─────────────────────────────────────────────────────────────

FOCUS_AREAS = {
    "clean_code": [
        "Function and variable naming",
        "Code organization and structure",
        "Function length and complexity",
        "Error handling approach",
        "Consistency in style and patterns",
        "Code duplication and reusability",
    ],
    "performance": [
        "Algorithm efficiency",
        "Resource usage optimization",
        "Unnecessary computations",
        "Performance bottlenecks",
    ],
    "security": [
        "Input validation",
        "Authentication/authorization issues",
        "Data exposure risks",
        "Common security vulnerabilities",
    ],
}

DEFAULT_FOCUS = ("clean_code",)


def focus_areas(focus: Iterable[str] | None = None) -> list[str]:
    """Checklist items for the selected focus names, in FOCUS_AREAS order.

    An empty or missing selection means clean code only.
    """
    selected = set(focus or DEFAULT_FOCUS)
    return [item for name, items in FOCUS_AREAS.items() if name in selected for item in items]


def _focus_note(focus: Iterable[str] | None) -> str:
    return "Focus on these areas:\n" + "\n".join(f"- {item}" for item in focus_areas(focus))


# ── Review ───────────────────────────────────────────────────────────────────

REVIEW_SYSTEM = f"""{_PERSONA}

Your answer MUST strictly follow this layout:

{_REVIEW_LAYOUT}

Guidelines:
1. Line numbers in suggestions must correspond to the code as given
2. Limit yourself to the 10-15 most important suggestions
3. Do not suggest changes for the same line multiple times
4. Do not truncate or abbreviate the clean code: it must be complete and runnable"""


def build_review_prompt(code: str, language: str, focus: Iterable[str] | None = None) -> tuple[str, str]:
    user = f"""Review the following {language} code.

{_focus_note(focus)}

CODE TO REVIEW ({language}):
{code}"""
    return REVIEW_SYSTEM, user


# ── Detection ────────────────────────────────────────────────────────────────

DETECTION_SYSTEM = f"""{_PERSONA}

You are in the detection phase: identify issues only, do not produce modified code.

Your answer MUST strictly follow this layout:

{_DETECTION_LAYOUT}"""


def chunk_context(chunk: Chunk, total: int) -> str:
    """Human-readable position of *chunk* within the file, e.g. "chunk 2 of 3, lines 101-200"."""
    return f"chunk {chunk.id + 1} of {total}, lines {chunk.start_line + 1}-{chunk.end_line + 1}"


def _partial_note(chunk: Chunk | None, total: int) -> str:
    if chunk is None or total <= 1:
        return ""
    return (
        f"\nYou are seeing {chunk_context(chunk, total)} of a larger file. Code outside this range "
        "may define names used here. Number lines relative to the first line shown (line 1).\n"
    )


def build_detection_prompt(
    code: str,
    language: str,
    chunk: Chunk | None = None,
    total: int = 1,
    focus: Iterable[str] | None = None,
) -> tuple[str, str]:
    user = f"""Identify the issues in the following {language} code.
{_partial_note(chunk, total)}
{_focus_note(focus)}

CODE ({language}):
{code}"""
    return DETECTION_SYSTEM, user


# ── Implementation ───────────────────────────────────────────────────────────

IMPLEMENTATION_SYSTEM = f"""{_PERSONA}

You are in the implementation phase: apply the approved issues to the code and return the \
modified code. Only change what the approved issues require.

Your answer MUST strictly follow this layout:

{_REVIEW_LAYOUT}"""


def _format_issues(issues: list[Issue]) -> str:
    if not issues:
        return "(no approved issues: return the code unchanged)"
    lines = []
    for n, issue in enumerate(issues, start=1):
        where = ", ".join(str(x) for x in issue.line_numbers) or "unspecified"
        lines.append(f"{n}. [{issue.severity}] {issue.type} (lines {where}): {issue.description}")
        if issue.proposed_solution:
            lines.append(f"   Proposed solution: {issue.proposed_solution}")
        if issue.senior_comments:
            lines.append(f"   Senior reviewer comment: {issue.senior_comments}")
    return "\n".join(lines)


def build_implementation_prompt(
    code: str,
    language: str,
    issues: list[Issue],
    senior_feedback: str | None = None,
    chunk: Chunk | None = None,
    total: int = 1,
) -> tuple[str, str]:
    feedback = f"\nSenior reviewer feedback:\n{senior_feedback}\n" if senior_feedback else ""
    user = f"""Implement the approved issues below in the following {language} code.
{_partial_note(chunk, total)}
Approved issues (line numbers are relative to the code shown):
{_format_issues(issues)}
{feedback}
CODE ({language}):
{code}"""
    return IMPLEMENTATION_SYSTEM, user


# ── Repair ───────────────────────────────────────────────────────────────────

REPAIR_SYSTEM = f"""{_PERSONA}

You reformat code reviews that did not follow the required layout. Preserve all technical \
content; if the clean code section is missing or incomplete, reconstruct it by applying \
every suggestion to the original code."""


def build_repair_prompt(raw_text: str, language: str) -> tuple[str, str]:
    user = f"""I received the following {language} code review, but it does not follow the required \
layout or its clean code section is incomplete. Restructure it into exactly this layout:

{_REVIEW_LAYOUT}

Here is the review text that needs to be reformatted:
{raw_text}"""
    return REPAIR_SYSTEM, user
