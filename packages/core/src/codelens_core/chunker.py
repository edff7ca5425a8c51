"""Split oversized source files into bounded line-range chunks.

Chunks are disjoint and contiguous: concatenating their lines in order
reproduces the input. Splits prefer logical units (top-level functions and
classes), then blank lines followed by unindented code, and fall back to
fixed-size windows for languages whose structure we do not recognise.
"""

from __future__ import annotations

import logging
import re

from codelens_core.models import Chunk

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 100
IMPLEMENTATION_THRESHOLD = 500

_LANGUAGE_ALIASES = {
    "py": "python",
    "js": "javascript",
    "jsx": "javascript",
    "mjs": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "c++": "cpp",
    "cc": "cpp",
    "c#": "csharp",
    "cs": "csharp",
    "golang": "go",
    "rs": "rust",
    "kt": "kotlin",
}

_PYTHON_UNIT = re.compile(r"^(?:async\s+def|def|class)\b")
_PYTHON_DECORATOR = re.compile(r"^@")

_BRACE_LANGUAGES = frozenset(
    {"javascript", "typescript", "java", "c", "cpp", "csharp", "go", "rust", "php", "kotlin", "swift", "scala"}
)
_BRACE_UNIT = re.compile(
    r"^(?:export\s+)?(?:default\s+)?(?:public\s+|private\s+|protected\s+|internal\s+)?"
    r"(?:static\s+|abstract\s+|final\s+)*(?:async\s+)?"
    r"(?:function|class|interface|enum|type|struct|impl|trait|fn|func|const|let|var|def|object)\b"
)


def normalize_language(language: str | None) -> str:
    lang = (language or "").strip().lower()
    return _LANGUAGE_ALIASES.get(lang, lang)


def line_count(code: str) -> int:
    return len(code.splitlines())


def chunk_code(code: str, language: str | None, threshold: int = DEFAULT_THRESHOLD) -> list[Chunk]:
    """Split *code* into chunks of at most roughly *threshold* lines.

    Input at or below the threshold is returned as a single chunk.
    """
    lines = code.splitlines()
    if len(lines) <= threshold:
        return [Chunk(id=0, code=code, start_line=0, end_line=max(len(lines) - 1, 0))]

    lang = normalize_language(language)
    if lang == "python" or lang in _BRACE_LANGUAGES:
        primary, secondary = _boundaries(lines, lang)
        spans = _split_on_boundaries(len(lines), threshold, primary, secondary)
        if spans is None:
            logger.info("No safe split point in %d-line %s input, using a single chunk", len(lines), lang)
            return [Chunk(id=0, code=code, start_line=0, end_line=len(lines) - 1)]
    else:
        spans = [(start, min(start + threshold, len(lines))) for start in range(0, len(lines), threshold)]

    spans = _merge_small_tail(spans, min_lines=max(1, threshold // 10))
    chunks = [
        Chunk(id=i, code="\n".join(lines[start:end]), start_line=start, end_line=end - 1)
        for i, (start, end) in enumerate(spans)
    ]
    logger.debug("Split %d lines into %d chunk(s)", len(lines), len(chunks))
    return chunks


def _boundaries(lines: list[str], lang: str) -> tuple[set[int], set[int]]:
    """Return (logical-unit, blank-line) split points.

    A split point ``i`` means a new chunk may begin at line index ``i``.
    """
    primary: set[int] = set()
    secondary: set[int] = set()
    for i, line in enumerate(lines):
        if i == 0 or not line.strip():
            continue
        if lang != "python" and lines[i - 1].startswith("}"):
            primary.add(i)
        if line[0].isspace():
            continue
        if lang == "python":
            if _PYTHON_UNIT.match(line):
                # Keep decorators attached to the definition they decorate.
                j = i
                while j > 0 and _PYTHON_DECORATOR.match(lines[j - 1]):
                    j -= 1
                if j > 0:
                    primary.add(j)
        elif _BRACE_UNIT.match(line):
            primary.add(i)
        if not lines[i - 1].strip() and not _PYTHON_DECORATOR.match(line):
            secondary.add(i)
    return primary, secondary


def _split_on_boundaries(
    total: int, threshold: int, primary: set[int], secondary: set[int]
) -> list[tuple[int, int]] | None:
    spans: list[tuple[int, int]] = []
    start = 0
    while total - start > threshold:
        window = range(start + threshold, start, -1)
        split = next((b for b in window if b in primary), None)
        if split is None:
            split = next((b for b in window if b in secondary), None)
        if split is None:
            if not spans:
                return None
            # Nothing safe left: keep the remainder whole.
            break
        spans.append((start, split))
        start = split
    spans.append((start, total))
    return spans


def _merge_small_tail(spans: list[tuple[int, int]], min_lines: int) -> list[tuple[int, int]]:
    if len(spans) > 1 and spans[-1][1] - spans[-1][0] < min_lines:
        (prev_start, _), (_, tail_end) = spans[-2], spans[-1]
        spans = spans[:-2] + [(prev_start, tail_end)]
    return spans
