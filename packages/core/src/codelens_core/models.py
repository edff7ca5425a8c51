"""Typed results of the review pipeline.

``to_dict`` produces the camelCase layout that is stored in a review record's
``parsed_response`` and returned verbatim by the HTTP API.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field, replace

SEVERITIES = ("critical", "high", "medium", "low")


def content_id(*parts: object) -> str:
    """Short stable id derived from content, so re-parsing yields equal objects."""
    digest = hashlib.sha1("\x1f".join(str(p) for p in parts).encode("utf-8"))
    return digest.hexdigest()[:12]


@dataclass(frozen=True)
class Chunk:
    """A line-range slice of the original input.

    ``start_line`` is the number of original lines preceding the chunk, so a
    1-based chunk-relative line ``n`` is file line ``n + start_line``.
    ``end_line`` is the 0-based index of the chunk's last line.
    """

    id: int
    code: str
    start_line: int
    end_line: int

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1

    def to_file_line(self, relative_line: int) -> int:
        return relative_line + self.start_line


@dataclass
class Issue:
    type: str
    description: str
    severity: str = "medium"
    line_numbers: list[int] = field(default_factory=list)
    impact: str | None = None
    proposed_solution: str | None = None
    approved: bool = False
    senior_comments: str | None = None
    id: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = content_id("issue", self.type, self.description)

    def offset(self, start_line: int) -> Issue:
        return replace(self, line_numbers=[n + start_line for n in self.line_numbers])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "severity": self.severity,
            "description": self.description,
            "impact": self.impact,
            "lineNumbers": list(self.line_numbers),
            "proposedSolution": self.proposed_solution,
            "approved": self.approved,
            "seniorComments": self.senior_comments,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Issue:
        severity = str(d.get("severity", "medium")).lower()
        return cls(
            id=d.get("id", ""),
            type=d.get("type", "general"),
            description=d.get("description", ""),
            severity=severity if severity in SEVERITIES else "medium",
            line_numbers=[int(n) for n in d.get("lineNumbers", d.get("line_numbers", []))],
            impact=d.get("impact"),
            proposed_solution=d.get("proposedSolution", d.get("proposed_solution")),
            approved=bool(d.get("approved", False)),
            senior_comments=d.get("seniorComments", d.get("senior_comments")),
        )


@dataclass
class Suggestion:
    line_number: int
    original_code: str
    suggested_code: str
    explanation: str = ""
    accepted: bool | None = None
    id: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = content_id("suggestion", *self.key)

    @property
    def key(self) -> tuple[int, str, str]:
        return (self.line_number, self.original_code, self.suggested_code)

    def offset(self, start_line: int) -> Suggestion:
        return Suggestion(
            line_number=self.line_number + start_line,
            original_code=self.original_code,
            suggested_code=self.suggested_code,
            explanation=self.explanation,
            accepted=self.accepted,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lineNumber": self.line_number,
            "originalCode": self.original_code,
            "suggestedCode": self.suggested_code,
            "explanation": self.explanation,
            "accepted": self.accepted,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Suggestion:
        return cls(
            id=d.get("id", ""),
            line_number=int(d.get("lineNumber", 0)),
            original_code=d.get("originalCode", ""),
            suggested_code=d.get("suggestedCode", ""),
            explanation=d.get("explanation", ""),
            accepted=d.get("accepted"),
        )


@dataclass
class QualityScore:
    overall: int
    categories: dict[str, int]

    def to_dict(self) -> dict:
        return {"overall": self.overall, "categories": dict(self.categories)}


@dataclass
class ReviewResult:
    summary: str
    clean_code: str
    suggestions: list[Suggestion] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "summary": self.summary,
            "suggestions": [s.to_dict() for s in self.suggestions],
            "cleanCode": self.clean_code,
        }

    @classmethod
    def from_dict(cls, d: dict) -> ReviewResult:
        return cls(
            summary=d.get("summary", ""),
            clean_code=d.get("cleanCode", ""),
            suggestions=[Suggestion.from_dict(s) for s in d.get("suggestions", [])],
        )


@dataclass
class DetectionResult:
    summary: str
    issues: list[Issue] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"summary": self.summary, "issues": [i.to_dict() for i in self.issues]}


@dataclass
class AggregatedResult:
    summary: str
    quality_score: QualityScore
    issues: list[Issue] = field(default_factory=list)
    suggestions: list[Suggestion] = field(default_factory=list)
    clean_code: str | None = None
    chunk_count: int = 1
    failed_chunks: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        d = {
            "summary": self.summary,
            "issues": [i.to_dict() for i in self.issues],
            "suggestions": [s.to_dict() for s in self.suggestions],
            "qualityScore": self.quality_score.to_dict(),
            "chunkCount": self.chunk_count,
            "failedChunks": list(self.failed_chunks),
        }
        if self.clean_code is not None:
            d["cleanCode"] = self.clean_code
        return d


@dataclass
class ParseResult:
    success: bool
    result: ReviewResult | DetectionResult | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        d: dict = {"success": self.success}
        if self.result is not None:
            d["result"] = self.result.to_dict()
        if self.error:
            d["error"] = self.error
        return d
