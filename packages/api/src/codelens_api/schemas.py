"""Request and response bodies for the HTTP API.

Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from typing import Any

from codelens_core.models import Issue
from codelens_core.prompts import FOCUS_AREAS
from codelens_store.models import ReviewRecord
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CodeRequest(CamelModel):
    code: str
    language: str | None = None
    filename: str | None = None


class ReviewFocus(CamelModel):
    """Areas to steer the review toward. An empty selection means clean code."""

    clean_code: bool = False
    performance: bool = False
    security: bool = False

    def names(self) -> list[str]:
        return [name for name in FOCUS_AREAS if getattr(self, name)]


class SubmitRequest(CodeRequest):
    review_focus: ReviewFocus | None = None

    @property
    def focus(self) -> list[str] | None:
        return self.review_focus.names() if self.review_focus else None


class IssueBody(CamelModel):
    id: str = ""
    type: str = "general"
    severity: str = "medium"
    description: str = ""
    impact: str | None = None
    line_numbers: list[int] = Field(default_factory=list)
    proposed_solution: str | None = None
    approved: bool = False
    senior_comments: str | None = None

    def to_issue(self) -> Issue:
        return Issue.from_dict(self.model_dump(by_alias=True))


class ImplementationRequest(CodeRequest):
    issues: list[IssueBody] = Field(default_factory=list)
    senior_feedback: str | None = None


class RepairRequest(CamelModel):
    raw_text: str
    language: str | None = None
    review_id: str | None = None


class SubmitResponse(CamelModel):
    review_id: str
    status: str


class StatusResponse(CamelModel):
    review_id: str
    status: str
    chunks: list[str]
    last_updated: float
    is_complete: bool
    progress: int
    kind: str
    error: str | None = None
    parse_error: str | None = None
    parsed_response: dict[str, Any] | None = None

    @classmethod
    def from_record(cls, record: ReviewRecord) -> StatusResponse:
        return cls(
            review_id=record.id,
            status=str(record.status),
            chunks=record.chunks,
            last_updated=record.last_updated,
            is_complete=record.is_complete,
            progress=record.progress,
            kind=record.kind,
            error=record.error,
            parse_error=record.parse_error,
            parsed_response=record.parsed_response,
        )


class ChunksResponse(CamelModel):
    review_id: str
    status: str
    chunks: list[str]
    next_chunk_id: int
    is_complete: bool
    error: str | None = None


class RepairResponse(CamelModel):
    success: bool
    result: dict[str, Any] | None = None
    error: str | None = None
