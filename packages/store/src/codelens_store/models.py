"""Review record data model.

Decoupled from codelens_core so the store layer can be used independently:
the parsed response is kept as a plain JSON-compatible dict and the core
converts its own result types before handing them over.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from enum import Enum


class ReviewStatus(str, Enum):
    """Lifecycle states of a review record."""

    QUEUED = "queued"
    PROCESSING = "processing"
    REPAIRING = "repairing"
    COMPLETED = "completed"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value

    @property
    def is_complete(self) -> bool:
        return self in (ReviewStatus.COMPLETED, ReviewStatus.ERROR)


# Allowed status transitions. Anything not listed is rejected by the store.
_TRANSITIONS: dict[ReviewStatus, frozenset[ReviewStatus]] = {
    ReviewStatus.QUEUED: frozenset({ReviewStatus.PROCESSING, ReviewStatus.ERROR}),
    ReviewStatus.PROCESSING: frozenset({ReviewStatus.COMPLETED, ReviewStatus.ERROR, ReviewStatus.REPAIRING}),
    ReviewStatus.REPAIRING: frozenset({ReviewStatus.COMPLETED, ReviewStatus.ERROR}),
    ReviewStatus.COMPLETED: frozenset({ReviewStatus.REPAIRING}),
    ReviewStatus.ERROR: frozenset(),
}


def can_transition(current: ReviewStatus, target: ReviewStatus) -> bool:
    return target in _TRANSITIONS[current]


@dataclass
class ReviewRecord:
    """State of one review, owned exclusively by a store.

    ``chunks`` holds raw text fragments in arrival order — streamed pieces of a
    single answer for ``kind="review"``, one full answer per code chunk for the
    chunked detection/implementation passes.
    """

    id: str
    status: ReviewStatus = ReviewStatus.QUEUED
    chunks: list[str] = field(default_factory=list)
    parsed_response: dict | None = None
    error: str | None = None
    parse_error: str | None = None
    language: str | None = None
    filename: str | None = None
    kind: str = "review"  # "review" | "detection" | "implementation"
    progress: int = 0
    timestamp: float = field(default_factory=time.time)
    last_updated: float = field(default_factory=time.time)

    @property
    def raw_text(self) -> str:
        return "".join(self.chunks)

    @property
    def is_complete(self) -> bool:
        return self.status.is_complete

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = str(self.status)
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, d: dict) -> ReviewRecord:
        now = time.time()
        return cls(
            id=d["id"],
            status=ReviewStatus(d.get("status", ReviewStatus.QUEUED.value)),
            chunks=list(d.get("chunks") or []),
            parsed_response=d.get("parsed_response"),
            error=d.get("error"),
            parse_error=d.get("parse_error"),
            language=d.get("language"),
            filename=d.get("filename"),
            kind=d.get("kind", "review"),
            progress=d.get("progress", 0),
            timestamp=d.get("timestamp", now),
            last_updated=d.get("last_updated", now),
        )

    @classmethod
    def from_json(cls, payload: str | bytes) -> ReviewRecord:
        return cls.from_dict(json.loads(payload))
