"""Store exceptions.

Not-found is deliberately a separate type from invalid transitions so the
HTTP layer can map it to 404 without confusing it with a processing failure.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for review store failures."""


class ReviewNotFoundError(StoreError):
    def __init__(self, review_id: str):
        super().__init__(f"Review not found: {review_id}")
        self.review_id = review_id


class InvalidTransitionError(StoreError):
    def __init__(self, review_id: str, current: str, target: str, reason: str | None = None):
        message = f"Review {review_id}: cannot go from {current} to {target}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)
        self.review_id = review_id
        self.current = current
        self.target = target
