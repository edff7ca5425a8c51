"""Pipeline exceptions.

Parse and repair failures are not exceptions: both return a ParseResult with
``success=False`` so callers can decide whether to escalate or give up.
"""

from __future__ import annotations


class CodelensError(Exception):
    """Base class for pipeline failures."""


class ValidationError(CodelensError):
    """Submitted input was rejected before entering the pipeline."""


class GenerationError(CodelensError):
    """The generative service failed after all retries."""
