"""Base provider implementing the Template Method pattern.

All providers share the same calling algorithm:
    generate() → _call_with_retry() → _call_api()     ← only this differs per provider
    stream()   → retry until first fragment → _stream_api()

Subclasses implement three things only:
  - __init__: validate and store the SDK client
  - _call_api: make one raw API call and return the text response
  - _stream_api: make one streaming API call and yield text fragments

Retry, backoff and failure reporting live here so they are defined once and
inherited consistently by every provider.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from codelens_core.errors import GenerationError

logger = logging.getLogger(__name__)

# Shared defaults, overridable as class attributes.
_MAX_RETRIES = 3
_MAX_TOKENS = 8192


class BaseProvider(ABC):
    MAX_RETRIES: int = _MAX_RETRIES
    MAX_TOKENS: int = _MAX_TOKENS

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        """Return the full answer text, retrying transient failures.

        Raises GenerationError once MAX_RETRIES attempts have failed.
        """
        return await self._call_with_retry(system_prompt, user_prompt)

    async def stream(self, system_prompt: str, user_prompt: str) -> AsyncIterator[str]:
        """Yield answer fragments as the service produces them.

        A failure before the first fragment is retried like generate(). Once
        fragments have been handed out a retry would duplicate them, so a later
        failure raises GenerationError immediately.
        """
        for attempt in range(self.MAX_RETRIES):
            received = False
            try:
                async for fragment in self._stream_api(system_prompt, user_prompt):
                    if fragment:
                        received = True
                        yield fragment
                return
            except Exception as e:
                if received:
                    logger.error("%s stream broke mid-answer: %s", self.__class__.__name__, e)
                    raise GenerationError(f"Stream interrupted: {e}") from e
                await self._backoff_or_raise(attempt, e)

    # ------------------------------------------------------------------ #
    # Abstract: implement in each provider                                #
    # ------------------------------------------------------------------ #

    @abstractmethod
    async def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        """Make a single API call and return the raw text response.

        It should raise on failure — _call_with_retry handles retries and logging.
        """

    @abstractmethod
    def _stream_api(self, system_prompt: str, user_prompt: str) -> AsyncIterator[str]:
        """Make a single streaming API call, yielding text fragments."""

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    async def _call_with_retry(self, system_prompt: str, user_prompt: str) -> str:
        """Retry _call_api up to MAX_RETRIES times with exponential backoff."""
        for attempt in range(self.MAX_RETRIES):
            try:
                return await self._call_api(system_prompt, user_prompt)
            except Exception as e:
                await self._backoff_or_raise(attempt, e)
        raise GenerationError(f"{self.__class__.__name__} made no attempts")

    async def _backoff_or_raise(self, attempt: int, error: Exception) -> None:
        if attempt == self.MAX_RETRIES - 1:
            logger.error(
                "%s API failed after %d attempts: %s",
                self.__class__.__name__,
                self.MAX_RETRIES,
                error,
            )
            raise GenerationError(f"Generative service failed after {self.MAX_RETRIES} attempts: {error}") from error
        delay = 2**attempt
        logger.warning(
            "%s API error (attempt %d/%d): %s. Retrying in %ds...",
            self.__class__.__name__,
            attempt + 1,
            self.MAX_RETRIES,
            error,
            delay,
        )
        await asyncio.sleep(delay)
