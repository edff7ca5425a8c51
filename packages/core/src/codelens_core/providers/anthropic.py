from __future__ import annotations

from collections.abc import AsyncIterator

from codelens_core.providers.base import BaseProvider


class AnthropicProvider(BaseProvider):
    MODEL = "claude-sonnet-4-20250514"
    # Low temperature keeps the section layout stable across answers.
    TEMPERATURE = 0.3

    def __init__(self, api_key: str):
        try:
            from anthropic import AsyncAnthropic
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for this provider. Install it with: pip install anthropic"
            )
        self.client = AsyncAnthropic(api_key=api_key)

    async def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        from anthropic.types import TextBlock

        response = await self.client.messages.create(
            model=self.MODEL,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
        )
        text_blocks = [block.text for block in response.content if isinstance(block, TextBlock)]
        return "".join(text_blocks).strip()

    async def _stream_api(self, system_prompt: str, user_prompt: str) -> AsyncIterator[str]:
        async with self.client.messages.stream(
            model=self.MODEL,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
        ) as stream:
            async for text in stream.text_stream:
                yield text
