"""Async HTTP client for the codelens API."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0

# CLI focus names and their reviewFocus keys.
FOCUS_KEYS = {"clean-code": "cleanCode", "performance": "performance", "security": "security"}


class ApiError(Exception):
    """Non-2xx answer from the API."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class CodelensClient:
    """Thin wrapper over httpx.AsyncClient, one method per route.

    Use as an async context manager so the connection pool is closed:

        async with CodelensClient("http://127.0.0.1:8000") as client:
            review_id = await client.submit_review(code, "python")
    """

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    async def __aenter__(self) -> CodelensClient:
        self._http = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError("CodelensClient must be used inside 'async with'")
        return self._http

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        response = await self.http.request(method, path, **kwargs)
        if response.is_error:
            raise ApiError(response.status_code, _error_message(response))
        return response.json()

    # ------------------------------------------------------------------ #
    # Submission                                                           #
    # ------------------------------------------------------------------ #

    async def submit_review(
        self, code: str, language: str | None, filename: str | None = None, focus: list[str] | None = None
    ) -> str:
        body = await self._request("POST", "/reviews", json=_submit_body(code, language, filename, focus))
        return body["reviewId"]

    async def submit_detection(
        self, code: str, language: str | None, filename: str | None = None, focus: list[str] | None = None
    ) -> str:
        body = await self._request("POST", "/detections", json=_submit_body(code, language, filename, focus))
        return body["reviewId"]

    async def submit_implementation(
        self,
        code: str,
        language: str | None,
        issues: list[dict],
        senior_feedback: str | None = None,
        filename: str | None = None,
    ) -> str:
        payload = {**_submit_body(code, language, filename), "issues": issues}
        if senior_feedback:
            payload["seniorFeedback"] = senior_feedback
        body = await self._request("POST", "/implementations", json=payload)
        return body["reviewId"]

    # ------------------------------------------------------------------ #
    # Reads                                                                #
    # ------------------------------------------------------------------ #

    async def get_review(self, review_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/reviews/{review_id}")

    async def get_chunks(self, review_id: str, last_chunk: int = -1) -> dict[str, Any]:
        return await self._request("GET", f"/reviews/{review_id}/chunks", params={"lastChunk": last_chunk})

    async def stream_review(
        self, code: str, language: str | None, filename: str | None = None, focus: list[str] | None = None
    ) -> AsyncIterator[dict]:
        """Yield the decoded events of POST /reviews/stream as they arrive."""
        payload = _submit_body(code, language, filename, focus)
        async with self.http.stream("POST", "/reviews/stream", json=payload) as response:
            if response.is_error:
                await response.aread()
                raise ApiError(response.status_code, _error_message(response))
            async for line in response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                try:
                    yield json.loads(line[len("data:") :].strip())
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed event line: %.80s", line)

    # ------------------------------------------------------------------ #
    # Repair / delete                                                      #
    # ------------------------------------------------------------------ #

    async def repair(self, raw_text: str, language: str | None = None, review_id: str | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"rawText": raw_text}
        if language:
            payload["language"] = language
        if review_id:
            payload["reviewId"] = review_id
        return await self._request("POST", "/repair", json=payload)

    async def delete_review(self, review_id: str) -> dict[str, Any]:
        return await self._request("DELETE", f"/reviews/{review_id}")


def _submit_body(
    code: str, language: str | None, filename: str | None, focus: list[str] | None = None
) -> dict[str, Any]:
    body: dict[str, Any] = {"code": code, "language": language}
    if filename:
        body["filename"] = filename
    if focus:
        body["reviewFocus"] = {key: name in focus for name, key in FOCUS_KEYS.items()}
    return body


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("error") or response.text
    except ValueError:
        return response.text
