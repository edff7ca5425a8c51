"""Helpers shared by the subcommands."""

from __future__ import annotations

import asyncio
from pathlib import Path

import click
import httpx

from codelens_cli.client import FOCUS_KEYS, ApiError

focus_option = click.option(
    "--focus",
    "-f",
    multiple=True,
    type=click.Choice(list(FOCUS_KEYS)),
    help="Area to concentrate on. Repeat for several. Defaults to clean-code.",
)


def read_source(path: str, language: str | None) -> tuple[str, str, str]:
    """Return (code, language, filename); the language defaults to the file extension."""
    from codelens_core.chunker import normalize_language

    source = Path(path)
    code = source.read_text(encoding="utf-8")
    if not code.strip():
        raise click.UsageError(f"{path} is empty.")
    return code, normalize_language(language or source.suffix.lstrip(".")) or "plaintext", source.name


def run_async(coro):
    """Run *coro* to completion, turning API failures into click errors."""
    try:
        return asyncio.run(coro)
    except ApiError as e:
        raise click.ClickException(e.message if e.status_code < 500 else str(e)) from e
    except httpx.HTTPError as e:
        raise click.ClickException(f"Could not reach the codelens server: {e}") from e
