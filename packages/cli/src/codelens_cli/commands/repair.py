"""repair command — recover a structured review from malformed raw text."""

from __future__ import annotations

from pathlib import Path

import click
from codelens_core.models import ReviewResult
from rich.console import Console

from codelens_cli.commands import run_async
from codelens_cli.display import print_review

console = Console()


@click.command("repair")
@click.argument("raw_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--language", "-l", default=None, help="Language of the reviewed code.")
@click.option("--review-id", default=None, help="Also store the repaired result on this review.")
@click.pass_context
def repair_cmd(ctx, raw_path: str, language: str | None, review_id: str | None):
    """Repair a raw review response that did not follow the expected layout."""
    raw_text = Path(raw_path).read_text(encoding="utf-8")
    client = ctx.obj["client"]

    async def _repair() -> dict:
        async with client:
            return await client.repair(raw_text, language=language, review_id=review_id)

    outcome = run_async(_repair())
    if not outcome.get("success"):
        raise click.ClickException(outcome.get("error") or "Repair failed.")

    if review_id:
        console.print(f"[green]Review {review_id} updated.[/green]")
    print_review(ReviewResult.from_dict(outcome["result"]))
