"""delete command — remove a review record."""

from __future__ import annotations

import click
from rich.console import Console

from codelens_cli.commands import run_async

console = Console()


@click.command("delete")
@click.argument("review_id")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompts.")
@click.pass_context
def delete_cmd(ctx, review_id: str, yes: bool):
    """Delete a review record from the server's store."""
    if not yes:
        click.confirm(f"Delete review {review_id}?", abort=True)

    client = ctx.obj["client"]

    async def _delete() -> dict:
        async with client:
            return await client.delete_review(review_id)

    run_async(_delete())
    console.print(f"[green]Deleted review {review_id}.[/green]")
