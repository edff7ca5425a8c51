"""status command — show the state of a review record."""

from __future__ import annotations

from datetime import datetime

import click
from rich.console import Console
from rich.table import Table

from codelens_cli.commands import run_async
from codelens_cli.display import status_markup

console = Console()


@click.command("status")
@click.argument("review_id")
@click.pass_context
def status_cmd(ctx, review_id: str):
    """Show status, progress and errors for a review.

    Records expire a few minutes after their last read or write.
    """
    client = ctx.obj["client"]

    async def _status() -> dict:
        async with client:
            return await client.get_review(review_id)

    record = run_async(_status())

    table = Table(title=f"Review {review_id}", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Kind", record.get("kind", "review"))
    table.add_row("Status", status_markup(record["status"]))
    table.add_row("Progress", f"{record.get('progress', 0)}%")
    table.add_row("Fragments", str(len(record.get("chunks", []))))
    table.add_row("Last updated", datetime.fromtimestamp(record["lastUpdated"]).strftime("%Y-%m-%d %H:%M:%S"))
    if record.get("parseError"):
        table.add_row("Parse error", f"[yellow]{record['parseError']}[/yellow]")
    if record.get("error"):
        table.add_row("Error", f"[red]{record['error']}[/red]")
    console.print(table)

    summary = (record.get("parsedResponse") or {}).get("summary")
    if summary:
        console.print(f"\n{summary}")
