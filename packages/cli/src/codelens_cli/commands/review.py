"""review command — review a file and follow it to completion."""

from __future__ import annotations

import click
from rich.console import Console

from codelens_cli.commands import focus_option, read_source, run_async
from codelens_cli.display import print_review
from codelens_cli.reconcile import ERROR, Backoff, ReconciliationLoop, ReconciliationState

console = Console()


@click.command("review")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--language", "-l", default=None, help="Source language. Defaults to the file extension.")
@click.option("--stream", is_flag=True, help="Receive fragments over one streaming connection instead of polling.")
@click.option("--no-code", is_flag=True, help="Do not print the clean code.")
@focus_option
@click.pass_context
def review_cmd(ctx, path: str, language: str | None, stream: bool, no_code: bool, focus: tuple[str, ...]):
    """Review a single file.

    The review runs on the codelens server (`codelens serve`). Progress is
    followed by polling with backoff, or with --stream over Server-Sent
    Events; either way unparseable output is repaired before printing.
    """
    code, language, filename = read_source(path, language)
    config = ctx.obj["config"]
    client = ctx.obj["client"]

    async def _follow() -> ReconciliationState:
        async with client:
            loop = ReconciliationLoop(client, backoff=Backoff.from_config(config))
            with console.status(f"Reviewing {filename}…"):
                return await loop.run(code, language, filename=filename, stream=stream, focus=list(focus) or None)

    state = run_async(_follow())

    if state.status == ERROR or state.parsed is None:
        if state.raw_text:
            console.print("[dim]Raw response:[/dim]")
            console.print(state.raw_text, markup=False, highlight=False)
        raise click.ClickException(state.error or "Review did not produce a result.")

    console.print(f"[dim]Review {state.review_id} ({state.fragments} fragment(s))[/dim]")
    print_review(state.parsed, show_code=not no_code)
