"""detect command — chunked issue detection."""

from __future__ import annotations

import json
from pathlib import Path

import click
from rich.console import Console

from codelens_cli.commands import focus_option, read_source, run_async
from codelens_cli.display import print_issues
from codelens_cli.reconcile import Backoff, poll_until_complete

console = Console()


@click.command("detect")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--language", "-l", default=None, help="Source language. Defaults to the file extension.")
@click.option(
    "--output",
    "-o",
    "output_path",
    default=None,
    help="Write the detected issues as JSON, ready for `codelens implement --issues`.",
)
@focus_option
@click.pass_context
def detect_cmd(ctx, path: str, language: str | None, output_path: str | None, focus: tuple[str, ...]):
    """Detect issues in a file and report a quality score.

    Large files are split into chunks that are analysed concurrently;
    issue line numbers always refer to the original file.
    """
    code, language, filename = read_source(path, language)
    config = ctx.obj["config"]
    client = ctx.obj["client"]

    async def _detect() -> dict:
        async with client:
            review_id = await client.submit_detection(code, language, filename=filename, focus=list(focus) or None)
            with console.status(f"Analysing {filename}…") as spinner:

                def on_progress(record: dict) -> None:
                    spinner.update(f"Analysing {filename}… {record.get('progress', 0)}%")

                return await poll_until_complete(
                    client, review_id, Backoff.from_config(config), on_progress=on_progress
                )

    record = run_async(_detect())
    if record["status"] == "error":
        raise click.ClickException(record.get("error") or "Detection failed.")

    result = record.get("parsedResponse") or {}
    print_issues(result)

    if output_path:
        Path(output_path).write_text(json.dumps(result.get("issues", []), indent=2), encoding="utf-8")
        console.print(f"\n[green]Issues written to {output_path}[/green]")
