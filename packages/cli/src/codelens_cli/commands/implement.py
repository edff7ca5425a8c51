"""implement command — apply approved issues to a file."""

from __future__ import annotations

import json
from pathlib import Path

import click
from rich.console import Console

from codelens_cli.commands import read_source, run_async
from codelens_cli.reconcile import Backoff, poll_until_complete

console = Console()


def _load_issues(path: str, approved_only: bool) -> list[dict]:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise click.UsageError(f"{path} is not valid JSON: {e}") from e

    issues = data.get("issues") if isinstance(data, dict) else data
    if not isinstance(issues, list):
        raise click.UsageError(f"{path} must contain a list of issues (or an object with an 'issues' list).")
    if approved_only:
        issues = [i for i in issues if i.get("approved")]
    return issues


@click.command("implement")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--issues",
    "issues_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="JSON file of issues, as written by `codelens detect --output`.",
)
@click.option("--language", "-l", default=None, help="Source language. Defaults to the file extension.")
@click.option("--feedback", default=None, help="Extra reviewer guidance for the implementation.")
@click.option("--approved-only", is_flag=True, help="Only implement issues marked \"approved\": true.")
@click.option("--output", "-o", "output_path", default=None, help="Write the changed code here instead of printing it.")
@click.pass_context
def implement_cmd(
    ctx,
    path: str,
    issues_path: str,
    language: str | None,
    feedback: str | None,
    approved_only: bool,
    output_path: str | None,
):
    """Rewrite a file so that it resolves the given issues."""
    code, language, filename = read_source(path, language)
    issues = _load_issues(issues_path, approved_only)
    if not issues:
        raise click.UsageError("No issues to implement.")

    config = ctx.obj["config"]
    client = ctx.obj["client"]

    async def _implement() -> dict:
        async with client:
            review_id = await client.submit_implementation(
                code, language, issues, senior_feedback=feedback, filename=filename
            )
            with console.status(f"Implementing {len(issues)} issue(s) in {filename}…"):
                return await poll_until_complete(client, review_id, Backoff.from_config(config))

    record = run_async(_implement())
    if record["status"] == "error":
        raise click.ClickException(record.get("error") or "Implementation failed.")

    result = record.get("parsedResponse") or {}
    console.print(f"[bold]{result.get('summary', '')}[/bold]")
    clean_code = result.get("cleanCode", "")

    if output_path:
        Path(output_path).write_text(clean_code, encoding="utf-8")
        console.print(f"[green]Changed code written to {output_path}[/green]")
    else:
        console.print(clean_code, markup=False, highlight=False)
