"""Rich rendering of review results."""

from __future__ import annotations

from codelens_core.models import ReviewResult
from rich.console import Console
from rich.table import Table

console = Console()

_SEVERITY_STYLE = {"critical": "red", "high": "yellow", "medium": "blue", "low": "dim"}
_STATUS_STYLE = {"completed": "green", "error": "red", "repairing": "magenta", "processing": "yellow", "queued": "white"}


def status_markup(status: str) -> str:
    style = _STATUS_STYLE.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def print_review(result: ReviewResult, show_code: bool = True) -> None:
    console.print("\n[bold]Summary[/bold]")
    console.print(result.summary)

    if result.suggestions:
        table = Table(title="Suggestions", show_header=True, header_style="bold cyan")
        table.add_column("Line", justify="right", width=6)
        table.add_column("Original", max_width=40)
        table.add_column("Suggested", max_width=40)
        table.add_column("Why", max_width=50)
        for s in result.suggestions:
            table.add_row(str(s.line_number), s.original_code, s.suggested_code, s.explanation)
        console.print(table)
    else:
        console.print("[dim]No suggestions.[/dim]")

    if show_code:
        console.print("\n[bold]Clean code[/bold]")
        console.print(result.clean_code, markup=False, highlight=False)


def print_issues(result: dict) -> None:
    issues = result.get("issues", [])
    console.print(f"\n[bold]{result.get('summary', '')}[/bold]")

    if issues:
        table = Table(title=f"Issues ({len(issues)})", show_header=True, header_style="bold cyan")
        table.add_column("#", justify="right", width=4)
        table.add_column("Severity", width=10)
        table.add_column("Type", width=16)
        table.add_column("Lines", width=12)
        table.add_column("Description", max_width=60)
        for n, issue in enumerate(issues, start=1):
            severity = issue.get("severity", "medium")
            style = _SEVERITY_STYLE.get(severity, "white")
            table.add_row(
                str(n),
                f"[{style}]{severity}[/{style}]",
                issue.get("type", ""),
                ", ".join(str(line) for line in issue.get("lineNumbers", [])),
                issue.get("description", ""),
            )
        console.print(table)
    else:
        console.print("[green]No issues found.[/green]")

    score = result.get("qualityScore")
    if score:
        console.print(f"\n  Quality score: [bold]{score['overall']}[/bold]/100")
        for category, value in score.get("categories", {}).items():
            console.print(f"    {category:<16} {value}")

    failed = result.get("failedChunks") or []
    if failed:
        chunks = ", ".join(str(c + 1) for c in failed)
        console.print(f"[yellow]  Chunk(s) {chunks} of {result.get('chunkCount')} could not be analysed.[/yellow]")
