"""CLI entry point for codelens.

Commands:
  serve      — run the HTTP API with uvicorn
  review     — review a file, following progress by polling or streaming
  detect     — chunked issue detection with a quality score
  implement  — apply approved issues to a file
  repair     — recover a structured review from malformed raw text
  status     — show the state of a review record
  delete     — remove a review record
"""

from __future__ import annotations

import importlib.metadata

import click
from rich.console import Console

from codelens_cli.client import CodelensClient
from codelens_cli.commands.delete import delete_cmd
from codelens_cli.commands.detect import detect_cmd
from codelens_cli.commands.implement import implement_cmd
from codelens_cli.commands.repair import repair_cmd
from codelens_cli.commands.review import review_cmd
from codelens_cli.commands.serve import serve_cmd
from codelens_cli.commands.status import status_cmd

console = Console()


def _build_client(config: dict) -> CodelensClient:
    """Create the API client for the configured server.

    This factory lives in cli.py so commands never read the config format
    themselves; tests patch it to inject a fake client.
    """
    return CodelensClient(config["server_url"])


@click.group()
@click.version_option(
    version=importlib.metadata.version("codelens"),
    prog_name="codelens",
)
@click.option(
    "--config",
    "config_path",
    default=".codelens.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="CODELENS_CONFIG",
)
@click.option("--server", "server_url", default=None, help="API base URL. Overrides config file.")
@click.pass_context
def main(ctx: click.Context, config_path: str, server_url: str | None):
    """Chunked, AI-assisted code review from the command line."""
    from codelens_core.config import load_config

    ctx.ensure_object(dict)

    config = load_config(config_path, cli_overrides={"server_url": server_url})
    ctx.obj["config"] = config
    ctx.obj["client"] = _build_client(config)


main.add_command(serve_cmd)
main.add_command(review_cmd)
main.add_command(detect_cmd)
main.add_command(implement_cmd)
main.add_command(repair_cmd)
main.add_command(status_cmd)
main.add_command(delete_cmd)
