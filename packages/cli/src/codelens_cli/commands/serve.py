"""serve command — run the codelens HTTP API."""

from __future__ import annotations

import logging

import click
from rich.console import Console

console = Console()

_NOISY_LOGGERS = ("httpx", "httpcore", "anthropic", "openai")


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format="%(asctime)s %(name)s %(levelname)s %(message)s")
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@click.command("serve")
@click.option("--host", default=None, help="Bind address. Overrides config file.")
@click.option("--port", type=int, default=None, help="Bind port. Overrides config file.")
@click.option(
    "--model",
    type=click.Choice(["anthropic", "openai"]),
    default=None,
    help="AI model provider. Overrides config file.",
)
@click.option(
    "--store",
    type=click.Choice(["memory", "sqlite", "redis"]),
    default=None,
    help="Review record store. Overrides config file.",
)
@click.option("--log-level", default="info", show_default=True, help="Logging level.")
@click.pass_context
def serve_cmd(ctx, host: str | None, port: int | None, model: str | None, store: str | None, log_level: str):
    """Run the review API server.

    \b
    Required environment variables:
      ANTHROPIC_API_KEY    Required when using --model anthropic
      OPENAI_API_KEY       Required when using --model openai
    Optional:
      CODELENS_REDIS_URL   Redis URL when using --store redis
    """
    import uvicorn

    from codelens_api.app import create_app

    config = dict(ctx.obj["config"])
    for key, value in (("host", host), ("port", port), ("model", model), ("store", store)):
        if value is not None:
            config[key] = value

    if config["model"] == "anthropic" and not config.get("anthropic_api_key"):
        raise click.UsageError("ANTHROPIC_API_KEY environment variable is not set.")
    if config["model"] == "openai" and not config.get("openai_api_key"):
        raise click.UsageError("OPENAI_API_KEY environment variable is not set.")

    configure_logging(log_level)
    console.print(
        f"[bold]codelens[/bold] serving on http://{config['host']}:{config['port']} "
        f"(model: {config['model']}, store: {config['store']})"
    )
    uvicorn.run(create_app(config), host=config["host"], port=config["port"], log_level=log_level.lower())
