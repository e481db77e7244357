"""
tgbridge CLI — `tgbridge` command.

Commands:
  tgbridge serve           Run the MCP bridge server
  tgbridge health          Query a running server's health endpoint
  tgbridge sessions        List open SSE sessions of a running server
  tgbridge tools           List tools registered on a running server
"""

from typing import Optional

import click
from rich.console import Console

from tgbridge.config import ConfigError, Settings
from tgbridge.version import __version__

console = Console()


def _load_settings() -> Settings:
    try:
        return Settings.from_env()
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        for err in e.errors:
            loc = ".".join(str(part) for part in err.get("loc", ()))
            console.print(f"  [yellow]{loc or 'settings'}[/yellow]: {err.get('msg')}")
        raise SystemExit(1)


@click.group()
@click.version_option(__version__)
def main():
    """tgbridge — MCP over SSE bridge to the Telegram Bot API."""


@main.command()
@click.option("--host", default=None, help="Bind address (defaults to HOST or 0.0.0.0).")
@click.option("--port", default=None, type=int, help="Port (defaults to PORT or 8787).")
def serve(host: Optional[str], port: Optional[int]):
    """Run the bridge server."""
    import uvicorn

    from tgbridge.log import setup_logging
    from tgbridge.server import create_app

    settings = _load_settings()
    updates = {k: v for k, v in {"host": host, "port": port}.items() if v is not None}
    if updates:
        settings = settings.model_copy(update=updates)

    setup_logging(settings.effective_log_level, settings.app_env)
    app = create_app(settings)
    console.print(f"[cyan]tgbridge {settings.version}[/cyan] listening on {settings.host}:{settings.port}")
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.effective_log_level.lower(),
        timeout_graceful_shutdown=5,
    )


# Register subcommands from separate modules
from tgbridge.cli.status import health, sessions, tools  # noqa: E402

main.add_command(health)
main.add_command(sessions)
main.add_command(tools)


if __name__ == "__main__":
    main()
