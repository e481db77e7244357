"""CLI: tgbridge health|sessions|tools — inspect a running server."""

import json
import os
from typing import Any, Optional

import click
import httpx
from rich.console import Console
from rich.table import Table

console = Console()

DEFAULT_URL = "http://127.0.0.1:8787"

url_option = click.option("--url", default=DEFAULT_URL, show_default=True, help="Base URL of the server.")
token_option = click.option(
    "--token",
    default=lambda: os.environ.get("AUTH_BEARER"),
    help="Bearer token (defaults to AUTH_BEARER).",
)
json_option = click.option("--json-output", "--json", is_flag=True)


def _get(url: str, path: str, token: Optional[str] = None) -> Any:
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    try:
        resp = httpx.get(f"{url.rstrip('/')}{path}", headers=headers, timeout=10.0)
    except httpx.HTTPError as e:
        console.print(f"[red]Could not reach {url}: {e}[/red]")
        raise SystemExit(1)
    if resp.status_code == 404:
        console.print(f"[red]{path} is not available (diagnostics are disabled in production).[/red]")
        raise SystemExit(1)
    if resp.status_code >= 400:
        console.print(f"[red]HTTP {resp.status_code}: {resp.text[:200]}[/red]")
        raise SystemExit(1)
    return resp.json()


@click.command()
@url_option
@json_option
def health(url: str, json_output: bool):
    """Show server health."""
    result = _get(url, "/healthz")
    if json_output:
        click.echo(json.dumps(result, indent=2))
        return
    status = "[green]ok[/green]" if result.get("ok") else "[red]down[/red]"
    console.print(f"{status}  version {result.get('version')}  uptime {result.get('uptimeSec')}s")


@click.command()
@url_option
@token_option
@json_option
def sessions(url: str, token: Optional[str], json_output: bool):
    """List open SSE sessions."""
    result = _get(url, "/sessions", token)
    if json_output:
        click.echo(json.dumps(result, indent=2))
        return
    table = Table(title=f"Sessions ({len(result['sessions'])} open)")
    table.add_column("ID", style="bold")
    table.add_column("Created")
    table.add_column("Last seen")
    for s in result["sessions"]:
        table.add_row(s["sessionId"], s["createdAt"], s["lastSeenAt"])
    console.print(table)


@click.command()
@url_option
@token_option
@json_option
def tools(url: str, token: Optional[str], json_output: bool):
    """List registered tools."""
    result = _get(url, "/tools", token)
    if json_output:
        click.echo(json.dumps(result, indent=2))
        return
    table = Table(title="Tools")
    table.add_column("Name", style="bold")
    table.add_column("Title")
    table.add_column("Description")
    for t in result["tools"]:
        table.add_row(t["name"], t.get("title") or "", t.get("description") or "")
    console.print(table)
