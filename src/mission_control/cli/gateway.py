"""Gateway CLI commands.

Lists the live agent sessions hosted by the Gateway.
"""

from __future__ import annotations

import asyncio
import json
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from mission_control.gateway.client import GatewayError

app = typer.Typer(help="Gateway inspection commands")
console = Console()


@app.command()
def sessions(
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """List live Gateway sessions."""
    from mission_control.main import get_app_context

    ctx = get_app_context()

    async def _list_sessions():
        async with ctx.open_directory() as directory:
            return await directory.list_sessions()

    try:
        live = asyncio.run(_list_sessions())
    except GatewayError as e:
        console.print(f"[red]Gateway unavailable:[/red] {e}")
        raise typer.Exit(code=1)

    if format == "json":
        typer.echo(json.dumps([s.model_dump() for s in live], indent=2))
        return

    if not live:
        console.print("[yellow]No live sessions[/yellow]")
        return

    table = Table(title=f"Gateway Sessions ({len(live)})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Channel", style="white")
    table.add_column("Peer", style="yellow")
    table.add_column("Model", style="dim")
    for s in live:
        table.add_row(s.id, s.channel or "-", s.peer or "-", s.model or "-")
    console.print(table)
