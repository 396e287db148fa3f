"""Main CLI entry point for Mission Control.

Usage:
    mission-control serve
    mission-control task list --status pending_dispatch
    mission-control task retry-dispatch <task-id>
    mission-control gateway sessions
"""

from __future__ import annotations

import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from mission_control.cli import gateway as gateway_cli
from mission_control.cli import task as task_cli
from mission_control.config import MissionControlConfig, load_config
from mission_control.database.connection import get_engine, get_session_factory
from mission_control.events import get_broadcaster
from mission_control.gateway.client import GatewayClient
from mission_control.logging import setup_logging
from mission_control.orchestrator.dispatcher import DispatchExecutor
from mission_control.orchestrator.session_directory import SessionDirectory
from mission_control.orchestrator.state_machine import TaskStateMachine

app = typer.Typer(
    name="mission-control",
    help="Mission Control: task dispatch and session-liveness engine",
    no_args_is_help=True,
)

app.add_typer(task_cli.app, name="task", help="Manage and dispatch tasks")
app.add_typer(gateway_cli.app, name="gateway", help="Inspect the agent Gateway")

console = Console()


class AppContext:
    """Application context shared across CLI commands.

    Gateway components are created per command run, since each command runs
    its own event loop. The engine does not pool connections for the same
    reason.

    Attributes:
        config: Loaded Mission Control configuration
        engine: Async SQLAlchemy engine
        session_factory: Factory for creating database sessions
    """

    def __init__(self, config: MissionControlConfig):
        self.config = config
        self.engine = get_engine(config.database, pooled=False)
        self.session_factory = get_session_factory(self.engine)

    @asynccontextmanager
    async def open_directory(self) -> AsyncIterator[SessionDirectory]:
        """Yield a session directory over a fresh Gateway client, closed on exit."""
        client = GatewayClient(self.config.gateway)
        try:
            yield SessionDirectory(client)
        finally:
            await client.close()

    @asynccontextmanager
    async def open_state_machine(self) -> AsyncIterator[TaskStateMachine]:
        """Yield a state machine wired to a fresh Gateway client."""
        async with self.open_directory() as directory:
            executor = DispatchExecutor(
                directory,
                gateway_config=self.config.gateway,
                dispatch_config=self.config.dispatch,
            )
            yield TaskStateMachine(
                self.session_factory,
                executor,
                get_broadcaster(),
                dispatch_config=self.config.dispatch,
            )


# Global context holder
_app_context: AppContext | None = None


def get_app_context() -> AppContext:
    """Get the shared application context.

    Raises:
        RuntimeError: If context has not been initialized
    """
    if _app_context is None:
        raise RuntimeError("Application context not initialized. Call initialize_context first.")
    return _app_context


def initialize_context(config: MissionControlConfig) -> AppContext:
    """Initialize the global application context.

    Args:
        config: Mission Control configuration

    Returns:
        Initialized AppContext instance
    """
    global _app_context
    _app_context = AppContext(config)
    return _app_context


@app.command()
def serve(
    host: Annotated[
        Optional[str],
        typer.Option("--host", "-h", help="Host to bind to (default from config)"),
    ] = None,
    port: Annotated[
        Optional[int],
        typer.Option("--port", "-p", help="Port to bind to (default from config)"),
    ] = None,
) -> None:
    """Start the Mission Control web server."""
    import uvicorn

    from mission_control.web.app import create_app

    config = get_app_context().config
    bind_host = host or config.web.host
    bind_port = port or config.web.port

    console.print("[bold cyan]Starting Mission Control[/bold cyan]")
    console.print(f"[dim]Host:[/dim] {bind_host}")
    console.print(f"[dim]Port:[/dim] {bind_port}")
    console.print(f"[dim]Gateway:[/dim] {config.gateway.url}")
    console.print()

    setup_logging(config.logging)
    uvicorn.run(
        create_app(config),
        host=bind_host,
        port=bind_port,
        log_level=config.logging.level.lower(),
    )


@app.callback()
def main_callback(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file (TOML format)",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Load configuration, set up logging and initialize the application context."""
    try:
        config = load_config(config_path)
    except Exception as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(code=1)

    logging_config = config.logging
    if verbose:
        logging_config = logging_config.model_copy(update={"level": "DEBUG"})
    setup_logging(logging_config, stream=sys.stderr)

    try:
        initialize_context(config)
    except Exception as e:
        console.print(f"[red]Error initializing application:[/red] {e}")
        raise typer.Exit(code=1)

    if verbose:
        console.print("[dim]Debug logging enabled[/dim]")


if __name__ == "__main__":
    app()
