"""Task management CLI commands.

This module provides CLI commands for creating, inspecting and moving tasks
through their lifecycle, including dispatch and dispatch retry.
"""

from __future__ import annotations

import asyncio
import json
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from mission_control.database.models.task import TaskPriority
from mission_control.database.queries.activity import list_activities
from mission_control.database.queries.task import create_task, get_task, list_tasks
from mission_control.orchestrator.dispatcher import DispatchPreconditionError
from mission_control.orchestrator.state_machine import (
    DispatchOutcome,
    ForbiddenTransitionError,
    InvalidTransitionError,
    TaskNotFoundError,
    parse_status,
)

app = typer.Typer(help="Task management commands")
console = Console()

STATUS_STYLES = {
    "planning": "magenta",
    "inbox": "white",
    "assigned": "yellow",
    "in_progress": "blue",
    "testing": "cyan",
    "review": "magenta",
    "done": "green",
    "pending_dispatch": "red",
}


def _task_dict(task) -> dict:
    return {
        "id": task.id,
        "workspace_id": task.workspace_id,
        "title": task.title,
        "status": task.status.value,
        "priority": task.priority.value,
        "assigned_agent_id": task.assigned_agent_id,
        "planning_complete": task.planning_complete,
        "planning_dispatch_error": task.planning_dispatch_error,
        "created_at": task.created_at.isoformat(),
    }


def _print_outcome(outcome: DispatchOutcome, action: str) -> None:
    if outcome.success:
        console.print(
            Panel(
                f"[green]{action} succeeded[/green]\n\n"
                f"[bold]Task:[/bold] {outcome.task_id}\n"
                f"[bold]Status:[/bold] {outcome.status.value}",
                title=action,
                border_style="green",
            )
        )
        return

    console.print(
        Panel(
            f"[red]{action} failed[/red]\n\n"
            f"[bold]Task:[/bold] {outcome.task_id}\n"
            f"[bold]Status:[/bold] {outcome.status.value}\n"
            f"[bold]Error:[/bold] {outcome.error}",
            title=action,
            border_style="red",
        )
    )
    raise typer.Exit(code=1)


def _run_engine_operation(operation, action: str) -> DispatchOutcome:
    """Run a state machine operation, reporting rejections as CLI errors."""
    try:
        return asyncio.run(operation())
    except TaskNotFoundError as e:
        console.print(f"[red]Task not found:[/red] {e.task_id}")
        raise typer.Exit(code=1)
    except (InvalidTransitionError, DispatchPreconditionError) as e:
        console.print(f"[red]{action} rejected:[/red] {e}")
        raise typer.Exit(code=1)


@app.command()
def create(
    title: Annotated[str, typer.Argument(help="Task title")],
    description: Annotated[
        Optional[str],
        typer.Option("--description", "-d", help="Detailed task description"),
    ] = None,
    workspace: Annotated[
        str,
        typer.Option("--workspace", "-w", help="Workspace the task belongs to"),
    ] = "default",
    priority: Annotated[
        str,
        typer.Option("--priority", "-p", help="Task priority (low, normal, high, urgent)"),
    ] = "normal",
    agent: Annotated[
        Optional[str],
        typer.Option("--agent", "-a", help="Agent ID to assign"),
    ] = None,
) -> None:
    """Create a new task in the planning state.

    Args:
        title: Short task description
        description: Detailed task description
        workspace: Workspace identifier
        priority: Task priority
        agent: Optional agent to assign up front
    """
    from mission_control.main import get_app_context

    ctx = get_app_context()

    try:
        task_priority = TaskPriority(priority)
    except ValueError:
        console.print(
            f"[red]Invalid priority:[/red] {priority}. "
            f"Valid values: {', '.join(p.value for p in TaskPriority)}"
        )
        raise typer.Exit(code=1)

    async def _create_task():
        async with ctx.session_factory() as session:
            async with session.begin():
                return await create_task(
                    session,
                    title=title,
                    description=description,
                    workspace_id=workspace,
                    priority=task_priority,
                    assigned_agent_id=agent,
                )

    try:
        task = asyncio.run(_create_task())
    except Exception as e:
        console.print(f"[red]Error creating task:[/red] {e}")
        raise typer.Exit(code=1)

    panel = Panel(
        f"[green]Task created successfully![/green]\n\n"
        f"[bold]ID:[/bold] {task.id}\n"
        f"[bold]Title:[/bold] {task.title}\n"
        f"[bold]Status:[/bold] {task.status.value}\n"
        f"[bold]Priority:[/bold] {task.priority.value}\n"
        f"[bold]Agent:[/bold] {task.assigned_agent_id or '-'}",
        title="Task Created",
        border_style="green",
    )
    console.print(panel)


@app.command()
def list(
    workspace: Annotated[
        Optional[str], typer.Option("--workspace", "-w", help="Workspace filter")
    ] = None,
    status: Annotated[
        Optional[str],
        typer.Option("--status", "-s", help="Filter by status"),
    ] = None,
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """List tasks, newest first.

    Args:
        workspace: Optional workspace filter
        status: Optional status filter
        format: Output format (table or json)
    """
    from mission_control.main import get_app_context

    ctx = get_app_context()

    status_filter = None
    if status is not None:
        try:
            status_filter = parse_status(status)
        except ValueError:
            console.print(
                f"[red]Invalid status:[/red] {status}. "
                f"Valid values: {', '.join(STATUS_STYLES)}"
            )
            raise typer.Exit(code=1)

    async def _list_tasks():
        async with ctx.session_factory() as session:
            return await list_tasks(session, workspace_id=workspace, status_filter=status_filter)

    try:
        tasks = asyncio.run(_list_tasks())
    except Exception as e:
        console.print(f"[red]Error listing tasks:[/red] {e}")
        raise typer.Exit(code=1)

    if format == "json":
        typer.echo(json.dumps([_task_dict(t) for t in tasks], indent=2))
        return

    if not tasks:
        console.print("[yellow]No tasks found[/yellow]")
        return

    table = Table(title=f"Tasks ({len(tasks)})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", style="white")
    table.add_column("Status", style="magenta")
    table.add_column("Priority", justify="right")
    table.add_column("Agent", style="yellow")

    for t in tasks:
        style = STATUS_STYLES.get(t.status.value, "white")
        table.add_row(
            t.id[:8],
            t.title[:50] + ("..." if len(t.title) > 50 else ""),
            f"[{style}]{t.status.value}[/{style}]",
            t.priority.value,
            (t.assigned_agent_id or "-")[:8],
        )

    console.print(table)


@app.command()
def show(
    task_id: Annotated[str, typer.Argument(help="Task ID")],
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """Show a task with its activity log."""
    from mission_control.main import get_app_context

    ctx = get_app_context()

    async def _get_task():
        async with ctx.session_factory() as session:
            task = await get_task(session, task_id)
            if task is None:
                return None, []
            return task, await list_activities(session, task_id)

    try:
        task, activities = asyncio.run(_get_task())
    except Exception as e:
        console.print(f"[red]Error fetching task:[/red] {e}")
        raise typer.Exit(code=1)

    if task is None:
        console.print(f"[red]Task not found:[/red] {task_id}")
        raise typer.Exit(code=1)

    if format == "json":
        output = _task_dict(task)
        output["activities"] = [
            {
                "type": a.activity_type.value,
                "message": a.message,
                "agent_id": a.agent_id,
                "created_at": a.created_at.isoformat(),
            }
            for a in activities
        ]
        typer.echo(json.dumps(output, indent=2))
        return

    details = (
        f"[bold]ID:[/bold] {task.id}\n"
        f"[bold]Title:[/bold] {task.title}\n"
        f"[bold]Status:[/bold] {task.status.value}\n"
        f"[bold]Priority:[/bold] {task.priority.value}\n"
        f"[bold]Agent:[/bold] {task.assigned_agent_id or '-'}\n"
        f"[bold]Planning complete:[/bold] {task.planning_complete}"
    )
    if task.planning_dispatch_error:
        details += f"\n[bold red]Dispatch error:[/bold red] {task.planning_dispatch_error}"
    console.print(Panel(details, title="Task", border_style="cyan"))

    if activities:
        table = Table(title="Activity")
        table.add_column("When", style="dim")
        table.add_column("Type", style="magenta")
        table.add_column("Message")
        for a in activities:
            table.add_row(
                a.created_at.strftime("%Y-%m-%d %H:%M:%S"),
                a.activity_type.value,
                a.message,
            )
        console.print(table)


@app.command("complete-planning")
def complete_planning(
    task_id: Annotated[str, typer.Argument(help="Task ID")],
    agent: Annotated[
        Optional[str],
        typer.Option("--agent", "-a", help="Agent ID to assign and dispatch to"),
    ] = None,
) -> None:
    """Mark planning complete and dispatch the task to its agent."""
    from mission_control.main import get_app_context

    ctx = get_app_context()

    async def _complete():
        async with ctx.open_state_machine() as machine:
            return await machine.complete_planning(task_id, agent_id=agent)

    outcome = _run_engine_operation(_complete, "Planning completion")
    _print_outcome(outcome, "Planning completion")


@app.command()
def dispatch(
    task_id: Annotated[str, typer.Argument(help="Task ID")],
) -> None:
    """Dispatch a task in inbox or assigned to its agent."""
    from mission_control.main import get_app_context

    ctx = get_app_context()

    async def _dispatch():
        async with ctx.open_state_machine() as machine:
            return await machine.dispatch_task(task_id)

    outcome = _run_engine_operation(_dispatch, "Dispatch")
    _print_outcome(outcome, "Dispatch")


@app.command("retry-dispatch")
def retry_dispatch(
    task_id: Annotated[str, typer.Argument(help="Task ID")],
) -> None:
    """Retry the dispatch of a task parked in pending_dispatch."""
    from mission_control.main import get_app_context

    ctx = get_app_context()

    async def _retry():
        async with ctx.open_state_machine() as machine:
            return await machine.retry_dispatch(task_id)

    outcome = _run_engine_operation(_retry, "Dispatch retry")
    _print_outcome(outcome, "Dispatch retry")


@app.command()
def status(
    task_id: Annotated[str, typer.Argument(help="Task ID")],
    new_status: Annotated[str, typer.Argument(help="Target status")],
    agent: Annotated[
        Optional[str],
        typer.Option("--agent", "-a", help="Agent ID requesting the change"),
    ] = None,
) -> None:
    """Move a task to a new status."""
    from mission_control.main import get_app_context

    ctx = get_app_context()

    async def _transition():
        async with ctx.open_state_machine() as machine:
            return await machine.transition(task_id, new_status, updated_by_agent_id=agent)

    try:
        task = asyncio.run(_transition())
    except TaskNotFoundError:
        console.print(f"[red]Task not found:[/red] {task_id}")
        raise typer.Exit(code=1)
    except (InvalidTransitionError, ForbiddenTransitionError, ValueError) as e:
        console.print(f"[red]Status change rejected:[/red] {e}")
        raise typer.Exit(code=1)

    console.print(f"[green]Task {task.id[:8]} is now[/green] [bold]{task.status.value}[/bold]")
