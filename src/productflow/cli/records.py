"""Product record CLI commands.

Commands act on the configured database through the workflow engine, as
the identity given with ``--actor``/``--role``.
"""

from __future__ import annotations

import asyncio
import json
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from productflow.domain import Identity, LifecycleState, ProductRecord, Role
from productflow.storage import RecordFilter
from productflow.workflow import TransitionRequest

app = typer.Typer(help="Product record commands")
console = Console()

STATE_COLORS = {
    LifecycleState.DRAFT: "dim",
    LifecycleState.REVIEW: "yellow",
    LifecycleState.APPROVED: "blue",
    LifecycleState.PUBLISHED: "green",
    LifecycleState.REJECTED: "red",
}


@app.command()
def create(
    record_id: Annotated[str, typer.Argument(help="Record id")],
    name: Annotated[Optional[str], typer.Option("--name", "-n", help="Display name")] = None,
    actor: Annotated[str, typer.Option("--actor", help="Acting user id")] = "cli",
    role: Annotated[Role, typer.Option("--role", "-r", help="Acting role")] = Role.EDITOR,
) -> None:
    """Create a record in DRAFT."""
    from productflow.main import get_app_context

    ctx = get_app_context()
    identity = Identity(actor_id=actor, actor_role=role)

    async def _create():
        try:
            return await ctx.workflow_engine.create_record(
                ProductRecord(id=record_id, name=name), identity
            )
        finally:
            await ctx.close()

    result = asyncio.run(_create())
    if not result.success:
        console.print(f"[red]{result.code.value if result.code else 'ERROR'}:[/red] {result.error}")
        raise typer.Exit(code=1)
    console.print(f"[green]Created[/green] {record_id} in DRAFT")


@app.command("list")
def list_records(
    state: Annotated[
        Optional[list[LifecycleState]],
        typer.Option("--state", "-s", help="Filter by lifecycle state (repeatable)"),
    ] = None,
    reviewer: Annotated[
        Optional[str], typer.Option("--reviewer", help="Filter by assigned reviewer")
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-l", help="Maximum records")] = 50,
    actor: Annotated[str, typer.Option("--actor", help="Acting user id")] = "cli",
    role: Annotated[Role, typer.Option("--role", "-r", help="Acting role")] = Role.VIEWER,
    format: Annotated[
        str, typer.Option("--format", "-f", help="Output format (table or json)")
    ] = "table",
) -> None:
    """List records."""
    from productflow.main import get_app_context

    ctx = get_app_context()
    identity = Identity(actor_id=actor, actor_role=role)
    record_filter = RecordFilter(states=state or None, assigned_reviewer_id=reviewer)

    async def _list():
        try:
            return await ctx.workflow_engine.list_records(record_filter, identity, limit=limit)
        finally:
            await ctx.close()

    result = asyncio.run(_list())
    if not result.success or result.data is None:
        console.print(f"[red]{result.code.value if result.code else 'ERROR'}:[/red] {result.error}")
        raise typer.Exit(code=1)

    records = result.data
    if format == "json":
        console.print(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return
    if not records:
        console.print("[yellow]No records found[/yellow]")
        return

    table = Table(title="Records")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="bold")
    table.add_column("State")
    table.add_column("Reviewer", style="magenta")
    table.add_column("Updated", style="dim")
    for r in records:
        color = STATE_COLORS.get(r.lifecycle_state, "white")
        table.add_row(
            r.id,
            r.name or "",
            f"[{color}]{r.lifecycle_state.value}[/{color}]",
            r.assigned_reviewer_id or "",
            r.updated_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


@app.command()
def transition(
    record_id: Annotated[str, typer.Argument(help="Record id")],
    to_state: Annotated[LifecycleState, typer.Argument(help="Target state")],
    actor: Annotated[str, typer.Option("--actor", help="Acting user id")] = "cli",
    role: Annotated[Role, typer.Option("--role", "-r", help="Acting role")] = Role.EDITOR,
    reason: Annotated[Optional[str], typer.Option("--reason", help="Transition reason")] = None,
    comment: Annotated[Optional[str], typer.Option("--comment", help="Comment")] = None,
    reviewer: Annotated[
        Optional[str], typer.Option("--reviewer", help="Reviewer to assign on submit")
    ] = None,
) -> None:
    """Move a record to TO_STATE."""
    from productflow.main import get_app_context

    ctx = get_app_context()
    request = TransitionRequest(
        record_id=record_id,
        to_state=to_state,
        identity=Identity(actor_id=actor, actor_role=role),
        reason=reason,
        comment=comment,
        assigned_reviewer_id=reviewer,
    )

    async def _transition():
        try:
            return await ctx.workflow_engine.request_transition(request)
        finally:
            await ctx.close()

    result = asyncio.run(_transition())
    if not result.success:
        console.print(
            Panel(
                "\n".join(f"[bold]{e.code.value}[/bold] {e.message}" for e in result.errors),
                title="Transition Rejected",
                border_style="red",
            )
        )
        raise typer.Exit(code=1)

    lines = [
        f"[bold]Record:[/bold] {record_id}",
        f"[bold]From:[/bold] {result.previous_state.value if result.previous_state else '-'}",
        f"[bold]To:[/bold] {result.new_state.value if result.new_state else '-'}",
    ]
    if result.record is not None and result.record.lifecycle_state != result.new_state:
        lines.append(f"[bold]Now:[/bold] {result.record.lifecycle_state.value} (automatic)")
    for warning in result.warnings:
        lines.append(f"[yellow]warning:[/yellow] {warning}")
    console.print(Panel("\n".join(lines), title="Transition Applied", border_style="green"))
