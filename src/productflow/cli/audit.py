"""Audit trail CLI commands."""

from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from productflow.audit import ExportFormat
from productflow.domain import Identity, Role
from productflow.storage import AuditFilter

app = typer.Typer(help="Audit trail commands")
console = Console()


def _filter(
    record_id: str | None,
    actor_id: str | None,
    since: datetime | None,
    until: datetime | None,
) -> AuditFilter:
    return AuditFilter(record_id=record_id, actor_id=actor_id, start_date=since, end_date=until)


@app.command()
def export(
    format: Annotated[
        ExportFormat, typer.Option("--format", "-f", help="Export format")
    ] = ExportFormat.JSON,
    output: Annotated[
        Optional[Path], typer.Option("--output", "-o", help="Write to file instead of stdout")
    ] = None,
    record_id: Annotated[Optional[str], typer.Option("--record", help="Only this record")] = None,
    actor_id: Annotated[Optional[str], typer.Option("--by", help="Only this actor")] = None,
    since: Annotated[Optional[datetime], typer.Option("--since", help="Inclusive start")] = None,
    until: Annotated[Optional[datetime], typer.Option("--until", help="Exclusive end")] = None,
    actor: Annotated[str, typer.Option("--actor", help="Acting user id")] = "cli",
    role: Annotated[Role, typer.Option("--role", "-r", help="Acting role")] = Role.ADMIN,
) -> None:
    """Export audit entries, newest first."""
    from productflow.main import get_app_context

    ctx = get_app_context()
    identity = Identity(actor_id=actor, actor_role=role)

    async def _export():
        try:
            return await ctx.workflow_engine.export_audit(
                _filter(record_id, actor_id, since, until), format, identity
            )
        finally:
            await ctx.close()

    result = asyncio.run(_export())
    if not result.success or result.data is None:
        console.print(f"[red]{result.code.value if result.code else 'ERROR'}:[/red] {result.error}")
        raise typer.Exit(code=1)

    if output is not None:
        output.write_text(result.data.content, encoding="utf-8")
        console.print(f"[green]Exported {result.data.count} entries to {output}[/green]")
    else:
        typer.echo(result.data.content)


@app.command()
def verify(
    record_id: Annotated[Optional[str], typer.Option("--record", help="Only this record")] = None,
    since: Annotated[Optional[datetime], typer.Option("--since", help="Inclusive start")] = None,
    until: Annotated[Optional[datetime], typer.Option("--until", help="Exclusive end")] = None,
    actor: Annotated[str, typer.Option("--actor", help="Acting user id")] = "cli",
    role: Annotated[Role, typer.Option("--role", "-r", help="Acting role")] = Role.ADMIN,
) -> None:
    """Recompute integrity hashes and report tampered entries."""
    from productflow.main import get_app_context

    ctx = get_app_context()
    identity = Identity(actor_id=actor, actor_role=role)

    async def _verify():
        try:
            return await ctx.workflow_engine.verify_audit(
                _filter(record_id, None, since, until), identity
            )
        finally:
            await ctx.close()

    result = asyncio.run(_verify())
    if not result.success or result.data is None:
        console.print(f"[red]{result.code.value if result.code else 'ERROR'}:[/red] {result.error}")
        raise typer.Exit(code=1)

    report = result.data
    if report.all_valid:
        console.print(f"[green]All {report.checked} entries verified[/green]")
        return
    console.print(
        f"[red]{len(report.invalid_ids)} of {report.checked} entries failed verification[/red]"
    )
    for entry_id in report.invalid_ids:
        console.print(f"  {entry_id}")
    raise typer.Exit(code=2)
