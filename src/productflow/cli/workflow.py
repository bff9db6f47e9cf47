"""Workflow inspection CLI commands.

These commands read configuration only; they never touch storage.
"""

from __future__ import annotations

import json
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from productflow.domain import LifecycleState, Role
from productflow.workflow import LifecycleStateMachine, PermissionGate

app = typer.Typer(help="Workflow rule commands")
console = Console()


def _state_machine() -> LifecycleStateMachine:
    from productflow.main import get_app_context

    config = get_app_context().config
    try:
        return LifecycleStateMachine.from_config(config.workflow, gate=PermissionGate())
    except ValueError as e:
        console.print(f"[red]Invalid transition rules:[/red] {e}")
        raise typer.Exit(code=1)


@app.command()
def rules(
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """Show the active transition rule table."""
    machine = _state_machine()

    if format == "json":
        output = [
            {
                "from_state": r.from_state.value,
                "to_state": r.to_state.value,
                "action": r.action,
                "required_role": r.required_role.value,
                "required_permissions": list(r.required_permissions),
                "is_automatic": r.is_automatic,
                "conditions": [c.name for c in r.conditions],
            }
            for r in machine.rules
        ]
        console.print(json.dumps(output, indent=2))
        return

    table = Table(title="Transition Rules")
    table.add_column("From", style="cyan")
    table.add_column("To", style="cyan")
    table.add_column("Action", style="bold")
    table.add_column("Role", style="magenta")
    table.add_column("Permissions", style="dim")
    table.add_column("Auto")
    table.add_column("Conditions", style="dim")

    for r in machine.rules:
        table.add_row(
            r.from_state.value,
            r.to_state.value,
            r.action,
            r.required_role.value,
            ", ".join(r.required_permissions),
            "[green]yes[/green]" if r.is_automatic else "no",
            ", ".join(c.name for c in r.conditions),
        )
    console.print(table)


@app.command("next-states")
def next_states(
    state: Annotated[LifecycleState, typer.Argument(help="Current lifecycle state")],
    role: Annotated[Role, typer.Option("--role", "-r", help="Acting role")] = Role.EDITOR,
) -> None:
    """List the states a role may move a record to from STATE."""
    machine = _state_machine()
    targets = machine.get_valid_next_states(state, role)
    if not targets:
        console.print(f"[yellow]No transitions from {state.value} for {role.value}[/yellow]")
        return
    for target in targets:
        console.print(f"{state.value} -> [bold]{target.value}[/bold]")


@app.command("check-config")
def check_config() -> None:
    """Validate configuration and print the resolved sections."""
    from productflow.main import get_app_context

    config = get_app_context().config
    _state_machine()
    console.print("[green]Configuration is valid[/green]")
    console.print_json(config.model_dump_json(exclude={"database": {"url"}}))
