"""Main CLI entry point for Productflow.

Provides the Typer application with sub-commands for inspecting the
workflow rule table, working with records, and exporting or verifying
the audit trail, plus ``serve`` to run the HTTP host.

Usage:
    productflow serve --port 8000
    productflow workflow rules
    productflow records transition prod-42 REVIEW --actor ed-1 --role editor --reviewer rev-1
    productflow audit export --format csv --output audit.csv
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from productflow.cli import audit as audit_cli
from productflow.cli import records as records_cli
from productflow.cli import workflow as workflow_cli
from productflow.config import ProductflowConfig, load_config
from productflow.database.connection import get_engine, get_session_factory
from productflow.engine import WorkflowEngine
from productflow.logging import setup_logging
from productflow.storage import SqlStorage

app = typer.Typer(
    name="productflow",
    help="Productflow: product lifecycle workflow engine",
    no_args_is_help=True,
)

app.add_typer(workflow_cli.app, name="workflow", help="Inspect the workflow rule table")
app.add_typer(records_cli.app, name="records", help="Work with product records")
app.add_typer(audit_cli.app, name="audit", help="Export and verify the audit trail")

console = Console()


class AppContext:
    """Application context shared across CLI commands.

    The database engine and workflow engine are created on first use so
    commands that only read configuration never open a connection.

    Attributes:
        config: Loaded Productflow configuration
    """

    def __init__(self, config: ProductflowConfig):
        self.config = config
        self._db_engine = None
        self._workflow_engine: WorkflowEngine | None = None

    @property
    def workflow_engine(self) -> WorkflowEngine:
        if self._workflow_engine is None:
            self._db_engine = get_engine(self.config.database)
            storage = SqlStorage(get_session_factory(self._db_engine))
            self._workflow_engine = WorkflowEngine(config=self.config, storage=storage)
        return self._workflow_engine

    async def close(self) -> None:
        if self._workflow_engine is not None:
            await self._workflow_engine.shutdown()
        if self._db_engine is not None:
            await self._db_engine.dispose()
            self._db_engine = None
        self._workflow_engine = None


_app_context: AppContext | None = None


def get_app_context() -> AppContext:
    """Get the shared application context.

    Raises:
        RuntimeError: If context has not been initialized
    """
    if _app_context is None:
        raise RuntimeError("Application context not initialized. Call initialize_context first.")
    return _app_context


def initialize_context(config: ProductflowConfig) -> AppContext:
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
    """Start the Productflow HTTP host."""
    import uvicorn

    from productflow.web.app import create_app

    config = get_app_context().config
    bind_host = host or config.web.host
    bind_port = port or config.web.port

    console.print("[bold cyan]Starting Productflow[/bold cyan]")
    console.print(f"[dim]Host:[/dim] {bind_host}")
    console.print(f"[dim]Port:[/dim] {bind_port}")
    console.print()

    uvicorn.run(create_app(config), host=bind_host, port=bind_port, log_level="info")


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
    """Load configuration, configure logging and initialize the context."""
    try:
        config = load_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(code=1)

    logging_config = config.logging.model_copy(
        update={"level": "DEBUG" if verbose else config.logging.level, "format": "console"}
    )
    setup_logging(logging_config)
    initialize_context(config)

    if verbose:
        console.print("[dim]Debug logging enabled[/dim]")


if __name__ == "__main__":
    app()
