"""toolloop CLI entry point."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from toolloop.api.cli.commands import run, tasks

app = typer.Typer(
    name="toolloop",
    help="toolloop - Streaming tool-loop coding agent runtime",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

# Register commands
app.command("run")(run.run_task)
app.add_typer(tasks.app, name="tasks", help="Task management")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
):
    """toolloop agent CLI."""
    # Store global options in context for subcommands
    ctx.obj = {"config": config, "verbose": verbose}


@app.command()
def version():
    """Show toolloop version."""
    from toolloop import __version__

    console.print(f"[bold blue]toolloop[/bold blue] version [cyan]{__version__}[/cyan]")


if __name__ == "__main__":
    app()
