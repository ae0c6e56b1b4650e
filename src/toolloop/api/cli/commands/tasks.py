"""Tasks command - Inspect and resume persisted tasks."""

import asyncio
from pathlib import Path
from typing import Optional

import typer

from toolloop.api.cli.commands.run import drive, exit_code, settings_from_context
from toolloop.api.cli.output_formatter import ToolloopConsole
from toolloop.application.coordinator import TaskCoordinator
from toolloop.application.state_manager import StateManager
from toolloop.config.settings import ToolloopSettings
from toolloop.core.domain.errors import TaskNotFoundError, ToolloopError
from toolloop.infrastructure.persistence.file_store import FileKeyValueStore

app = typer.Typer(help="Task management")


def _state_manager(settings: ToolloopSettings) -> StateManager:
    store = FileKeyValueStore(settings.state.store_dir)
    return StateManager(store, settings.state.interested_files_capacity)


def _console(ctx: typer.Context) -> ToolloopConsole:
    return ToolloopConsole(verbose=(ctx.obj or {}).get("verbose", False))


@app.command("list")
def list_tasks(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML configuration file"),
):
    """List persisted tasks."""
    console = _console(ctx)
    state_manager = _state_manager(settings_from_context(ctx, config))
    tasks = asyncio.run(state_manager.list_tasks())
    if not tasks:
        console.print_info("No tasks found")
        return
    console.print_tasks(tasks)


@app.command("show")
def show_task(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML configuration file"),
):
    """Show task details and history."""
    console = _console(ctx)
    state_manager = _state_manager(settings_from_context(ctx, config))
    try:
        task = asyncio.run(state_manager.get(task_id))
    except TaskNotFoundError:
        console.print_error(f"Task '{task_id}' not found")
        raise typer.Exit(1)
    console.print_task(task)


@app.command("checkpoints")
def list_checkpoints(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML configuration file"),
):
    """List checkpoints of a task."""
    console = _console(ctx)
    state_manager = _state_manager(settings_from_context(ctx, config))
    try:
        checkpoints = asyncio.run(state_manager.list_checkpoints(task_id))
    except TaskNotFoundError:
        console.print_error(f"Task '{task_id}' not found")
        raise typer.Exit(1)
    console.print_checkpoints(task_id, checkpoints)


@app.command("resume")
def resume_task(
    ctx: typer.Context,
    task_id: str = typer.Argument(..., help="Task ID"),
    checkpoint: Optional[int] = typer.Option(
        None, "--checkpoint", help="Restore this checkpoint sequence number before resuming"
    ),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML configuration file"),
    workspace: Optional[Path] = typer.Option(None, "--workspace", "-w", help="Workspace root for tools"),
):
    """Resume a task.

    Interrupted tasks continue under the same ID. Aborted and failed tasks
    continue as a new task forked from their last checkpoint.
    """
    console = _console(ctx)
    settings = settings_from_context(ctx, config, workspace)

    async def resume(coordinator: TaskCoordinator) -> str:
        if checkpoint is not None:
            await coordinator.state_manager.restore(task_id, checkpoint)
        new_id = await coordinator.resume(task_id)
        if new_id != task_id:
            console.print_info(f"Continuing as new task {new_id}")
        return new_id

    console.print_banner()
    try:
        task = asyncio.run(drive(settings, console, resume))
    except ToolloopError as e:
        console.print_error(e.message)
        raise typer.Exit(1)

    console.print_outcome(task)
    raise typer.Exit(exit_code(task))
