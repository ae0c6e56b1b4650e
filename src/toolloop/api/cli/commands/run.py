"""Run command - Execute a task from an instruction."""

import asyncio
import signal
from pathlib import Path
from typing import Awaitable, Callable, Optional

import typer
from rich.prompt import Confirm

from toolloop.api.cli.output_formatter import ToolloopConsole
from toolloop.application.coordinator import TaskCoordinator
from toolloop.application.factory import build_coordinator
from toolloop.config.settings import ToolloopSettings, load_settings
from toolloop.core.domain.errors import ToolloopError
from toolloop.core.domain.events import AgentEvent, AgentEventType
from toolloop.core.domain.models import Task, TaskStatus
from toolloop.logging_config import configure_logging


def settings_from_context(
    ctx: typer.Context, config: Optional[Path] = None, workspace: Optional[Path] = None
) -> ToolloopSettings:
    """Load settings honoring global and per-command options, and configure logging."""
    global_opts = ctx.obj or {}
    config = config or global_opts.get("config")
    verbose = global_opts.get("verbose", False)

    overrides = {}
    if workspace is not None:
        overrides["workspace_root"] = str(workspace)
    settings = load_settings(config, **overrides)

    level = "DEBUG" if verbose else settings.logging.level
    configure_logging(level=level, json_output=settings.logging.json_output)
    return settings


class EventPrinter:
    """Renders coordinator events and answers approval prompts."""

    def __init__(self, coordinator: TaskCoordinator, console: ToolloopConsole):
        self.coordinator = coordinator
        self.console = console
        self._prompts: set[asyncio.Task] = set()

    def __call__(self, event: AgentEvent) -> None:
        data = event.data
        if event.type == AgentEventType.TEXT_CHUNK:
            self.console.print_text_chunk(data["text"])
        elif event.type == AgentEventType.TOOL_INVOCATION_STARTED:
            self.console.print_tool_started(data["tool"], data["invocation_id"])
        elif event.type == AgentEventType.TOOL_RESULT:
            self.console.print_tool_result(data["tool"], data["outcome"], data["message"])
        elif event.type == AgentEventType.TURN_RESTARTED:
            self.console.print_warning(f"Model stream interrupted, retrying ({data['reason']})")
        elif event.type == AgentEventType.STATE_CHANGED:
            self.console.print_debug(f"state: {data['status']}")
        elif event.type == AgentEventType.APPROVAL_REQUESTED:
            self.console.print_approval_request(data["tool"], data["preview"])
            # The executor registers the pending request right after emitting.
            prompt = asyncio.create_task(self._ask(data["invocation_id"]))
            self._prompts.add(prompt)
            prompt.add_done_callback(self._prompts.discard)

    async def _ask(self, invocation_id: str) -> None:
        approved = await asyncio.to_thread(Confirm.ask, "Allow this tool call?", console=self.console.console)
        resolve = self.coordinator.approve if approved else self.coordinator.reject
        if not resolve(invocation_id):
            self.console.print_warning(
                "This approval request is no longer pending (it timed out or the task stopped). "
                "Your answer was ignored."
            )


async def drive(
    settings: ToolloopSettings,
    console: ToolloopConsole,
    action: Callable[[TaskCoordinator], Awaitable[str]],
) -> Task:
    """Build a coordinator, start a task with ``action`` and stream it to the console."""
    async with build_coordinator(settings) as coordinator:
        coordinator.subscribe(EventPrinter(coordinator, console))

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, coordinator.abort)
        except (NotImplementedError, RuntimeError):
            pass

        try:
            task_id = await action(coordinator)
            console.print_debug(f"Task ID: {task_id}")
            return await coordinator.wait(task_id)
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError):
                pass


def exit_code(task: Task) -> int:
    return 0 if task.status in (TaskStatus.COMPLETED, TaskStatus.IDLE) else 1


def run_task(
    ctx: typer.Context,
    instruction: str = typer.Argument(..., help="What the agent should do"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML configuration file"),
    workspace: Optional[Path] = typer.Option(None, "--workspace", "-w", help="Workspace root for tools"),
):
    """Run a new task.

    Examples:
        # Run with defaults
        toolloop run "Add a docstring to utils.py"

        # Custom configuration and workspace
        toolloop run "Fix the failing test" --config configs/toolloop.yaml --workspace ../project
    """
    global_opts = ctx.obj or {}
    console = ToolloopConsole(verbose=global_opts.get("verbose", False))

    try:
        settings = settings_from_context(ctx, config, workspace)
    except ToolloopError as e:
        console.print_error(e.message)
        raise typer.Exit(2)

    console.print_banner()
    console.print_info(f"Instruction: {instruction}")
    console.print_info(f"Model: {settings.model.name}")
    console.print_divider()

    async def start(coordinator: TaskCoordinator) -> str:
        return await coordinator.start(instruction)

    try:
        task = asyncio.run(drive(settings, console, start))
    except ToolloopError as e:
        console.print_error(e.message)
        raise typer.Exit(1)

    console.print_outcome(task)
    raise typer.Exit(exit_code(task))
