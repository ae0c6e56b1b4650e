"""Rich console output for the toolloop CLI."""

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from toolloop.core.domain.models import Checkpoint, Role, Task, TaskStatus


STATUS_STYLES = {
    TaskStatus.COMPLETED: "green",
    TaskStatus.FAILED: "red",
    TaskStatus.ABORTED: "yellow",
    TaskStatus.IDLE: "white",
}


def task_instruction(task: Task) -> str:
    """First user message of the task, which is the original instruction."""
    for message in task.history:
        if message.role == Role.USER:
            return message.text
    return ""


def _shorten(text: str, width: int = 60) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[: width - 3] + "..."


class ToolloopConsole:
    """Formatting helpers around a rich Console."""

    def __init__(self, verbose: bool = False, console: Console | None = None):
        self.console = console or Console()
        self.verbose = verbose

    def print_banner(self) -> None:
        from toolloop import __version__

        self.console.print(f"[bold blue]toolloop[/bold blue] [dim]v{__version__}[/dim]")

    def print_divider(self) -> None:
        self.console.rule(style="dim")

    def print_info(self, message: str) -> None:
        self.console.print(f"[cyan][i][/cyan] {message}", highlight=False)

    def print_success(self, message: str) -> None:
        self.console.print(f"[bold green][+][/bold green] {message}", highlight=False)

    def print_warning(self, message: str) -> None:
        self.console.print(f"[bold yellow][!][/bold yellow] {message}", highlight=False)

    def print_error(self, message: str) -> None:
        self.console.print(f"[bold red][x][/bold red] {message}", highlight=False)

    def print_debug(self, message: str) -> None:
        if self.verbose:
            self.console.print(f"[dim]{message}[/dim]", highlight=False)

    def print_text_chunk(self, text: str) -> None:
        self.console.out(text, end="", highlight=False)

    def print_tool_started(self, tool: str, invocation_id: str) -> None:
        self.console.print()
        self.console.print(f"[magenta]>> {tool}[/magenta] [dim]{invocation_id}[/dim]", highlight=False)

    def print_tool_result(self, tool: str, outcome: str, message: str) -> None:
        style = "green" if outcome == "success" else "red"
        body = message if self.verbose else _shorten(message, 200)
        self.console.print(f"[{style}]<< {tool} ({outcome})[/{style}] {escape(body)}", highlight=False)

    def print_approval_request(self, tool: str, preview: str) -> None:
        self.console.print()
        self.console.print(Panel(preview, title=f"Approval required: {tool}", border_style="yellow"))

    def print_outcome(self, task: Task) -> None:
        self.print_divider()
        if task.status == TaskStatus.COMPLETED:
            self.print_success(f"Task {task.id} completed")
        elif task.status == TaskStatus.FAILED:
            self.print_error(f"Task {task.id} failed: {task.failure_reason}")
        elif task.status == TaskStatus.ABORTED:
            self.print_warning(f"Task {task.id} aborted")
        else:
            self.print_info(f"Task {task.id} stopped ({task.status.value})")

    def print_tasks(self, tasks: list[Task]) -> None:
        table = Table(title="Tasks")
        table.add_column("Task ID", style="cyan")
        table.add_column("Status")
        table.add_column("Messages", justify="right")
        table.add_column("Updated", style="dim")
        table.add_column("Instruction")

        for task in tasks:
            style = STATUS_STYLES.get(task.status, "blue")
            table.add_row(
                task.id,
                f"[{style}]{task.status.value}[/{style}]",
                str(len(task.history)),
                task.updated_at,
                _shorten(task_instruction(task)),
            )
        self.console.print(table)

    def print_task(self, task: Task) -> None:
        self.console.print(f"\n[bold]Task:[/bold] {task.id}")
        self.console.print(f"[bold]Status:[/bold] {task.status.value}")
        if task.parent_task_id:
            self.console.print(f"[bold]Resumed from:[/bold] {task.parent_task_id}")
        if task.failure_reason:
            self.console.print(f"[bold]Failure:[/bold] {task.failure_reason}")
        self.console.print(f"[bold]Instruction:[/bold] {task_instruction(task)}", highlight=False)

        if task.interested_files:
            table = Table(title="Interested files")
            table.add_column("Path", style="cyan")
            table.add_column("Priority", justify="right")
            table.add_column("Pinned")
            table.add_column("Why")
            for entry in task.interested_files:
                table.add_row(entry.path, str(entry.priority), "yes" if entry.pinned else "", entry.why)
            self.console.print(table)

        for message in task.history:
            self.console.print(f"\n[bold]{message.role.value}[/bold]")
            if message.role == Role.TOOL_RESULT:
                for result in message.results:
                    self.console.print(f"{result.tool_name}: {result.render()}", highlight=False, markup=False)
            else:
                self.console.print(message.text, highlight=False, markup=False)
                for invocation in message.invocations:
                    self.console.print(f"[magenta]>> {invocation.name}[/magenta] [dim]{invocation.id}[/dim]")

    def print_checkpoints(self, task_id: str, checkpoints: list[Checkpoint]) -> None:
        table = Table(title=f"Checkpoints of {task_id}")
        table.add_column("Seq", justify="right", style="cyan")
        table.add_column("Timestamp", style="dim")
        table.add_column("Messages", justify="right")
        table.add_column("Status")
        for checkpoint in checkpoints:
            snapshot = checkpoint.snapshot
            table.add_row(
                str(checkpoint.seq),
                checkpoint.timestamp,
                str(len(snapshot.get("history", []))),
                snapshot.get("status", ""),
            )
        self.console.print(table)
