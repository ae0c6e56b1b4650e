"""
Application Layer - Task Coordinator

Top-level entry point for hosts. Owns the lifecycle of the composed
capabilities and runs at most one task at a time in the background.

Commands coming from the presentation layer (approve, reject, abort,
interested-file edits) are routed here and never touch the executor's
state directly.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Iterable

import structlog

from toolloop.application.event_bus import EventBus, EventHandler
from toolloop.application.state_manager import StateManager
from toolloop.core.domain.approval import ApprovalGate
from toolloop.core.domain.errors import CoordinatorBusyError, StateError
from toolloop.core.domain.events import AgentEventType
from toolloop.core.domain.models import Task, TaskStatus
from toolloop.core.domain.task_executor import RunControl, TaskExecutor
from toolloop.core.interfaces.capability import CapabilityProtocol


@dataclass
class _ActiveRun:
    task_id: str
    control: RunControl
    runner: asyncio.Task


class TaskCoordinator:
    """
    Wires capabilities, the executor and the event bus together.

    Args:
        state_manager: Task state owner
        executor: Task state machine
        approvals: Approval gate shared with the executor
        event_bus: Presentation event bus
        capabilities: Integrations initialized in order and shut down in reverse
    """

    def __init__(
        self,
        state_manager: StateManager,
        executor: TaskExecutor,
        approvals: ApprovalGate,
        event_bus: EventBus,
        capabilities: Iterable[Any] = (),
    ):
        self.state_manager = state_manager
        self.executor = executor
        self.approvals = approvals
        self.event_bus = event_bus
        self.capabilities = [c for c in capabilities if isinstance(c, CapabilityProtocol)]
        self._initialized: list[CapabilityProtocol] = []
        self._active: _ActiveRun | None = None
        self.logger = structlog.get_logger().bind(component="task_coordinator")

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        for capability in self.capabilities:
            await capability.init()
            self._initialized.append(capability)
            self.logger.debug("capability_initialized", capability=type(capability).__name__)

    async def shutdown(self) -> None:
        if self.is_busy:
            self.abort()
            await asyncio.gather(self._active.runner, return_exceptions=True)

        while self._initialized:
            capability = self._initialized.pop()
            try:
                await capability.shutdown()
            except Exception as e:
                self.logger.error(
                    "capability_shutdown_failed",
                    capability=type(capability).__name__,
                    error=str(e),
                )

    async def __aenter__(self) -> "TaskCoordinator":
        await self.init()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # task control
    # ------------------------------------------------------------------

    @property
    def is_busy(self) -> bool:
        return self._active is not None and not self._active.runner.done()

    @property
    def active_task_id(self) -> str | None:
        return self._active.task_id if self.is_busy else None

    def _ensure_idle(self) -> None:
        if self.is_busy:
            raise CoordinatorBusyError(f"Task '{self._active.task_id}' is still running")

    def _launch(self, task_id: str) -> None:
        control = RunControl()
        runner = asyncio.create_task(self.executor.run(task_id, control), name=f"toolloop-{task_id}")
        runner.add_done_callback(lambda t: self._on_run_done(task_id, t))
        self._active = _ActiveRun(task_id=task_id, control=control, runner=runner)

    def _on_run_done(self, task_id: str, runner: asyncio.Task) -> None:
        if runner.cancelled():
            self.logger.warning("task_run_cancelled", task_id=task_id)
        elif runner.exception() is not None:
            error = runner.exception()
            self.logger.error("task_run_crashed", task_id=task_id, error=str(error), error_type=type(error).__name__)

    async def start(self, instruction: str) -> str:
        """Create a task for ``instruction`` and run it in the background."""
        self._ensure_idle()
        task = await self.state_manager.create_task(instruction)
        self._launch(task.id)
        self.logger.info("task_started", task_id=task.id)
        return task.id

    async def resume(self, task_id: str) -> str:
        """
        Continue a task.

        Idle or interrupted tasks continue under the same id. Aborted and
        failed tasks are forked from their last checkpoint under a new id.

        Returns:
            Id of the task that is now running
        """
        self._ensure_idle()
        task = await self.state_manager.get(task_id)
        if task.status == TaskStatus.COMPLETED:
            raise StateError(f"Task '{task_id}' is already completed")

        if task.status in (TaskStatus.ABORTED, TaskStatus.FAILED):
            task = await self.state_manager.fork_from_checkpoint(task_id)

        self._launch(task.id)
        self.logger.info("task_resumed", task_id=task.id, source_task_id=task_id)
        return task.id

    async def wait(self, task_id: str | None = None) -> Task:
        """Wait for the active run (if it is ``task_id``) and return the task."""
        active = self._active
        if active is not None and (task_id is None or active.task_id == task_id):
            await active.runner
            task_id = active.task_id
        if task_id is None:
            raise StateError("No task to wait for")
        return await self.state_manager.get(task_id)

    def pause(self) -> bool:
        """Stop the active task after its current turn, leaving it Idle."""
        if not self.is_busy:
            return False
        self._active.control.pause()
        return True

    def abort(self) -> bool:
        """Abort the active task at its next suspension point."""
        if not self.is_busy:
            return False
        self.logger.info("task_abort_requested", task_id=self._active.task_id)
        self._active.control.abort()
        return True

    def approve(self, invocation_id: str) -> bool:
        return self.approvals.resolve(invocation_id, True)

    def reject(self, invocation_id: str) -> bool:
        return self.approvals.resolve(invocation_id, False)

    # ------------------------------------------------------------------
    # state access
    # ------------------------------------------------------------------

    def _target(self, task_id: str | None) -> str:
        target = task_id or self.active_task_id or (self._active.task_id if self._active else None)
        if target is None:
            raise StateError("No task selected")
        return target

    async def add_interested_file(
        self,
        path: str,
        why: str = "",
        priority: int = 50,
        pinned: bool = False,
        task_id: str | None = None,
    ) -> Task:
        return await self.state_manager.add_interested_file(
            self._target(task_id), path, why, priority=priority, pinned=pinned
        )

    async def remove_interested_file(self, path: str, task_id: str | None = None) -> bool:
        return await self.state_manager.remove_interested_file(self._target(task_id), path)

    async def get_task(self, task_id: str) -> Task:
        return await self.state_manager.get(task_id)

    async def list_tasks(self) -> list[Task]:
        return await self.state_manager.list_tasks()

    def subscribe(self, handler: EventHandler, event_type: AgentEventType | None = None) -> Callable[[], None]:
        return self.event_bus.subscribe(handler, event_type)
