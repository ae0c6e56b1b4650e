# ==================== STATE MANAGEMENT ====================

"""
Task State Manager

Sole owner of the durable Task aggregate. Every mutation follows the same
transaction shape under a per-task lock:

1. deep-copy the committed task
2. apply the change to the copy
3. persist the copy (atomic per key)
4. swap the copy in as the new committed state

If step 3 fails the previous state stays authoritative and
StatePersistenceError propagates to the caller.
"""

import asyncio
import copy
from typing import Any, Callable

import structlog

from toolloop.core.domain.errors import StateError, StatePersistenceError, TaskNotFoundError
from toolloop.core.domain.models import (
    Checkpoint,
    ConversationMessage,
    InterestedFile,
    Role,
    Task,
    TaskStatus,
    ToolInvocation,
    ToolResult,
    new_id,
    utc_now,
)
from toolloop.core.interfaces.state import KeyValueStoreProtocol


class StateManager:
    """Manages task persistence, checkpoints and recovery with per-task locks"""

    def __init__(self, store: KeyValueStoreProtocol, interested_files_capacity: int = 50):
        self.store = store
        self.interested_files_capacity = interested_files_capacity
        self._tasks: dict[str, Task] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self.logger = structlog.get_logger().bind(component="state_manager")

    def _get_lock(self, task_id: str) -> asyncio.Lock:
        """Get or create a lock for a task"""
        if task_id not in self._locks:
            self._locks[task_id] = asyncio.Lock()
        return self._locks[task_id]

    async def _load(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is not None:
            return task

        data = await self.store.get(task_id)
        if data is None:
            raise TaskNotFoundError(f"Task '{task_id}' not found")
        task = Task.from_dict(data)
        self._tasks[task_id] = task
        self.logger.debug("task_loaded", task_id=task_id, messages=len(task.history))
        return task

    async def _persist(self, task: Task) -> None:
        try:
            await self.store.put(task.id, task.to_dict())
        except StatePersistenceError:
            self.logger.error("task_persist_failed", task_id=task.id)
            raise
        except OSError as e:
            self.logger.error("task_persist_failed", task_id=task.id, error=str(e))
            raise StatePersistenceError(f"Cannot persist task '{task.id}': {e}") from e

    async def _mutate(self, task_id: str, change: Callable[[Task], Any]) -> tuple[Task, Any]:
        async with self._get_lock(task_id):
            committed = await self._load(task_id)
            draft = copy.deepcopy(committed)
            outcome = change(draft)
            draft.updated_at = utc_now()
            await self._persist(draft)
            self._tasks[task_id] = draft
            return copy.deepcopy(draft), outcome

    # ------------------------------------------------------------------
    # task lifecycle
    # ------------------------------------------------------------------

    async def create_task(self, instruction: str, task_id: str | None = None) -> Task:
        """Create a task whose history starts with the user instruction."""
        task_id = task_id or new_id("task_")
        async with self._get_lock(task_id):
            if task_id in self._tasks or await self.store.get(task_id) is not None:
                raise StateError(f"Task '{task_id}' already exists")
            task = Task(id=task_id, history=[ConversationMessage.user(instruction)])
            await self._persist(task)
            self._tasks[task_id] = task
        self.logger.info("task_created", task_id=task_id)
        return copy.deepcopy(task)

    async def get(self, task_id: str) -> Task:
        """Snapshot of the committed task. Mutating it has no effect."""
        return copy.deepcopy(await self._load(task_id))

    async def list_tasks(self) -> list[Task]:
        tasks = []
        for key in await self.store.keys():
            try:
                tasks.append(await self.get(key))
            except TaskNotFoundError:
                continue
        return sorted(tasks, key=lambda t: t.created_at)

    async def set_status(self, task_id: str, status: TaskStatus, failure_reason: str | None = None) -> Task:
        def change(task: Task) -> TaskStatus:
            previous = task.status
            if previous.is_terminal and status != previous:
                raise StateError(f"Task '{task_id}' is {previous.value}; cannot move to {status.value}")
            task.status = status
            if failure_reason is not None:
                task.failure_reason = failure_reason
            return previous

        task, previous = await self._mutate(task_id, change)
        if previous != status:
            self.logger.info("task_status_changed", task_id=task_id, old=previous.value, new=status.value)
        return task

    # ------------------------------------------------------------------
    # history
    # ------------------------------------------------------------------

    async def append_message(self, task_id: str, message: ConversationMessage) -> Task:
        if message.role == Role.TOOL_RESULT:
            raise StateError("Tool results must be appended with append_tool_result()")

        def change(task: Task) -> None:
            task.history.append(message)

        task, _ = await self._mutate(task_id, change)
        self.logger.debug("message_appended", task_id=task_id, role=message.role.value)
        return task

    async def append_tool_result(self, task_id: str, result: ToolResult) -> Task:
        """Append the one result for a pending invocation."""

        def change(task: Task) -> None:
            pending = {invocation.id for invocation in task.pending_invocations()}
            if result.invocation_id not in pending:
                raise StateError(
                    f"No pending invocation '{result.invocation_id}' in task '{task_id}'"
                )
            task.history.append(ConversationMessage.tool_result(result))

        task, _ = await self._mutate(task_id, change)
        self.logger.debug(
            "tool_result_appended",
            task_id=task_id,
            tool=result.tool_name,
            outcome=result.outcome.value,
        )
        return task

    async def pending_invocations(self, task_id: str) -> list[ToolInvocation]:
        return (await self._load(task_id)).pending_invocations()

    # ------------------------------------------------------------------
    # interested files
    # ------------------------------------------------------------------

    async def add_interested_file(
        self,
        task_id: str,
        path: str,
        why: str = "",
        priority: int = 50,
        pinned: bool = False,
    ) -> Task:
        """
        Add or refresh an interested file, evicting past capacity.

        Raises:
            StateError: If ``priority`` is outside 0-100
        """
        if not 0 <= priority <= 100:
            raise StateError(f"priority must be between 0 and 100, got {priority}")
        capacity = self.interested_files_capacity

        def change(task: Task) -> list[str]:
            entry = task.find_interested_file(path)
            if entry is None:
                task.interested_files.append(
                    InterestedFile(path=path, why=why, priority=priority, pinned=pinned)
                )
            else:
                entry.why = why or entry.why
                entry.priority = priority
                entry.pinned = entry.pinned or pinned
                entry.last_access = utc_now()
            return _evict(task, capacity)

        task, evicted = await self._mutate(task_id, change)
        self.logger.info("interested_file_added", task_id=task_id, path=path, evicted=evicted)
        return task

    async def remove_interested_file(self, task_id: str, path: str) -> bool:
        def change(task: Task) -> bool:
            entry = task.find_interested_file(path)
            if entry is None:
                return False
            task.interested_files.remove(entry)
            return True

        _, removed = await self._mutate(task_id, change)
        if removed:
            self.logger.info("interested_file_removed", task_id=task_id, path=path)
        return removed

    async def touch_interested_file(self, task_id: str, path: str) -> bool:
        def change(task: Task) -> bool:
            entry = task.find_interested_file(path)
            if entry is None:
                return False
            entry.last_access = utc_now()
            return True

        _, touched = await self._mutate(task_id, change)
        return touched

    # ------------------------------------------------------------------
    # checkpoints
    # ------------------------------------------------------------------

    async def checkpoint(self, task_id: str) -> Checkpoint:
        """
        Record a resumable snapshot of the committed task.

        Raises:
            StateError: If an invocation in history has no result yet
        """

        def change(task: Task) -> Checkpoint:
            pending = task.pending_invocations()
            if pending:
                names = ", ".join(invocation.name for invocation in pending)
                raise StateError(f"Cannot checkpoint task '{task_id}' with unresolved invocations: {names}")
            seq = task.last_checkpoint.seq + 1 if task.last_checkpoint else 0
            checkpoint = Checkpoint(task_id=task_id, seq=seq, snapshot=task.snapshot())
            task.checkpoints.append(checkpoint)
            return checkpoint

        _, checkpoint = await self._mutate(task_id, change)
        self.logger.info("checkpoint_written", task_id=task_id, seq=checkpoint.seq)
        return copy.deepcopy(checkpoint)

    async def list_checkpoints(self, task_id: str) -> list[Checkpoint]:
        return copy.deepcopy((await self._load(task_id)).checkpoints)

    async def restore(self, task_id: str, seq: int) -> Task:
        """Roll the task back to checkpoint ``seq``. Later checkpoints are dropped."""

        def change(task: Task) -> None:
            checkpoint = _find_checkpoint(task, seq)
            restored = Task.from_dict(checkpoint.snapshot)
            task.history = restored.history
            task.interested_files = restored.interested_files
            task.checkpoints = [c for c in task.checkpoints if c.seq <= seq]
            task.status = TaskStatus.IDLE
            task.failure_reason = None

        task, _ = await self._mutate(task_id, change)
        self.logger.info("task_restored", task_id=task_id, seq=seq)
        return task

    async def fork_from_checkpoint(self, task_id: str, seq: int | None = None) -> Task:
        """
        Start a new task from a checkpoint of an existing one.

        Used to resume aborted or failed tasks without rewriting their
        record. The new task gets its own id, ``parent_task_id`` pointing
        at the source and a seq-0 checkpoint of the restored state.
        """
        source = await self._load(task_id)
        if seq is None:
            if source.last_checkpoint is None:
                raise StateError(f"Task '{task_id}' has no checkpoint to resume from")
            seq = source.last_checkpoint.seq
        checkpoint = _find_checkpoint(source, seq)

        restored = Task.from_dict(checkpoint.snapshot)
        fork = Task(
            id=new_id("task_"),
            history=restored.history,
            interested_files=restored.interested_files,
            parent_task_id=task_id,
        )
        fork.checkpoints.append(Checkpoint(task_id=fork.id, seq=0, snapshot=fork.snapshot()))

        async with self._get_lock(fork.id):
            await self._persist(fork)
            self._tasks[fork.id] = fork
        self.logger.info("task_forked", task_id=fork.id, parent_task_id=task_id, seq=seq)
        return copy.deepcopy(fork)


def _find_checkpoint(task: Task, seq: int) -> Checkpoint:
    for checkpoint in task.checkpoints:
        if checkpoint.seq == seq:
            return checkpoint
    raise StateError(f"Task '{task.id}' has no checkpoint with seq {seq}")


def _evict(task: Task, capacity: int) -> list[str]:
    """Drop lowest-priority, least recently accessed unpinned files past capacity."""
    evicted = []
    while len(task.interested_files) > capacity:
        candidates = [
            (entry.priority, entry.last_access, index, entry)
            for index, entry in enumerate(task.interested_files)
            if not entry.pinned
        ]
        if not candidates:
            break
        victim = min(candidates, key=lambda c: c[:3])[3]
        task.interested_files.remove(victim)
        evicted.append(victim.path)
    return evicted
