"""
Task Executor

Drives one task through its lifecycle::

    Idle -> AwaitingModel -> Streaming -> [AwaitingApproval] -> ExecutingTool
         -> AwaitingModel ... -> Completed | Aborted | Failed

One turn:

1. build the request from committed history and stream the response
   through a fresh protocol parser, surfacing text as it arrives
2. commit the assistant message (text and invocations in stream order)
3. execute invocations strictly in order, appending each result as soon as
   it exists
4. write a checkpoint

Nothing from a turn is committed before its stream has ended, so an abort
or transport failure mid-stream leaves history exactly as it was.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from toolloop.config.settings import ExecutorSettings
from toolloop.core.domain.approval import ApprovalDecision, ApprovalGate
from toolloop.core.domain.errors import AuthError, ErrorKind, ProtocolError, TaskFailure, StateError
from toolloop.core.domain.events import AgentEvent, AgentEventType
from toolloop.core.domain.models import (
    ConversationMessage,
    Role,
    Task,
    TaskStatus,
    TextSegment,
    ToolInvocation,
    ToolInvocationSegment,
    ToolResult,
)
from toolloop.core.interfaces.events import EventPublisherProtocol
from toolloop.core.interfaces.llm import TurnRestart, TurnStreamProtocol
from toolloop.core.interfaces.state import StateManagerProtocol
from toolloop.core.interfaces.tools import ToolContext
from toolloop.core.protocol.parser import ProtocolParser, TextChunk
from toolloop.core.tools.builtin import ATTEMPT_COMPLETION
from toolloop.core.tools.dispatcher import ToolDispatcher
from toolloop.core.tools.schema import ValidationError

NO_TOOL_NUDGE = (
    "Your last response did not contain a tool call. Use one of the available tools "
    "to continue, or call attempt_completion if the task is complete."
)

_END = object()
_ABORTED = object()


class TurnOutcome(str, Enum):
    CONTINUE = "continue"
    NO_TOOLS = "no_tools"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class RunControl:
    """
    Control signals for one executor run.

    Attributes:
        abort_event: Set to stop at the next suspension point
        pause_event: Set to stop after the current turn is committed
    """

    abort_event: asyncio.Event = field(default_factory=asyncio.Event)
    pause_event: asyncio.Event = field(default_factory=asyncio.Event)

    def abort(self) -> None:
        self.abort_event.set()

    def pause(self) -> None:
        self.pause_event.set()

    @property
    def aborted(self) -> bool:
        return self.abort_event.is_set()

    @property
    def paused(self) -> bool:
        return self.pause_event.is_set()


class TaskExecutor:
    """
    State machine sequencing model turns and tool calls for a task.

    Args:
        state_manager: Owner of the task aggregate
        api_manager: Produces the streamed model response for a turn
        dispatcher: Executes tool invocations
        approvals: Gate for tools that require approval
        events: Presentation event publisher
        settings: Turn limits and tool execution settings
        workspace_root: Root directory handed to tool runners
    """

    def __init__(
        self,
        state_manager: StateManagerProtocol,
        api_manager: TurnStreamProtocol,
        dispatcher: ToolDispatcher,
        approvals: ApprovalGate,
        events: EventPublisherProtocol,
        settings: ExecutorSettings | None = None,
        workspace_root: str = ".",
    ):
        self.state_manager = state_manager
        self.api_manager = api_manager
        self.dispatcher = dispatcher
        self.approvals = approvals
        self.events = events
        self.settings = settings or ExecutorSettings()
        self.workspace_root = workspace_root
        self.logger = structlog.get_logger().bind(component="task_executor")

    async def run(self, task_id: str, control: RunControl | None = None) -> Task:
        """
        Run a task until it completes, fails, is aborted or paused.

        Re-entering a task that was interrupted resumes from committed
        history; nothing that was in flight is replayed.

        Returns:
            Final committed snapshot of the task
        """
        control = control or RunControl()
        task = await self.state_manager.get(task_id)
        if task.status.is_terminal:
            raise StateError(f"Task '{task_id}' is already {task.status.value}")

        logger = self.logger.bind(task_id=task_id)
        logger.info("task_run_started", messages=len(task.history))

        await self._resolve_orphans(task)
        if not task.checkpoints:
            await self.state_manager.checkpoint(task_id)

        turns = 0
        no_tool_turns = 0
        try:
            while True:
                if control.aborted:
                    await self._finish_aborted(task_id)
                    break
                if control.paused:
                    await self._transition(task_id, TaskStatus.IDLE)
                    logger.info("task_paused", turns=turns)
                    break
                if turns >= self.settings.max_turns:
                    await self._fail(task_id, "turn limit reached")
                    break

                outcome = await self._run_turn(task_id, control)
                turns += 1

                if outcome == TurnOutcome.ABORTED:
                    await self._finish_aborted(task_id)
                    break
                if outcome == TurnOutcome.COMPLETED:
                    await self._transition(task_id, TaskStatus.COMPLETED)
                    logger.info("task_completed", turns=turns)
                    break
                if outcome == TurnOutcome.NO_TOOLS:
                    no_tool_turns += 1
                    if no_tool_turns > self.settings.max_consecutive_no_tool_turns:
                        await self._fail(
                            task_id,
                            f"model responded {no_tool_turns} times in a row without using a tool",
                        )
                        break
                else:
                    no_tool_turns = 0

        except (AuthError, ProtocolError, TaskFailure) as e:
            logger.error("task_run_failed", error=e.message, code=e.code)
            await self._fail(task_id, e.message)

        return await self.state_manager.get(task_id)

    # ------------------------------------------------------------------
    # turn
    # ------------------------------------------------------------------

    async def _run_turn(self, task_id: str, control: RunControl) -> TurnOutcome:
        await self._transition(task_id, TaskStatus.AWAITING_MODEL)
        task = await self.state_manager.get(task_id)

        segments = await self._stream_response(task, control)
        if segments is None:
            return TurnOutcome.ABORTED

        invocations = [s.invocation for s in segments if isinstance(s, ToolInvocationSegment)]
        if segments:
            await self.state_manager.append_message(
                task_id, ConversationMessage(role=Role.ASSISTANT, segments=tuple(segments))
            )

        if not invocations:
            self.logger.info("turn_without_tools", task_id=task_id)
            await self.state_manager.append_message(task_id, ConversationMessage.user(NO_TOOL_NUDGE))
            await self.state_manager.checkpoint(task_id)
            return TurnOutcome.NO_TOOLS

        results = await self._execute_invocations(task_id, invocations, control)
        await self.state_manager.checkpoint(task_id)

        if control.aborted:
            return TurnOutcome.ABORTED

        last_invocation, last_result = invocations[-1], results[-1]
        if last_invocation.name == ATTEMPT_COMPLETION and last_result.success:
            return TurnOutcome.COMPLETED
        return TurnOutcome.CONTINUE

    async def _stream_response(self, task: Task, control: RunControl) -> list | None:
        """Stream and parse one response. Returns the segments, or None if aborted."""
        await self._transition(task.id, TaskStatus.STREAMING)

        parser = ProtocolParser(self.dispatcher.registry.structured_params)
        segments: list = []
        stream = self.api_manager.send_turn(task)
        try:
            while True:
                item = await self._next_or_abort(stream, control)
                if item is _ABORTED:
                    parser.abandon()
                    self.logger.info("stream_aborted", task_id=task.id)
                    return None
                if item is _END:
                    break
                if isinstance(item, TurnRestart):
                    parser.abandon()
                    parser = ProtocolParser(self.dispatcher.registry.structured_params)
                    segments = []
                    await self._emit(AgentEventType.TURN_RESTARTED, task.id, attempt=item.attempt, reason=item.reason)
                    continue
                for event in parser.feed(item):
                    await self._collect(task.id, segments, event)
        finally:
            close = getattr(stream, "aclose", None)
            if close is not None:
                await close()

        for event in parser.finish():
            await self._collect(task.id, segments, event)
        return segments

    async def _next_or_abort(self, stream: Any, control: RunControl) -> Any:
        if control.aborted:
            return _ABORTED

        next_item = asyncio.ensure_future(stream.__anext__())
        abort_waiter = asyncio.ensure_future(control.abort_event.wait())
        done, _ = await asyncio.wait({next_item, abort_waiter}, return_when=asyncio.FIRST_COMPLETED)

        if next_item in done:
            abort_waiter.cancel()
            try:
                return next_item.result()
            except StopAsyncIteration:
                return _END

        next_item.cancel()
        await asyncio.wait({next_item})
        if not next_item.cancelled() and next_item.exception() is not None:
            self.logger.debug("stream_error_after_abort", error=str(next_item.exception()))
        return _ABORTED

    async def _collect(self, task_id: str, segments: list, event: Any) -> None:
        if isinstance(event, TextChunk):
            if segments and isinstance(segments[-1], TextSegment):
                segments[-1] = TextSegment(segments[-1].text + event.text)
            else:
                segments.append(TextSegment(event.text))
            await self._emit(AgentEventType.TEXT_CHUNK, task_id, text=event.text)
        elif isinstance(event, ToolInvocation):
            segments.append(ToolInvocationSegment(event))

    # ------------------------------------------------------------------
    # tool execution
    # ------------------------------------------------------------------

    async def _execute_invocations(
        self, task_id: str, invocations: list[ToolInvocation], control: RunControl
    ) -> list[ToolResult]:
        context = ToolContext(
            task_id=task_id,
            workspace_root=self.workspace_root,
            state_manager=self.state_manager,
        )
        results: list[ToolResult] = []
        index = 0
        while index < len(invocations):
            if control.aborted:
                for invocation in invocations[index:]:
                    result = ToolResult.cancelled(
                        invocation, ErrorKind.CANCELLED, "Task was aborted before this tool ran."
                    )
                    await self._commit_result(task_id, result)
                    results.append(result)
                break

            batch = self._read_only_batch(invocations, index)
            if len(batch) > 1:
                await self._transition(task_id, TaskStatus.EXECUTING_TOOL)
                for invocation in batch:
                    await self._emit_started(task_id, invocation)
                for result in await self.dispatcher.dispatch_many(batch, context, parallel_read_only=True):
                    await self._commit_result(task_id, result)
                    results.append(result)
                index += len(batch)
                continue

            invocation = invocations[index]
            index += 1
            result = await self._execute_one(task_id, invocation, context, control)
            await self._commit_result(task_id, result)
            results.append(result)

        return results

    def _read_only_batch(self, invocations: list[ToolInvocation], start: int) -> list[ToolInvocation]:
        if not self.settings.parallel_read_only_tools:
            return []
        batch = []
        for invocation in invocations[start:]:
            if not self.dispatcher.is_read_only(invocation) or self._needs_approval(invocation):
                break
            batch.append(invocation)
        return batch

    def _needs_approval(self, invocation: ToolInvocation) -> bool:
        """Approval is only asked for invocations that would actually reach a runner."""
        schema = self.dispatcher.registry.get(invocation.name)
        if not (invocation.valid and schema and schema.requires_approval):
            return False
        if not self.dispatcher.has_runner(invocation.name):
            return False
        validated = self.dispatcher.registry.validate(invocation.name, invocation.params)
        return not isinstance(validated, ValidationError)

    async def _execute_one(
        self, task_id: str, invocation: ToolInvocation, context: ToolContext, control: RunControl
    ) -> ToolResult:
        if self._needs_approval(invocation):
            await self._transition(task_id, TaskStatus.AWAITING_APPROVAL)
            await self._emit(
                AgentEventType.APPROVAL_REQUESTED,
                task_id,
                invocation_id=invocation.id,
                tool=invocation.name,
                preview=self._approval_preview(invocation),
            )
            decision = await self.approvals.request(invocation, control.abort_event)
            if decision == ApprovalDecision.ABORTED:
                return ToolResult.cancelled(
                    invocation, ErrorKind.CANCELLED, "Task was aborted while waiting for approval."
                )
            if decision == ApprovalDecision.TIMED_OUT:
                return ToolResult.cancelled(
                    invocation,
                    ErrorKind.REJECTED,
                    f"No approval received within {self.approvals.timeout_seconds}s; the tool was not run.",
                )
            if decision == ApprovalDecision.REJECTED:
                return ToolResult.cancelled(invocation, ErrorKind.REJECTED, "The user rejected this tool call.")

        await self._transition(task_id, TaskStatus.EXECUTING_TOOL)
        await self._emit_started(task_id, invocation)
        return await self.dispatcher.dispatch(invocation, context)

    def _approval_preview(self, invocation: ToolInvocation) -> str:
        """Runner-provided preview of the call, or a generic parameter listing."""
        runner = self.dispatcher.get_runner(invocation.name)
        preview = getattr(runner, "get_approval_preview", None)
        if preview is not None:
            # Only _needs_approval-checked invocations get here, so validation succeeds.
            validated = self.dispatcher.registry.validate(invocation.name, invocation.params)
            try:
                return str(preview(**validated.values))
            except Exception as e:
                self.logger.warning(
                    "approval_preview_failed",
                    tool=invocation.name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        lines = [f"Tool: {invocation.name}"]
        lines.extend(f"{key}: {str(value)[:200]}" for key, value in invocation.params.items())
        return "\n".join(lines)

    async def _commit_result(self, task_id: str, result: ToolResult) -> None:
        await self.state_manager.append_tool_result(task_id, result)
        await self._emit(
            AgentEventType.TOOL_RESULT,
            task_id,
            invocation_id=result.invocation_id,
            tool=result.tool_name,
            outcome=result.outcome.value,
            message=result.render(),
        )

    async def _emit_started(self, task_id: str, invocation: ToolInvocation) -> None:
        await self._emit(
            AgentEventType.TOOL_INVOCATION_STARTED,
            task_id,
            invocation_id=invocation.id,
            tool=invocation.name,
            valid=invocation.valid,
        )

    # ------------------------------------------------------------------
    # lifecycle helpers
    # ------------------------------------------------------------------

    async def _resolve_orphans(self, task: Task) -> None:
        """Close invocations left without a result by an interrupted run."""
        for invocation in task.pending_invocations():
            self.logger.warning("orphan_invocation_cancelled", task_id=task.id, tool=invocation.name)
            await self.state_manager.append_tool_result(
                task.id,
                ToolResult.cancelled(
                    invocation, ErrorKind.CANCELLED, "The run was interrupted before this tool produced a result."
                ),
            )

    async def _finish_aborted(self, task_id: str) -> None:
        task = await self.state_manager.get(task_id)
        checkpoint = task.last_checkpoint
        if checkpoint is None or len(checkpoint.snapshot.get("history", [])) != len(task.history):
            await self.state_manager.checkpoint(task_id)
        await self._transition(task_id, TaskStatus.ABORTED)
        self.logger.info("task_aborted", task_id=task_id)

    async def _fail(self, task_id: str, reason: str) -> None:
        await self.state_manager.set_status(task_id, TaskStatus.FAILED, failure_reason=reason)
        await self._emit(AgentEventType.STATE_CHANGED, task_id, status=TaskStatus.FAILED.value, reason=reason)
        self.logger.error("task_failed", task_id=task_id, reason=reason)

    async def _transition(self, task_id: str, status: TaskStatus) -> None:
        task = await self.state_manager.get(task_id)
        if task.status == status:
            return
        await self.state_manager.set_status(task_id, status)
        await self._emit(AgentEventType.STATE_CHANGED, task_id, status=status.value, previous=task.status.value)

    async def _emit(self, event_type: AgentEventType, task_id: str, **data: Any) -> None:
        await self.events.emit(AgentEvent(type=event_type, task_id=task_id, data=data))
