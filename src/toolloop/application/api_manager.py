"""
API Manager

Builds model requests from committed task history and streams responses
through the transport, retrying transient failures with bounded
exponential backoff.

A retry is invisible to history. If fragments were already yielded when
the transport failed, a TurnRestart marker is yielded before the new
attempt so the consumer can discard what it parsed so far.
"""

import asyncio
from typing import AsyncIterator, Awaitable, Callable, Iterable, Union

import structlog

from toolloop.config.settings import ModelSettings, RetrySettings
from toolloop.core.domain.errors import TaskFailure, TransportError
from toolloop.core.domain.models import Role, Task, TextSegment, ToolInvocationSegment
from toolloop.core.interfaces.llm import ModelRequest, ModelTransportProtocol, TurnRestart
from toolloop.core.prompts.system_prompt import BASE_PROMPT, build_system_prompt
from toolloop.core.protocol.wire import render_invocation, render_tool_result
from toolloop.core.tools.registry import SchemaRegistry, describe_schemas
from toolloop.core.tools.schema import ToolSchema


StreamItem = Union[str, TurnRestart]


def history_to_messages(task: Task) -> list[dict[str, str]]:
    """
    Convert committed history into chat messages.

    Assistant turns are replayed verbatim in wire format. Consecutive tool
    results are grouped into one user message of <tool_result> blocks.
    """
    messages: list[dict[str, str]] = []
    pending_results: list[str] = []

    def flush_results() -> None:
        if pending_results:
            messages.append({"role": "user", "content": "\n\n".join(pending_results)})
            pending_results.clear()

    for message in task.history:
        if message.role == Role.TOOL_RESULT:
            pending_results.extend(render_tool_result(result) for result in message.results)
            continue

        flush_results()
        if message.role == Role.ASSISTANT:
            parts = []
            for segment in message.segments:
                if isinstance(segment, TextSegment):
                    parts.append(segment.text)
                elif isinstance(segment, ToolInvocationSegment):
                    parts.append(render_invocation(segment.invocation))
            messages.append({"role": "assistant", "content": "".join(parts)})
        else:
            messages.append({"role": "user", "content": message.text})

    flush_results()
    return messages


class ApiManager:
    """
    Request building and resilient streaming for one model provider.

    Args:
        transport: Streaming model transport
        registry: Schema registry used for the tools description
        model_settings: Model name and sampling parameters
        retry_settings: Backoff policy for transient failures
        base_prompt: Static system instructions
        sleep: Awaitable used for backoff delays
    """

    def __init__(
        self,
        transport: ModelTransportProtocol,
        registry: SchemaRegistry,
        model_settings: ModelSettings | None = None,
        retry_settings: RetrySettings | None = None,
        base_prompt: str = BASE_PROMPT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.transport = transport
        self.registry = registry
        self.model_settings = model_settings or ModelSettings()
        self.retry_settings = retry_settings or RetrySettings()
        self.base_prompt = base_prompt
        self._sleep = sleep
        self.logger = structlog.get_logger().bind(component="api_manager")

    def build_request(self, task: Task, tool_schemas: Iterable[ToolSchema] | None = None) -> ModelRequest:
        """Deterministically build the request for the next turn of ``task``."""
        schemas = self.registry.schemas() if tool_schemas is None else list(tool_schemas)
        system = build_system_prompt(
            self.base_prompt,
            describe_schemas(schemas),
            task.interested_files,
        )
        return ModelRequest(
            system=system,
            messages=tuple(history_to_messages(task)),
            model=self.model_settings.name,
        )

    async def send_turn(
        self, task: Task, tool_schemas: Iterable[ToolSchema] | None = None
    ) -> AsyncIterator[StreamItem]:
        """
        Stream one model response for ``task``.

        Yields:
            Text fragments, and a TurnRestart before any retry that follows
            already-yielded fragments.

        Raises:
            AuthError, ProtocolError: Immediately, without retry
            TaskFailure: When transient failures exhaust the retry budget
        """
        request = self.build_request(task, tool_schemas)
        max_attempts = self.retry_settings.max_attempts

        for attempt in range(max_attempts):
            yielded = False
            stream = self.transport.stream(request)
            try:
                async for fragment in stream:
                    yielded = True
                    yield fragment
                return
            except TransportError as e:
                if attempt >= max_attempts - 1:
                    self.logger.error(
                        "model_turn_failed",
                        task_id=task.id,
                        attempts=attempt + 1,
                        error=e.message,
                    )
                    raise TaskFailure(
                        f"Model request failed after {attempt + 1} attempts: {e.message}"
                    ) from e

                delay = self.retry_settings.delay_for(attempt)
                self.logger.warning(
                    "model_turn_retry",
                    task_id=task.id,
                    attempt=attempt + 1,
                    backoff_seconds=delay,
                    error=e.message,
                    restarted=yielded,
                )
                if yielded:
                    yield TurnRestart(attempt=attempt + 1, reason=e.message)
                await self._sleep(delay)
            finally:
                close = getattr(stream, "aclose", None)
                if close is not None:
                    await close()
