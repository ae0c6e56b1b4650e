"""
Shared fixtures for toolloop unit tests.

Provides a scripted model transport, an in-memory store and small tool
runners so tests never touch the network or the real workspace.
"""

import asyncio
from typing import Any, Callable
from unittest.mock import AsyncMock

import pytest

from toolloop.application.api_manager import ApiManager
from toolloop.application.event_bus import EventBus
from toolloop.application.state_manager import StateManager
from toolloop.config.settings import ExecutorSettings, RetrySettings
from toolloop.core.domain.approval import ApprovalGate, ApprovalPolicy
from toolloop.core.domain.events import AgentEvent
from toolloop.core.domain.task_executor import TaskExecutor
from toolloop.core.interfaces.llm import ModelRequest
from toolloop.core.interfaces.tools import RunnerOutcome, ToolContext
from toolloop.core.tools.base import Tool
from toolloop.core.tools.builtin import builtin_tools
from toolloop.core.tools.catalog import WORKSPACE_TOOL_SCHEMAS
from toolloop.core.tools.dispatcher import ToolDispatcher
from toolloop.core.tools.registry import SchemaRegistry
from toolloop.core.tools.schema import ToolSchema
from toolloop.infrastructure.persistence.memory_store import InMemoryKeyValueStore


def tool_call(name: str, **params: str) -> str:
    """Wire text of a tool block with plain-text parameters."""
    body = "".join(f"<{key}>{value}</{key}>" for key, value in params.items())
    return f'<tool name="{name}">{body}</tool>'


def completion(result: str = "All done.") -> list[str]:
    return ["Finished.\n", tool_call("attempt_completion", result=result)]


class ScriptedTransport:
    """
    Model transport that replays one script per ``stream`` call.

    A script is a list of fragments. An exception instance in the list is
    raised at that position, after the preceding fragments were yielded.
    """

    def __init__(self, scripts: list[list[Any]] | None = None):
        self.scripts = list(scripts or [])
        self.requests: list[ModelRequest] = []
        self.init = AsyncMock()
        self.shutdown = AsyncMock()

    def add(self, *fragments: Any) -> "ScriptedTransport":
        self.scripts.append(list(fragments))
        return self

    async def stream(self, request: ModelRequest):
        self.requests.append(request)
        if not self.scripts:
            raise AssertionError("ScriptedTransport ran out of scripts")
        for item in self.scripts.pop(0):
            if isinstance(item, BaseException):
                raise item
            await asyncio.sleep(0)
            yield item


class EchoTool(Tool):
    """Read-only tool returning its input."""

    def __init__(self):
        self.calls: list[str] = []

    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Echo the given text"

    @property
    def read_only(self) -> bool:
        return True

    async def execute(self, context: ToolContext, text: str, **kwargs) -> str:
        self.calls.append(text)
        return f"echo: {text}"


class SchemaTool:
    """Runner bound to an existing schema that records its calls."""

    def __init__(self, schema: ToolSchema, handler: Callable[..., Any] | None = None):
        self.schema = schema
        self.name = schema.name
        self.calls: list[dict[str, Any]] = []
        self.handler = handler

    async def run(self, params: dict[str, Any], context: ToolContext) -> RunnerOutcome:
        self.calls.append(params)
        if self.handler is not None:
            result = self.handler(params, context)
            if asyncio.iscoroutine(result):
                result = await result
            return result
        return RunnerOutcome(payload=f"{self.name} ok")


class EventRecorder:
    def __init__(self):
        self.events: list[AgentEvent] = []

    def __call__(self, event: AgentEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type) -> list[AgentEvent]:
        return [event for event in self.events if event.type == event_type]


@pytest.fixture
def memory_store():
    """Fresh in-memory key-value store."""
    return InMemoryKeyValueStore()


@pytest.fixture
def state_manager(memory_store):
    """StateManager over the in-memory store."""
    return StateManager(memory_store, interested_files_capacity=50)


@pytest.fixture
def registry():
    """Registry with the workspace tool schemas."""
    return SchemaRegistry(WORKSPACE_TOOL_SCHEMAS)


@pytest.fixture
def echo_tool():
    return EchoTool()


@pytest.fixture
def dispatcher(registry, echo_tool):
    """Dispatcher with the builtin tools and the echo tool registered."""
    dispatcher = ToolDispatcher(registry, timeout_seconds=5.0)
    dispatcher.register_runners(builtin_tools())
    dispatcher.register_runner(echo_tool)
    return dispatcher


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def recorder(event_bus):
    """Records every event published on the bus."""
    recorder = EventRecorder()
    event_bus.subscribe(recorder)
    return recorder


@pytest.fixture
def transport():
    return ScriptedTransport()


@pytest.fixture
def no_sleep():
    """Replacement for asyncio.sleep in retry backoff."""
    return AsyncMock()


@pytest.fixture
def make_executor(state_manager, dispatcher, event_bus, no_sleep):
    """Factory building a TaskExecutor around a transport."""

    def _make(
        transport: ScriptedTransport,
        approvals: ApprovalGate | None = None,
        settings: ExecutorSettings | None = None,
        retry: RetrySettings | None = None,
    ) -> TaskExecutor:
        api_manager = ApiManager(
            transport,
            dispatcher.registry,
            retry_settings=retry or RetrySettings(),
            sleep=no_sleep,
        )
        return TaskExecutor(
            state_manager=state_manager,
            api_manager=api_manager,
            dispatcher=dispatcher,
            approvals=approvals or ApprovalGate(ApprovalPolicy.PROMPT, timeout_seconds=5.0),
            events=event_bus,
            settings=settings or ExecutorSettings(),
        )

    return _make
