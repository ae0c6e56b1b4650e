"""
Unit Tests for EventBus
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from toolloop.application.event_bus import EventBus
from toolloop.core.domain.events import AgentEvent, AgentEventType


def event(event_type=AgentEventType.TEXT_CHUNK, **data):
    return AgentEvent(type=event_type, task_id="t1", data=data)


class TestEventBus:
    @pytest.mark.asyncio
    async def test_typed_and_catch_all_handlers(self):
        bus = EventBus()
        typed, catch_all = MagicMock(), MagicMock()
        bus.subscribe(typed, AgentEventType.TOOL_RESULT)
        bus.subscribe(catch_all)

        await bus.emit(event(AgentEventType.TEXT_CHUNK, text="hi"))
        await bus.emit(event(AgentEventType.TOOL_RESULT, outcome="success"))

        assert typed.call_count == 1
        assert typed.call_args.args[0].type == AgentEventType.TOOL_RESULT
        assert catch_all.call_count == 2

    @pytest.mark.asyncio
    async def test_async_handler_is_awaited(self):
        bus = EventBus()
        handler = AsyncMock()
        bus.subscribe(handler)

        await bus.emit(event(text="hi"))

        handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failing_handler_is_isolated(self):
        bus = EventBus()
        after = MagicMock()
        bus.subscribe(MagicMock(side_effect=RuntimeError("render failed")))
        bus.subscribe(AsyncMock(side_effect=ValueError("also broken")))
        bus.subscribe(after)

        await bus.emit(event(text="hi"))

        after.assert_called_once()

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        handler = MagicMock()
        unsubscribe = bus.subscribe(handler, AgentEventType.TEXT_CHUNK)
        bus.subscribe(handler)

        unsubscribe()
        await bus.emit(event(text="hi"))

        handler.assert_not_called()
