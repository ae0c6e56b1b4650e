"""
Event bus for presentation subscribers.

Subscribers observe; they never mutate task state. Handlers may be sync or
async. A failing handler is logged and does not affect other handlers or
the task.
"""

import inspect
from typing import Any, Callable

import structlog

from toolloop.core.domain.events import AgentEvent, AgentEventType

EventHandler = Callable[[AgentEvent], Any]


class EventBus:
    """Fan-out of AgentEvents with per-type and catch-all subscriptions."""

    def __init__(self):
        self._handlers: dict[AgentEventType, list[EventHandler]] = {}
        self._all_handlers: list[EventHandler] = []
        self.logger = structlog.get_logger().bind(component="event_bus")

    def subscribe(self, handler: EventHandler, event_type: AgentEventType | None = None) -> Callable[[], None]:
        """
        Register a handler for one event type, or for all events.

        Returns:
            A callable that removes the subscription
        """
        if event_type is None:
            self._all_handlers.append(handler)
        else:
            self._handlers.setdefault(event_type, []).append(handler)
        return lambda: self.unsubscribe(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        for event_type in self._handlers:
            self._handlers[event_type] = [h for h in self._handlers[event_type] if h != handler]
        self._all_handlers = [h for h in self._all_handlers if h != handler]

    async def emit(self, event: AgentEvent) -> None:
        for handler in [*self._handlers.get(event.type, []), *self._all_handlers]:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.warning(
                    "event_handler_failed",
                    event_type=event.type.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
