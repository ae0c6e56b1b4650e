"""Event publishing port."""

from typing import Protocol

from toolloop.core.domain.events import AgentEvent


class EventPublisherProtocol(Protocol):
    async def emit(self, event: AgentEvent) -> None:
        ...
