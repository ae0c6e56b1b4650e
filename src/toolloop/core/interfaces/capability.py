"""Lifecycle port for integrations composed by the coordinator."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class CapabilityProtocol(Protocol):
    """An integration with explicit startup and shutdown."""

    async def init(self) -> None:
        ...

    async def shutdown(self) -> None:
        ...
