"""Persistence port used by the state manager."""

from typing import Any, Protocol


class KeyValueStoreProtocol(Protocol):
    """
    Durable key-value storage.

    ``put`` must be atomic for a single key: a reader sees either the old or
    the new value, never a torn write.
    """

    async def put(self, key: str, value: dict[str, Any]) -> None:
        ...

    async def get(self, key: str) -> dict[str, Any] | None:
        ...

    async def keys(self) -> list[str]:
        ...

    async def delete(self, key: str) -> bool:
        ...


class StateManagerProtocol(Protocol):
    """Task state operations the executor and tools rely on."""

    async def get(self, task_id: str) -> Any:
        ...

    async def set_status(self, task_id: str, status: Any, failure_reason: str | None = None) -> Any:
        ...

    async def append_message(self, task_id: str, message: Any) -> Any:
        ...

    async def append_tool_result(self, task_id: str, result: Any) -> Any:
        ...

    async def checkpoint(self, task_id: str) -> Any:
        ...

    async def add_interested_file(
        self, task_id: str, path: str, why: str = "", priority: int = 50, pinned: bool = False
    ) -> Any:
        ...
