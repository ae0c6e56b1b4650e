"""In-memory key-value store for tests and ephemeral runs."""

import copy
import json
from typing import Any

from toolloop.core.domain.errors import StatePersistenceError


class InMemoryKeyValueStore:
    """Keeps deep copies of JSON-compatible documents."""

    def __init__(self):
        self._data: dict[str, dict[str, Any]] = {}

    async def init(self) -> None:
        pass

    async def shutdown(self) -> None:
        pass

    async def put(self, key: str, value: dict[str, Any]) -> None:
        # JSON round-trip so unserializable state fails here the same way it would on disk
        try:
            self._data[key] = json.loads(json.dumps(value))
        except (TypeError, ValueError) as e:
            raise StatePersistenceError(f"Cannot serialize '{key}': {e}") from e

    async def get(self, key: str) -> dict[str, Any] | None:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def keys(self) -> list[str]:
        return sorted(self._data)

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None
