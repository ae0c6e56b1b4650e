"""
File-Based Key-Value Store
==========================

Persists one JSON document per key under a directory.

Responsibilities:
- Atomic writes (temp file in the same directory + rename)
- Graceful handling of corrupt or unreadable files on read
- Lifecycle hooks so the coordinator can compose it as a capability
"""

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os
import structlog

from toolloop.core.domain.errors import StatePersistenceError

_KEY_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


class FileKeyValueStore:
    """
    Directory-backed store. ``put`` is atomic per key.

    Args:
        base_dir: Directory holding the ``{key}.json`` files
    """

    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)
        self.logger = structlog.get_logger().bind(component="file_store")

    async def init(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.logger.debug("file_store_ready", base_dir=str(self.base_dir))

    async def shutdown(self) -> None:
        pass

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise ValueError(f"Invalid store key: {key!r}")
        return self.base_dir / f"{key}.json"

    async def put(self, key: str, value: dict[str, Any]) -> None:
        """
        Write a document atomically.

        Raises:
            StatePersistenceError: If the document cannot be serialized or written
        """
        path = self._path(key)
        try:
            payload = json.dumps(value, ensure_ascii=False, indent=2)
        except (TypeError, ValueError) as e:
            raise StatePersistenceError(f"Cannot serialize '{key}': {e}") from e

        temp_path = None
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            # Temp file in the same directory keeps the rename on one filesystem
            temp_fd, temp_path = tempfile.mkstemp(dir=self.base_dir, suffix=".tmp", prefix=f".{key}_")
            os.close(temp_fd)
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(payload)
                await f.flush()
            await aiofiles.os.replace(temp_path, path)
            temp_path = None
        except OSError as e:
            self.logger.error("store_write_failed", key=key, error=str(e))
            raise StatePersistenceError(f"Cannot write '{key}': {e}") from e
        finally:
            if temp_path is not None and os.path.exists(temp_path):
                os.unlink(temp_path)

        self.logger.debug("store_written", key=key, path=str(path), atomic=True)

    async def get(self, key: str) -> dict[str, Any] | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                content = await f.read()
            return json.loads(content)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.warning("store_read_failed", key=key, error=str(e))
            return None

    async def keys(self) -> list[str]:
        if not self.base_dir.exists():
            return []
        return sorted(p.stem for p in self.base_dir.glob("*.json"))

    async def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        await aiofiles.os.remove(path)
        self.logger.debug("store_deleted", key=key)
        return True
