"""
Unit Tests for FileKeyValueStore
"""

import pytest

from toolloop.core.domain.errors import StatePersistenceError
from toolloop.infrastructure.persistence.file_store import FileKeyValueStore


@pytest.fixture
def store(tmp_path):
    return FileKeyValueStore(tmp_path / "tasks")


class TestFileKeyValueStore:
    @pytest.mark.asyncio
    async def test_put_get_round_trip(self, store):
        await store.init()
        await store.put("task_1", {"id": "task_1", "text": "ünïcode & <markup>"})
        assert await store.get("task_1") == {"id": "task_1", "text": "ünïcode & <markup>"}

    @pytest.mark.asyncio
    async def test_put_creates_directory(self, store):
        await store.put("task_1", {"a": 1})
        assert (store.base_dir / "task_1.json").exists()

    @pytest.mark.asyncio
    async def test_overwrite_leaves_no_temp_files(self, store):
        await store.put("task_1", {"v": 1})
        await store.put("task_1", {"v": 2})

        assert await store.get("task_1") == {"v": 2}
        assert [p.name for p in store.base_dir.iterdir()] == ["task_1.json"]

    @pytest.mark.asyncio
    async def test_missing_key(self, store):
        assert await store.get("nothing") is None
        assert await store.keys() == []
        assert not await store.delete("nothing")

    @pytest.mark.asyncio
    async def test_keys_and_delete(self, store):
        await store.put("b", {})
        await store.put("a", {})

        assert await store.keys() == ["a", "b"]
        assert await store.delete("a")
        assert await store.keys() == ["b"]

    @pytest.mark.asyncio
    async def test_corrupt_file_reads_as_missing(self, store):
        await store.init()
        (store.base_dir / "broken.json").write_text("{not json", encoding="utf-8")
        assert await store.get("broken") is None

    @pytest.mark.asyncio
    async def test_unserializable_value(self, store):
        with pytest.raises(StatePersistenceError):
            await store.put("task_1", {"value": object()})
        assert await store.get("task_1") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["../escape", "a/b", "", "spaced key"])
    async def test_invalid_keys(self, store, key):
        with pytest.raises(ValueError):
            await store.put(key, {})
