import json

import pytest

from core.errors import PersistenceError
from services.record_cache import TTLCache
from services.storage import InMemoryStore, JsonFileStore


@pytest.mark.asyncio
async def test_in_memory_store_quota():
    store = InMemoryStore(quota_bytes=20)
    await store.set("a", "x" * 10)
    await store.set("a", "y" * 20)
    with pytest.raises(PersistenceError, match="quota"):
        await store.set("b", "z")
    assert await store.get("a") == "y" * 20
    await store.delete("a")
    assert await store.get("a") is None


@pytest.mark.asyncio
async def test_json_file_store_round_trip(tmp_path):
    path = tmp_path / "data" / "records.json"
    store = JsonFileStore(str(path), backup_dir=None)

    assert await store.get("key") is None
    await store.set("key", '{"courses": []}')
    await store.set("other", "value")

    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert on_disk == {"key": '{"courses": []}', "other": "value"}

    await store.delete("key")
    assert await store.get("key") is None
    assert await store.get("other") == "value"


@pytest.mark.asyncio
async def test_json_file_store_rotates_backups(tmp_path):
    path = tmp_path / "records.json"
    backups = tmp_path / "backups"
    store = JsonFileStore(str(path), backup_dir=str(backups), max_backups=2)

    for i in range(5):
        await store.set("key", str(i))

    assert len(list(backups.glob("records_backup_*.json"))) == 2
    assert await store.get("key") == "4"


@pytest.mark.asyncio
async def test_json_file_store_reports_corrupt_file(tmp_path):
    path = tmp_path / "records.json"
    path.write_text("{broken", encoding="utf-8")
    store = JsonFileStore(str(path), backup_dir=None)

    with pytest.raises(PersistenceError):
        await store.get("key")

    # a write replaces the unreadable file
    await store.set("key", "fresh")
    assert await store.get("key") == "fresh"


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_ttl_cache_expires_lazily():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=300, clock=clock)
    cache.set("courses", ["a"])

    clock.now += 299
    assert cache.get("courses") == ["a"]
    assert len(cache) == 1

    clock.now += 1
    assert len(cache) == 1
    assert cache.get("courses") is None
    assert len(cache) == 0


def test_ttl_cache_clear():
    cache = TTLCache()
    cache.set("a", 1)
    cache.set("b", 2)
    assert "a" in cache
    cache.clear()
    assert len(cache) == 0
    assert "a" not in cache
