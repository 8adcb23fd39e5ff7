import json

import pytest

from media_search.client import mirror as mirror_module
from media_search.client.mirror import (
    ClientCursorMirror,
    FileMirrorStorage,
    InMemoryMirrorStorage,
    MirrorStorage,
    MirrorStorageError,
)

SIGNATURE = "sunset:all"
STORAGE_KEY = "media-search:cursor:sunset:all"


class BrokenStorage(MirrorStorage):
    """Storage that fails every operation, like a full or disabled disk."""

    async def get_item(self, key):
        raise MirrorStorageError("storage disabled")

    async def set_item(self, key, value):
        raise OSError("No space left on device")

    async def remove_item(self, key):
        raise MirrorStorageError("storage disabled")


@pytest.fixture
def storage():
    return InMemoryMirrorStorage()


@pytest.fixture
def mirror(storage, clock):
    return ClientCursorMirror(storage=storage, ttl_seconds=240, clock=clock)


@pytest.mark.unit
class TestClientCursorMirror:
    @pytest.mark.asyncio
    async def test_entry_is_stored_under_a_namespaced_key(
        self, mirror, storage, clock
    ):
        await mirror.save(SIGNATURE, "pit-1", [3.2, 11], page=1)

        stored = json.loads(storage.items[STORAGE_KEY])
        assert stored == {
            "cursorId": "pit-1",
            "continuationKey": [3.2, 11],
            "timestamp": clock.now,
            "page": 1,
        }

    @pytest.mark.asyncio
    async def test_load_respects_the_ttl(self, mirror, clock):
        await mirror.save(SIGNATURE, "pit-1", [3.2, 11])

        clock.advance(239)
        entry = await mirror.load(SIGNATURE)
        assert entry.cursor_id == "pit-1"
        assert entry.continuation_key == [3.2, 11]

        clock.advance(2)
        assert await mirror.load(SIGNATURE) is None

    @pytest.mark.asyncio
    async def test_expired_entry_is_removed(self, mirror, storage, clock):
        await mirror.save(SIGNATURE, "pit-1", None)
        clock.advance(300)

        await mirror.load(SIGNATURE)

        assert STORAGE_KEY not in storage.items

    @pytest.mark.asyncio
    async def test_advancing_the_same_cursor_keeps_its_age(self, mirror, clock):
        await mirror.save(SIGNATURE, "pit-1", [1], page=1)
        clock.advance(200)

        entry = await mirror.save(SIGNATURE, "pit-1", [2], page=2)

        assert entry.timestamp == clock.now - 200
        assert entry.page == 2
        clock.advance(41)
        assert await mirror.load(SIGNATURE) is None

    @pytest.mark.asyncio
    async def test_new_cursor_or_overwrite_restarts_the_age(self, mirror, clock):
        await mirror.save(SIGNATURE, "pit-1", [1])
        clock.advance(200)

        replaced = await mirror.save(SIGNATURE, "pit-2", [1])
        assert replaced.timestamp == clock.now

        clock.advance(100)
        overwritten = await mirror.save(SIGNATURE, "pit-2", [1], overwrite=True)
        assert overwritten.timestamp == clock.now

    @pytest.mark.asyncio
    async def test_switch_clears_the_previous_signature(self, mirror, storage):
        await mirror.switch(SIGNATURE)
        await mirror.save(SIGNATURE, "pit-1", [1])
        await mirror.save("harbour:all", "pit-2", [5])

        entry = await mirror.switch("harbour:all")

        assert entry.cursor_id == "pit-2"
        assert STORAGE_KEY not in storage.items
        assert mirror.current_signature == "harbour:all"

    @pytest.mark.asyncio
    async def test_switch_to_the_same_signature_keeps_the_entry(self, mirror):
        await mirror.switch(SIGNATURE)
        await mirror.save(SIGNATURE, "pit-1", [1])

        entry = await mirror.switch(SIGNATURE)

        assert entry.cursor_id == "pit-1"

    @pytest.mark.asyncio
    async def test_clear(self, mirror):
        await mirror.save(SIGNATURE, "pit-1", [1])

        await mirror.clear(SIGNATURE)

        assert await mirror.load(SIGNATURE) is None

    @pytest.mark.asyncio
    async def test_unreadable_entry_is_a_miss(self, mirror, storage):
        storage.items[STORAGE_KEY] = "{not json"

        assert await mirror.load(SIGNATURE) is None
        assert STORAGE_KEY not in storage.items

    @pytest.mark.asyncio
    async def test_storage_failures_degrade_to_a_miss(self, clock):
        mirror = ClientCursorMirror(storage=BrokenStorage(), clock=clock)

        entry = await mirror.save(SIGNATURE, "pit-1", [1])

        assert entry.cursor_id == "pit-1"
        assert await mirror.load(SIGNATURE) is None
        await mirror.clear(SIGNATURE)
        assert await mirror.switch("harbour:all") is None


@pytest.mark.unit
class TestFileMirrorStorage:
    @pytest.mark.asyncio
    async def test_entries_survive_a_new_instance(self, tmp_path, clock):
        path = tmp_path / "state" / "cursors.json"
        await ClientCursorMirror(FileMirrorStorage(path), clock=clock).save(
            SIGNATURE, "pit-1", [7], page=3
        )

        entry = await ClientCursorMirror(FileMirrorStorage(path), clock=clock).load(
            SIGNATURE
        )

        assert entry.cursor_id == "pit-1"
        assert entry.page == 3

    @pytest.mark.asyncio
    async def test_remove_item(self, tmp_path):
        storage = FileMirrorStorage(tmp_path / "cursors.json")
        await storage.set_item("a", "1")
        await storage.set_item("b", "2")

        await storage.remove_item("a")
        await storage.remove_item("missing")

        assert await storage.get_item("a") is None
        assert await storage.get_item("b") == "2"

    @pytest.mark.asyncio
    async def test_disk_access_runs_in_the_threadpool(self, tmp_path, monkeypatch):
        # Given a threadpool runner that records what it is handed
        offloaded = []

        async def recording_run_in_threadpool(func, *args, **kwargs):
            offloaded.append(func)
            return func(*args, **kwargs)

        monkeypatch.setattr(
            mirror_module, "run_in_threadpool", recording_run_in_threadpool
        )
        storage = FileMirrorStorage(tmp_path / "cursors.json")

        # When every operation is used once
        await storage.set_item("a", "1")
        value = await storage.get_item("a")
        await storage.remove_item("a")

        # Then each one went through the threadpool
        assert value == "1"
        assert len(offloaded) == 3

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_storage_error(self, tmp_path):
        path = tmp_path / "cursors.json"
        path.write_text("[1, 2")

        with pytest.raises(MirrorStorageError):
            await FileMirrorStorage(path).get_item("a")

    @pytest.mark.asyncio
    async def test_mirror_over_a_corrupt_file_is_a_miss(self, tmp_path, clock):
        path = tmp_path / "cursors.json"
        path.write_text("[]")

        mirror = ClientCursorMirror(FileMirrorStorage(path), clock=clock)

        assert await mirror.load(SIGNATURE) is None
