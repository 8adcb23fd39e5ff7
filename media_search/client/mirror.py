from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import Field, ValidationError
from starlette.concurrency import run_in_threadpool

from media_search.domain.entities.cursors import ContinuationKey
from media_search.utils.logging import make_logger
from media_search.utils.model_utils import CamelModel
from media_search.utils.timestamp import Clock, timestamp

logger = make_logger(__name__)

STORAGE_NAMESPACE = "media-search:cursor"


class MirrorStorageError(Exception):
    """Raised by storage backends when persisted state cannot be read or written."""


class MirrorStorage(ABC):
    """
    String key/value persistence for mirrored cursors, in the manner of a
    browser's localStorage.
    """

    @abstractmethod
    async def get_item(self, key: str) -> str | None:
        pass

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        pass


class InMemoryMirrorStorage(MirrorStorage):
    def __init__(self):
        self.items: dict[str, str] = {}

    async def get_item(self, key: str) -> str | None:
        return self.items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    async def remove_item(self, key: str) -> None:
        self.items.pop(key, None)


class FileMirrorStorage(MirrorStorage):
    """
    Keeps all entries in one JSON object on disk so that a restarted client
    can resume its walk. Writes go through a temp file and an atomic rename.
    Disk access runs in the threadpool so the event loop is never blocked.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _read_all(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise MirrorStorageError(f"Cannot read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise MirrorStorageError(f"Unexpected content in {self.path}")
        return data

    def _write_all(self, data: dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}."
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise MirrorStorageError(f"Cannot write {self.path}: {e}") from e

    async def get_item(self, key: str) -> str | None:
        data = await run_in_threadpool(self._read_all)
        return data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        def _set():
            data = self._read_all()
            data[key] = value
            self._write_all(data)

        await run_in_threadpool(_set)

    async def remove_item(self, key: str) -> None:
        def _remove():
            data = self._read_all()
            if data.pop(key, None) is not None:
                self._write_all(data)

        await run_in_threadpool(_remove)


class MirrorEntry(CamelModel):
    cursor_id: str = Field(..., description="Cursor id last issued by the server")
    continuation_key: ContinuationKey | None = Field(
        None, description="Continuation key of the last page received"
    )
    timestamp: float = Field(..., description="Epoch seconds the cursor was first seen")
    page: int = Field(1, description="Page number of the last page received")


class ClientCursorMirror:
    """
    Client-side copy of the server's cursor for each query signature.

    Entries expire on the client's own clock with the same margin the server
    uses. Storage failures never fail a fetch: they are logged and treated as
    a miss.
    """

    def __init__(
        self,
        storage: MirrorStorage | None = None,
        ttl_seconds: int = 240,
        clock: Clock = timestamp,
    ):
        self.storage = storage if storage is not None else InMemoryMirrorStorage()
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self.current_signature: str | None = None

    @staticmethod
    def storage_key(signature: str) -> str:
        return f"{STORAGE_NAMESPACE}:{signature}"

    async def _read(self, signature: str) -> MirrorEntry | None:
        try:
            raw = await self.storage.get_item(self.storage_key(signature))
        except (MirrorStorageError, OSError) as e:
            logger.warning(f"Cursor mirror unavailable, continuing without it: {e}")
            return None
        if raw is None:
            return None
        try:
            return MirrorEntry.from_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable cursor mirror entry: {e}")
            await self.clear(signature)
            return None

    async def load(self, signature: str) -> MirrorEntry | None:
        entry = await self._read(signature)
        if entry is None:
            return None
        if self._clock() - entry.timestamp >= self.ttl_seconds:
            logger.debug(f"Mirrored cursor for '{signature}' expired")
            await self.clear(signature)
            return None
        return entry

    async def save(
        self,
        signature: str,
        cursor_id: str,
        continuation_key: ContinuationKey | None,
        page: int = 1,
        overwrite: bool = False,
    ) -> MirrorEntry:
        """
        Store the cursor position for ``signature``.

        Advancing within the same cursor keeps the original timestamp so the
        entry ages from when the cursor was first seen. A new cursor, or
        ``overwrite=True``, starts a new timestamp.
        """
        created_at = self._clock()
        if not overwrite:
            existing = await self._read(signature)
            if existing is not None and existing.cursor_id == cursor_id:
                created_at = existing.timestamp

        entry = MirrorEntry(
            cursor_id=cursor_id,
            continuation_key=continuation_key,
            timestamp=created_at,
            page=page,
        )
        try:
            await self.storage.set_item(
                self.storage_key(signature), entry.to_json(by_alias=True)
            )
        except (MirrorStorageError, OSError) as e:
            logger.warning(f"Could not persist cursor mirror for '{signature}': {e}")
        return entry

    async def clear(self, signature: str) -> None:
        try:
            await self.storage.remove_item(self.storage_key(signature))
        except (MirrorStorageError, OSError) as e:
            logger.warning(f"Could not clear cursor mirror for '{signature}': {e}")

    async def switch(self, signature: str) -> MirrorEntry | None:
        """
        Make ``signature`` the active walk.

        The previous signature's entry is cleared (an abandoned walk is not
        resumable) and the new signature's entry, if still live, is returned.
        """
        previous = self.current_signature
        if previous is not None and previous != signature:
            await self.clear(previous)
        self.current_signature = signature
        return await self.load(signature)
