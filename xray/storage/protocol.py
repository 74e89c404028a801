"""StorageBackend Protocol + MemoryStorage.

The storage area is a flat string key/value store, the same shape as a
browser extension's local storage: values are opaque strings (JSON documents
in practice) addressed by a logical key.

Layout:
    protocol.py       — StorageBackend Protocol + MemoryStorage
    sqlite_backend.py — SQLiteStorage (aiosqlite, WAL mode, PRAGMA version guard)
    state.py          — encode/decode of the persisted allowlist document
    factory.py        — create_storage_backend() — backend selection by config/env
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from xray.utils.logger import get_logger

logger = get_logger(__name__)


# ─── StorageBackend Protocol ──────────────────────────────────────────────────


@runtime_checkable
class StorageBackend(Protocol):
    """Pluggable storage area interface.

    Implementations: SQLiteStorage (default), MemoryStorage.
    Selection via create_storage_backend() factory (storage/factory.py).

    Error contract:
        get_item()              — never raises; read failures return None.
        set_item(), remove_item() — log and re-raise. Callers that persist
                                    fire-and-forget must catch.
    """

    @property
    def path(self) -> Optional[str]:
        """Filesystem path backing the store, or None if not file-backed."""
        ...

    async def initialize(self) -> None:
        """Open connections / create schema. Idempotent."""
        ...

    async def get_item(self, key: str) -> Optional[str]:
        """Return the stored string for ``key`` or None if absent/unreadable."""
        ...

    async def set_item(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        ...

    async def remove_item(self, key: str) -> None:
        """Delete ``key``. Removing an absent key is not an error."""
        ...

    async def health_check(self) -> bool:
        """Returns True if the backend is operational. Must not raise."""
        ...

    async def close(self) -> None:
        """Release connections. Called during graceful shutdown."""
        ...


# ─── MemoryStorage ────────────────────────────────────────────────────────────


class MemoryStorage:
    """In-process StorageBackend backed by a dict.

    Used for ``storage.backend: memory`` (nothing survives a restart) and as
    a test utility. Not file-backed, so the change watcher is disabled.
    """

    def __init__(self, items: Optional[dict[str, str]] = None) -> None:
        self._items: dict[str, str] = dict(items or {})

    @property
    def path(self) -> Optional[str]:
        return None

    async def initialize(self) -> None:
        logger.debug("MemoryStorage initialized", keys=len(self._items))

    async def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        logger.debug("MemoryStorage closed")


# ─── Protocol compliance assertion ────────────────────────────────────────────
# MemoryStorage must satisfy StorageBackend protocol.
# This assertion runs at import time and catches protocol drift immediately.
assert isinstance(MemoryStorage(), StorageBackend), (
    "MemoryStorage does not satisfy StorageBackend protocol: implementation error"
)
