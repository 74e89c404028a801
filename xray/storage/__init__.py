"""Analytics X-Ray storage package.

Re-exports the public API for ergonomic imports:

    from xray.storage import StorageBackend, SQLiteStorage, encode_state

Layout:
    protocol.py       — StorageBackend Protocol + MemoryStorage
    sqlite_backend.py — SQLiteStorage (aiosqlite, WAL mode, PRAGMA version guard)
    state.py          — persisted allowlist document codec
    factory.py        — create_storage_backend() — backend selection
"""

from xray.storage.protocol import MemoryStorage, StorageBackend
from xray.storage.sqlite_backend import SQLiteStorage
from xray.storage.state import StateDecodeError, decode_state, encode_state

__all__ = [
    # Protocol + implementations
    "StorageBackend",
    "MemoryStorage",
    "SQLiteStorage",
    # Persisted document
    "StateDecodeError",
    "decode_state",
    "encode_state",
]
