"""Storage backend factory — backend selection and initialization.

Backend selection:
  1. config.storage.backend == "memory" → MemoryStorage
  2. Otherwise                          → SQLiteStorage (default)

SQLiteStorage path:
  Default: config.storage.path (~/.xray/storage.db)
  Override: XRAY_STORAGE_PATH environment variable
"""

from __future__ import annotations

import os

from xray.config import Config
from xray.storage.protocol import MemoryStorage, StorageBackend
from xray.storage.sqlite_backend import SQLiteStorage
from xray.utils.logger import get_logger

logger = get_logger(__name__)

_ENV_STORAGE_PATH = "XRAY_STORAGE_PATH"


async def create_storage_backend(config: Config) -> StorageBackend:
    """Create and initialize the configured storage backend.

    Raises:
      RuntimeError: If SQLiteStorage.initialize() finds PRAGMA user_version
                    incompatible with the expected schema.
                    Propagated to the FastAPI lifespan → startup refused.
    """
    backend: StorageBackend
    if config.storage.backend == "memory":
        backend = MemoryStorage()
    else:
        db_path = os.getenv(_ENV_STORAGE_PATH, config.storage.path)
        backend = SQLiteStorage(db_path=db_path)

    await backend.initialize()

    logger.info(
        "storage_backend_selected",
        backend=type(backend).__name__,
        path=backend.path,
    )
    return backend
