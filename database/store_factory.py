"""
Store Factory — Create the right checkpoint backend from configuration.

Configuration in settings.yaml:
    storage:
      # Checkpoint backend — where the active job lives
      #   "file"     — JSON file on disk (default; survives restarts)
      #   "memory"   — In-memory (development, testing)
      backend: "file"

      # For file backend: directory path
      data_dir: "./data"

Usage:
    from database.store_factory import create_checkpoint_store
    store = create_checkpoint_store(settings.storage)
"""
from __future__ import annotations

import structlog

from config.settings import StorageConfig
from database.store_base import BaseCheckpointStore

logger = structlog.get_logger()


def create_checkpoint_store(config: StorageConfig = None) -> BaseCheckpointStore:
    config = config or StorageConfig()

    if config.backend == "memory":
        from database.store_memory import InMemoryCheckpointStore
        logger.info("store_created", backend="memory")
        return InMemoryCheckpointStore()

    from database.store_file import FileCheckpointStore
    logger.info("store_created", backend="file", data_dir=config.data_dir)
    return FileCheckpointStore(data_dir=config.data_dir)
