"""
Database layer — checkpoint persistence for the broadcast queue.

Backends:
  - File (JSON file on disk, survives restarts)
  - In-memory (dict-based, for development/testing)

Quick start:
  from database import create_checkpoint_store
  store = create_checkpoint_store(StorageConfig(backend="file", data_dir="./data"))
  job = store.load()
"""
from database.store_base import BaseCheckpointStore
from database.store_memory import InMemoryCheckpointStore
from database.store_file import FileCheckpointStore
from database.store_factory import create_checkpoint_store

__all__ = [
    "BaseCheckpointStore",
    "InMemoryCheckpointStore", "FileCheckpointStore",
    "create_checkpoint_store",
]
