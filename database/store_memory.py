"""
InMemoryCheckpointStore — dict-backed checkpoint for development and testing.

Jobs are kept in their serialized JSON form so reads hand back a fresh
copy, exactly like reading the file store back from disk.
All data is lost on process restart.
"""
from __future__ import annotations

import threading
import structlog
from typing import Optional

from database.store_base import BaseCheckpointStore
from models.schemas import BroadcastJob

logger = structlog.get_logger()


class InMemoryCheckpointStore(BaseCheckpointStore):

    def __init__(self):
        self._state: Optional[str] = None
        self._archives: dict[str, str] = {}
        self._lock = threading.Lock()
        self.save_count = 0

    def load(self) -> Optional[BroadcastJob]:
        with self._lock:
            raw = self._state
        return BroadcastJob.model_validate_json(raw) if raw else None

    def save(self, job: BroadcastJob) -> None:
        with self._lock:
            self._state = job.model_dump_json()
            self.save_count += 1

    def clear(self) -> None:
        with self._lock:
            self._state = None

    def archive(self, job: BroadcastJob) -> Optional[str]:
        with self._lock:
            self._archives[job.id] = job.model_dump_json()
        return f"memory://broadcast-results-{job.id}"

    def load_archive(self, job_id: str) -> Optional[BroadcastJob]:
        with self._lock:
            raw = self._archives.get(job_id)
        return BroadcastJob.model_validate_json(raw) if raw else None
