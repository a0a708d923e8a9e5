"""
FileCheckpointStore — JSON file-backed checkpoint with persistence across restarts.

Data layout:
  {data_dir}/
    broadcast-state.json            current / last job
    broadcast-results-{job_id}.json archived results, one per finished job

Features:
  - Survives process restarts (crash recovery reads broadcast-state.json)
  - Atomic writes: temp file + rename
  - A lock serializes read-modify-write between the processing loop and
    control operations running on another thread
  - Corrupt or schema-incompatible state is treated as "no job"
"""
from __future__ import annotations

import threading
import structlog
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from database.store_base import BaseCheckpointStore
from models.schemas import BroadcastJob

logger = structlog.get_logger()

STATE_FILE = "broadcast-state.json"


class FileCheckpointStore(BaseCheckpointStore):

    def __init__(self, data_dir: str = "./data"):
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        logger.info("checkpoint_store_initialized", data_dir=str(self._data_dir))

    @property
    def state_path(self) -> Path:
        return self._data_dir / STATE_FILE

    def archive_path(self, job_id: str) -> Path:
        return self._data_dir / f"broadcast-results-{job_id}.json"

    # ── Load / Save ───────────────────────────────────────

    def _read(self, path: Path) -> Optional[BroadcastJob]:
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return BroadcastJob.model_validate_json(f.read())
        except (OSError, ValueError, ValidationError) as e:
            logger.warning("checkpoint_load_error", path=str(path), error=str(e))
            return None

    def _write(self, path: Path, job: BroadcastJob) -> None:
        tmp_path = path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(job.model_dump_json(indent=2))
        tmp_path.replace(path)  # atomic on POSIX

    def load(self) -> Optional[BroadcastJob]:
        with self._lock:
            job = self._read(self.state_path)
        if job:
            logger.info("checkpoint_loaded", job_id=job.id, status=job.status.value)
        return job

    def save(self, job: BroadcastJob) -> None:
        with self._lock:
            self._write(self.state_path, job)

    def clear(self) -> None:
        with self._lock:
            self.state_path.unlink(missing_ok=True)

    def archive(self, job: BroadcastJob) -> Optional[str]:
        path = self.archive_path(job.id)
        with self._lock:
            self._write(path, job)
        logger.info("broadcast_results_archived", job_id=job.id, path=str(path))
        return str(path)

    def load_archive(self, job_id: str) -> Optional[BroadcastJob]:
        with self._lock:
            return self._read(self.archive_path(job_id))

