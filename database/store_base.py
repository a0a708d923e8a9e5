"""
Abstract Checkpoint Store — Interface for all job persistence backends.

Implementations:
  - FileCheckpointStore     (JSON file on disk, single-process, durable)
  - InMemoryCheckpointStore (dict-based, no persistence across restarts)

A store holds exactly one record: the current (or last) broadcast job.
Absence of a record means the queue is idle. Methods are synchronous so
control operations can persist before they return.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from models.schemas import BroadcastJob


class BaseCheckpointStore(ABC):
    """Interface that all checkpoint backends must implement."""

    @abstractmethod
    def load(self) -> Optional[BroadcastJob]:
        """Return the persisted job, or None when idle or unreadable."""
        ...

    @abstractmethod
    def save(self, job: BroadcastJob) -> None:
        """Overwrite the checkpoint with this job."""
        ...

    @abstractmethod
    def clear(self) -> None:
        """Remove the checkpoint."""
        ...

    @abstractmethod
    def archive(self, job: BroadcastJob) -> Optional[str]:
        """Write the job's final results for audit; returns a locator."""
        ...

    @abstractmethod
    def load_archive(self, job_id: str) -> Optional[BroadcastJob]:
        ...
