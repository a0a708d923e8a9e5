"""
Core data models for the broadcast queue.
These are the universal types shared across all modules.

The BroadcastJob model doubles as the checkpoint format: it is written to
disk with model_dump_json() and read back with model_validate_json().
"""
from __future__ import annotations

import math
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    """Time-derived job token (epoch milliseconds)."""
    return str(int(time.time() * 1000))


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class AudienceKind(str, Enum):
    MANAGED_LIST = "managed_list"
    SERVER_MEMBERS = "server_members"


TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.CANCELLED, JobStatus.FAILED}


# ──────────────────────────────────────────────────────────────
#  Recipients & context
# ──────────────────────────────────────────────────────────────

class RecipientSnapshot(BaseModel):
    """A recipient as captured when the broadcast started."""
    id: str
    display_name: str = ""
    tag: str = ""


class BroadcastContext(BaseModel):
    """The group (guild) a broadcast is sent on behalf of."""
    id: str
    name: str = ""


class RecipientHandle(BaseModel):
    """A live, resolved recipient the delivery sink can send to."""
    id: str
    username: str = ""
    tag: str = ""
    mention: str = ""

    def model_post_init(self, __context: Any) -> None:
        if not self.mention:
            self.mention = f"<@{self.id}>"


class FailedEntry(BaseModel):
    recipient_tag: str
    reason: str


# ──────────────────────────────────────────────────────────────
#  Job — the one active broadcast
# ──────────────────────────────────────────────────────────────

class BroadcastJob(BaseModel):
    """
    One broadcast run: recipients + template + progress.

    current_index is the cursor of the recipient being (or last) processed.
    It only ever moves forward, which is what makes resuming after a crash
    safe.
    """
    id: str = Field(default_factory=new_job_id)
    recipients: list[RecipientSnapshot] = []
    message_template: str
    context_id: str
    context_name: str = ""
    audience_kind: AudienceKind = AudienceKind.MANAGED_LIST
    pacing: str = "safe"
    current_index: int = 0
    success_count: int = 0
    failed_count: int = 0
    failed_entries: list[FailedEntry] = []
    status: JobStatus = JobStatus.RUNNING
    start_time: datetime = Field(default_factory=_utcnow)
    end_time: Optional[datetime] = None
    estimated_duration_minutes: int = 0
    actual_duration_minutes: Optional[int] = None
    error: Optional[str] = None

    @property
    def total(self) -> int:
        return len(self.recipients)

    @property
    def processed_count(self) -> int:
        return self.success_count + self.failed_count

    @property
    def progress(self) -> int:
        if not self.recipients:
            return 0
        return round(self.current_index / len(self.recipients) * 100)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def resume_index(self) -> int:
        """
        Index to continue from after an interrupted run.

        When the counters show current_index was already resolved before
        the checkpoint was written, continue with the next recipient;
        otherwise current_index was still in flight and is sent again.
        """
        if self.recipients and self.processed_count >= self.current_index + 1:
            return self.current_index + 1
        return self.current_index

    def record_failure(self, tag: str, reason: str) -> None:
        self.failed_count += 1
        self.failed_entries.append(FailedEntry(recipient_tag=tag, reason=reason))

    def finish(self, status: JobStatus) -> None:
        self.status = status
        self.end_time = _utcnow()
        elapsed = (self.end_time - self.start_time).total_seconds()
        self.actual_duration_minutes = max(0, round(elapsed / 60))


# ──────────────────────────────────────────────────────────────
#  Read models returned to callers
# ──────────────────────────────────────────────────────────────

class ProgressSnapshot(BaseModel):
    current_index: int
    total: int
    success_count: int
    failed_count: int
    progress: int = 0


class BroadcastStats(BaseModel):
    """Final statistics handed to the completion callback."""
    job_id: str
    status: JobStatus
    total_recipients: int
    success_count: int
    failed_count: int
    failed_entries: list[FailedEntry] = []
    actual_duration_minutes: Optional[int] = None


class StatusSnapshot(BaseModel):
    status: str = "idle"
    job_id: Optional[str] = None
    progress: int = 0
    current_index: int = 0
    total_recipients: int = 0
    success_count: int = 0
    failed_count: int = 0
    is_running: bool = False
    is_paused: bool = False
    estimated_duration_minutes: Optional[int] = None
    actual_duration_minutes: Optional[int] = None

    @property
    def is_idle(self) -> bool:
        return self.status == "idle"


class BroadcastStarted(BaseModel):
    job_id: str
    recipient_count: int
    estimated_duration_minutes: int
    audience: AudienceKind


class BroadcastPreview(BaseModel):
    recipient_count: int
    estimated_duration_minutes: int
    audience: AudienceKind
    message_preview: str


def estimate_minutes(recipient_count: int, average_delay_ms: float) -> int:
    """ceil(recipients × average delay) expressed in minutes."""
    return math.ceil(recipient_count * average_delay_ms / 60000)
