"""
Broadcast Queue — durable, rate-governed one-message-per-recipient dispatch.

Lifecycle:
  idle ──start_broadcast──▶ running ──▶ completed
                             │  ▲   ╲
                       pause │  │ resume ──▶ failed (fault in the loop)
                             ▼  │     ╲
                            paused ────▶ cancelled

One job at a time. The job record is checkpointed through a
BaseCheckpointStore every `checkpoint_interval` recipients and on every
state transition; on startup resume_interrupted() picks up a job whose
checkpoint still says "running" (the previous process died mid-job).

The processing loop runs as an asyncio task so the caller returns
immediately. Suspension points (pause, pacing delay, retry backoff) are
all awaits; pause/resume use an asyncio.Event rather than polling.
"""
from __future__ import annotations

import asyncio
import inspect
import structlog
from typing import Any, Awaitable, Callable, Optional, Union

from channels.base import DeliverySink, PermanentDeliveryError, RecipientUnreachable
from config.settings import BroadcastConfig
from database.store_base import BaseCheckpointStore
from job_queue.errors import AlreadyRunningError, NotPausedError, NotRunningError
from job_queue.pacing import Pacer
from job_queue.rendering import preview, render_message
from job_queue.retry import BackoffPolicy, SleepFn, send_with_retry
from models.schemas import (
    AudienceKind, BroadcastContext, BroadcastJob, BroadcastPreview,
    BroadcastStarted, BroadcastStats, JobStatus, ProgressSnapshot,
    RecipientSnapshot, StatusSnapshot,
)

logger = structlog.get_logger()

ProgressCallback = Callable[[ProgressSnapshot], Union[None, Awaitable[None]]]
CompletionCallback = Callable[[BroadcastStats], Union[None, Awaitable[None]]]

UNREACHABLE_REASON = "unreachable (left the server)"


class BroadcastQueue:
    """
    Owns the single active broadcast job.

    Usage:
        queue = BroadcastQueue(store, sink, settings.broadcast)
        await queue.resume_interrupted()          # on process start
        started = await queue.start_broadcast(recipients, template, context)
        queue.pause(); queue.resume(); queue.cancel()
        queue.get_status()
    """

    def __init__(
        self,
        store: BaseCheckpointStore,
        sink: DeliverySink,
        config: BroadcastConfig = None,
        sleep: SleepFn = asyncio.sleep,
        rng: Optional[Callable[[], float]] = None,
    ):
        self.store = store
        self.sink = sink
        self.config = config or BroadcastConfig()
        self._sleep = sleep
        self._rng = rng
        self.is_running = False
        self._resume_event = asyncio.Event()
        self._resume_event.set()
        self._task: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()      # every live loop, superseded ones included
        self._pacer = Pacer(self.config.get_profile(), rng)
        self.current_job: Optional[BroadcastJob] = self._load_checkpoint()

    # ── Checkpointing ─────────────────────────────────────────

    def _load_checkpoint(self) -> Optional[BroadcastJob]:
        try:
            return self.store.load()
        except Exception as e:
            logger.error("checkpoint_load_failed", error=str(e))
            return None

    def _persist(self, job: BroadcastJob) -> None:
        if job is not self.current_job:
            return   # superseded by a newer job
        try:
            self.store.save(job)
        except Exception as e:
            logger.error("checkpoint_save_failed", job_id=job.id, error=str(e))

    def _archive(self, job: BroadcastJob) -> None:
        try:
            self.store.archive(job)
        except Exception as e:
            logger.warning("results_archive_failed", job_id=job.id, error=str(e))

    # ── Flags ─────────────────────────────────────────────────

    @property
    def is_paused(self) -> bool:
        return not self._resume_event.is_set()

    def _owns(self, job: BroadcastJob) -> bool:
        """True while `job` is the active job and has not been cancelled."""
        return self.is_running and self.current_job is job

    def _pacer_for(self, pacing: str) -> Pacer:
        return Pacer(self.config.get_profile(pacing), self._rng)

    def _backoff_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            max_retries=self.config.max_retries,
            base_delay_ms=self._pacer.profile.base_delay_ms,
            multiplier=self.config.backoff_multiplier,
            max_backoff_ms=self.config.max_backoff_ms,
        )

    # ── Start ─────────────────────────────────────────────────

    async def start_broadcast(
        self,
        recipients: list[RecipientSnapshot],
        template: str,
        context: BroadcastContext,
        audience: AudienceKind = AudienceKind.MANAGED_LIST,
        pacing: Optional[str] = None,
        dry_run: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[CompletionCallback] = None,
    ) -> Union[BroadcastStarted, BroadcastPreview]:
        if self.is_running:
            raise AlreadyRunningError()

        pacing = pacing or self.config.default_pacing
        pacer = self._pacer_for(pacing)
        estimated = pacer.estimate_minutes(len(recipients))

        if dry_run:
            return BroadcastPreview(
                recipient_count=len(recipients),
                estimated_duration_minutes=estimated,
                audience=audience,
                message_preview=preview(template, self.config.preview_length),
            )

        job = BroadcastJob(
            recipients=list(recipients),
            message_template=template,
            context_id=context.id,
            context_name=context.name,
            audience_kind=audience,
            pacing=pacing,
            estimated_duration_minutes=estimated,
        )
        self.current_job = job
        self._pacer = pacer
        self._persist(job)
        self.is_running = True
        self._resume_event.set()

        logger.info("broadcast_started",
                    job_id=job.id,
                    recipients=job.total,
                    audience=audience.value,
                    pacing=pacing,
                    estimated_minutes=estimated,
                    context=context.name)

        self._launch(job, context, 0, on_progress, on_complete)
        return BroadcastStarted(
            job_id=job.id,
            recipient_count=job.total,
            estimated_duration_minutes=estimated,
            audience=audience,
        )

    def _launch(
        self,
        job: BroadcastJob,
        context: BroadcastContext,
        start_index: int,
        on_progress: Optional[ProgressCallback],
        on_complete: Optional[CompletionCallback],
    ) -> None:
        self._task = asyncio.create_task(
            self._run(job, context, start_index, on_progress, on_complete),
            name=f"broadcast-{job.id}",
        )
        self._task.add_done_callback(self._on_task_done)
        self._tasks.add(self._task)
        self._task.add_done_callback(self._tasks.discard)

    @staticmethod
    def _on_task_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("broadcast_task_failed",
                         task=task.get_name(),
                         error=str(exc),
                         exc_info=exc)

    # ── Processing loop ───────────────────────────────────────

    async def _run(
        self,
        job: BroadcastJob,
        context: BroadcastContext,
        start_index: int,
        on_progress: Optional[ProgressCallback],
        on_complete: Optional[CompletionCallback],
    ) -> None:
        try:
            await self._process(job, context, start_index, on_progress, on_complete)
        except asyncio.CancelledError:
            # Shutdown: keep status "running" so the next process resumes it.
            if self.current_job is job:
                self._persist(job)
                self.is_running = False
            logger.info("broadcast_loop_interrupted", job_id=job.id, index=job.current_index)
            raise
        except Exception as e:
            if self.current_job is job:
                job.finish(JobStatus.FAILED)
                job.error = str(e)
                self._persist(job)
                self.is_running = False
            logger.error("broadcast_failed", job_id=job.id, index=job.current_index, error=str(e))
            raise

    async def _process(
        self,
        job: BroadcastJob,
        context: BroadcastContext,
        start_index: int,
        on_progress: Optional[ProgressCallback],
        on_complete: Optional[CompletionCallback],
    ) -> None:
        total = job.total
        pacer = self._pacer
        policy = self._backoff_policy()

        for i in range(start_index, total):
            if self.is_running and self.current_job is job:
                await self._resume_event.wait()

            if not self._owns(job):
                self._persist(job)
                logger.info("broadcast_loop_stopped", job_id=job.id, index=job.current_index)
                return

            job.current_index = i
            attempted = await self._process_recipient(job, job.recipients[i], context, policy)
            last = i == total - 1

            if i % self.config.checkpoint_interval == 0 or last:
                self._persist(job)
            if on_progress and i % self.config.progress_interval == 0:
                await self._notify(on_progress, self._progress(job), "progress")

            if attempted and not last:
                await self._sleep(pacer.next_delay_s())

        if not self._owns(job):
            # Cancelled while the last recipient was in flight.
            self._persist(job)
            return

        job.finish(JobStatus.COMPLETED)
        self._persist(job)
        self._archive(job)
        self.is_running = False
        self._resume_event.set()

        logger.info("broadcast_completed",
                    job_id=job.id,
                    success=job.success_count,
                    failed=job.failed_count,
                    total=total,
                    actual_minutes=job.actual_duration_minutes)

        if on_complete:
            await self._notify(on_complete, self._stats(job), "completion")

    async def _process_recipient(
        self,
        job: BroadcastJob,
        recipient: RecipientSnapshot,
        context: BroadcastContext,
        policy: BackoffPolicy,
    ) -> bool:
        """Resolve, render and deliver. Returns True when the pacing delay applies."""
        try:
            handle = await self._resolve(recipient, context)
        except RecipientUnreachable:
            job.record_failure(recipient.tag, UNREACHABLE_REASON)
            logger.warning("recipient_unreachable", job_id=job.id, recipient=recipient.tag)
            return False
        except Exception as e:
            job.record_failure(recipient.tag, str(e))
            logger.warning("recipient_resolve_failed", job_id=job.id, recipient=recipient.tag, error=str(e))
            return True

        try:
            text = render_message(self.config.message_header + job.message_template, handle, context.name)
            await send_with_retry(self.sink, handle, text, policy, sleep=self._sleep)
            job.success_count += 1
        except Exception as e:
            job.record_failure(recipient.tag, str(e))
            logger.warning("recipient_failed", job_id=job.id, recipient=recipient.tag, error=str(e))
        return True

    async def _resolve(self, recipient: RecipientSnapshot, context: BroadcastContext):
        handle = await self.sink.resolve(recipient.id, context)
        if handle is None:
            raise RecipientUnreachable(recipient.id, self.sink.channel)
        return handle

    @staticmethod
    async def _notify(callback: Callable[[Any], Any], payload: Any, kind: str) -> None:
        try:
            result = callback(payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning("broadcast_callback_failed", kind=kind, error=str(e))

    # ── Read models ───────────────────────────────────────────

    @staticmethod
    def _progress(job: BroadcastJob) -> ProgressSnapshot:
        return ProgressSnapshot(
            current_index=job.current_index,
            total=job.total,
            success_count=job.success_count,
            failed_count=job.failed_count,
            progress=job.progress,
        )

    @staticmethod
    def _stats(job: BroadcastJob) -> BroadcastStats:
        return BroadcastStats(
            job_id=job.id,
            status=job.status,
            total_recipients=job.total,
            success_count=job.success_count,
            failed_count=job.failed_count,
            failed_entries=list(job.failed_entries),
            actual_duration_minutes=job.actual_duration_minutes,
        )

    def get_status(self) -> StatusSnapshot:
        job = self.current_job
        if job is None:
            return StatusSnapshot()
        return StatusSnapshot(
            status=job.status.value,
            job_id=job.id,
            progress=job.progress,
            current_index=job.current_index,
            total_recipients=job.total,
            success_count=job.success_count,
            failed_count=job.failed_count,
            is_running=self.is_running,
            is_paused=self.is_running and self.is_paused,
            estimated_duration_minutes=job.estimated_duration_minutes,
            actual_duration_minutes=job.actual_duration_minutes,
        )

    def final_stats(self) -> Optional[BroadcastStats]:
        return self._stats(self.current_job) if self.current_job else None

    @property
    def messages_per_minute(self) -> int:
        return self._pacer.messages_per_minute

    # ── Control ───────────────────────────────────────────────

    def pause(self) -> None:
        if not self.is_running:
            raise NotRunningError("No broadcast is running to pause.")
        self._resume_event.clear()
        logger.info("broadcast_paused", job_id=self.current_job.id)

    def resume(self) -> None:
        if not self.is_running:
            raise NotRunningError("No broadcast is running to resume.")
        if not self.is_paused:
            raise NotPausedError("The broadcast is already running.")
        self._resume_event.set()
        logger.info("broadcast_resumed", job_id=self.current_job.id)

    def cancel(self) -> None:
        if not self.is_running:
            raise NotRunningError("No broadcast is running to cancel.")
        self.is_running = False
        self._resume_event.set()
        job = self.current_job
        if job is not None:
            job.finish(JobStatus.CANCELLED)
            self._persist(job)
            logger.info("broadcast_cancelled", job_id=job.id, index=job.current_index)

    # ── Recovery & lifecycle ──────────────────────────────────

    async def resume_interrupted(self, on_complete: Optional[CompletionCallback] = None) -> bool:
        """Relaunch a job whose checkpoint says it was still running."""
        job = self.current_job
        if job is None or job.status != JobStatus.RUNNING or self.is_running:
            return False

        logger.info("resuming_interrupted_broadcast", job_id=job.id, index=job.current_index)
        try:
            context = await self.sink.get_context(job.context_id)
        except PermanentDeliveryError as e:
            logger.error("resume_context_lookup_failed", job_id=job.id, error=str(e))
            context = None
        except Exception as e:
            # Checkpoint stays on disk for the next attempt
            logger.warning("resume_deferred", job_id=job.id, error=str(e))
            return False

        if context is None:
            logger.error("cannot_resume_broadcast", job_id=job.id, reason="context not found")
            try:
                self.store.clear()
            except Exception as e:
                logger.error("checkpoint_clear_failed", error=str(e))
            self.current_job = None
            return False

        try:
            self._pacer = self._pacer_for(job.pacing)
        except ValueError:
            self._pacer = self._pacer_for(self.config.default_pacing)

        self.is_running = True
        self._resume_event.set()
        self._launch(job, context, job.resume_index(), None, on_complete)
        return True

    async def wait(self) -> None:
        """Wait for the processing loop to exit; re-raises a loop fault."""
        if self._task is not None:
            await self._task

    async def shutdown(self) -> None:
        """Stop the loop without changing job status, so it can be resumed later."""
        live = [task for task in self._tasks if not task.done()]
        for task in live:
            task.cancel()
        for task in live:
            try:
                await task
            except asyncio.CancelledError:
                pass
