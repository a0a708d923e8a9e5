"""
Broadcast Commands — the administrative control surface.

Maps start / status / pause / resume / cancel 1:1 onto the BroadcastQueue
and renders the outcome as user-facing text. Control precondition errors
(already running, not running, not paused) become text here instead of
propagating; anything else is logged and reported as a generic error.

An optional `notify` callable receives the text of periodic progress
updates and the final results, the way a chat command edits its reply.
"""
from __future__ import annotations

import inspect
import structlog
from typing import Awaitable, Callable, Optional, Union

from job_queue.broadcast_queue import BroadcastQueue
from job_queue.errors import AlreadyRunningError, BroadcastError
from models.schemas import (
    AudienceKind, BroadcastContext, BroadcastPreview, BroadcastStats,
    JobStatus, ProgressSnapshot, RecipientSnapshot,
)

logger = structlog.get_logger()

Notify = Callable[[str], Union[None, Awaitable[None]]]

MAX_LISTED_FAILURES = 5

_AUDIENCE_LABELS = {
    AudienceKind.MANAGED_LIST: "subscribed users",
    AudienceKind.SERVER_MEMBERS: "all server members",
}


def format_progress(snapshot: ProgressSnapshot, messages_per_minute: int) -> str:
    return (
        f"📡 Broadcasting safely... ({snapshot.current_index}/{snapshot.total} - {snapshot.progress}%)\n"
        f"✅ Sent: {snapshot.success_count}\n"
        f"❌ Failed: {snapshot.failed_count}\n"
        f"⏱️ Safe rate: ~{messages_per_minute} messages/minute"
    )


def format_final_results(stats: BroadcastStats) -> str:
    lines = [
        "✅ **Safe broadcast complete!**",
        "",
        "📊 **Statistics:**",
        f"📤 Sent: {stats.success_count}/{stats.total_recipients}",
        f"❌ Failed: {stats.failed_count}",
        f"⏱️ Actual duration: {stats.actual_duration_minutes or 0} minutes",
    ]
    if stats.failed_entries:
        lines += ["", "**Recipients that could not be reached:**"]
        for entry in stats.failed_entries[:MAX_LISTED_FAILURES]:
            lines.append(f"{entry.recipient_tag} ({entry.reason})")
        hidden = len(stats.failed_entries) - MAX_LISTED_FAILURES
        if hidden > 0:
            lines.append(f"... and {hidden} more")
    return "\n".join(lines)


class BroadcastCommands:
    """Text-returning wrapper around a BroadcastQueue."""

    def __init__(self, queue: BroadcastQueue):
        self.queue = queue

    async def start(
        self,
        recipients: list[RecipientSnapshot],
        message: str,
        context: BroadcastContext,
        audience: AudienceKind = AudienceKind.MANAGED_LIST,
        pacing: Optional[str] = None,
        dry_run: bool = False,
        notify: Optional[Notify] = None,
    ) -> str:
        if self.queue.is_running:
            return self._already_running_text()

        if not recipients:
            text = "❌ There are no recipients for this message!\n\n"
            if audience == AudienceKind.MANAGED_LIST:
                text += "The managed list is empty. Add users to it first."
            else:
                text += "The server has no members to message."
            return text

        pacing = pacing or self.queue.config.default_pacing
        rate = self.queue.config.get_profile(pacing).messages_per_minute

        on_progress = on_complete = None
        if notify is not None:
            async def on_progress(snapshot: ProgressSnapshot) -> None:
                await _call(notify, format_progress(snapshot, rate))

            async def on_complete(stats: BroadcastStats) -> None:
                if stats.status == JobStatus.COMPLETED:
                    await _call(notify, format_final_results(stats))

        try:
            result = await self.queue.start_broadcast(
                recipients, message, context,
                audience=audience,
                pacing=pacing,
                dry_run=dry_run,
                on_progress=on_progress,
                on_complete=on_complete,
            )
        except AlreadyRunningError:
            return self._already_running_text()

        if isinstance(result, BroadcastPreview):
            return (
                "📋 **Broadcast preview**\n\n"
                f"👥 **Recipients:** {result.recipient_count}\n"
                f"📝 **Audience:** {_AUDIENCE_LABELS[result.audience]}\n"
                f"⏱️ **Estimated duration:** {result.estimated_duration_minutes} minutes\n"
                f"🛡️ **Send rate:** ~{rate} messages/minute\n"
                f"📄 **Message sample:**\n```{result.message_preview}```\n"
                "\n💡 Run the same command without dry run to start sending."
            )

        return (
            "✅ **Safe broadcast started!**\n\n"
            f"🆔 **Job ID:** {result.job_id}\n"
            f"👥 **Recipients:** {result.recipient_count}\n"
            f"⏱️ **Estimated duration:** {result.estimated_duration_minutes} minutes\n"
            f"🛡️ **Send rate:** ~{rate} messages/minute\n"
            "\n📊 Check the queue status to follow progress."
        )

    def status(self) -> str:
        status = self.queue.get_status()
        if status.is_idle:
            return "🟢 **Queue status:** no broadcast running\n\nYou can start a new broadcast."

        lines = [
            "📊 **Broadcast queue status**",
            "",
            f"🆔 **Job ID:** {status.job_id}",
            f"📈 **Progress:** {status.progress}% ({status.current_index}/{status.total_recipients})",
            f"✅ **Sent:** {status.success_count}",
            f"❌ **Failed:** {status.failed_count}",
            f"⏱️ **Estimated duration:** {status.estimated_duration_minutes} minutes",
        ]
        if status.actual_duration_minutes:
            lines.append(f"⏰ **Actual duration:** {status.actual_duration_minutes} minutes")

        label = self._state_label(status.status, status.is_running, status.is_paused)
        if label:
            lines += ["", f"**State:** {label}"]
        return "\n".join(lines)

    @staticmethod
    def _state_label(status: str, is_running: bool, is_paused: bool) -> str:
        if is_running and is_paused:
            return "⏸️ paused"
        if is_running:
            return "▶️ running"
        return {
            JobStatus.COMPLETED.value: "✅ completed",
            JobStatus.CANCELLED.value: "❌ cancelled",
            JobStatus.FAILED.value: "💥 failed",
        }.get(status, "")

    def pause(self) -> str:
        try:
            self.queue.pause()
        except BroadcastError as e:
            return f"❌ {e}"
        return "⏸️ Broadcast paused.\n\nResume it from the queue controls."

    def resume(self) -> str:
        try:
            self.queue.resume()
        except BroadcastError as e:
            return f"❌ {e}"
        return "▶️ Broadcast resumed."

    def cancel(self) -> str:
        try:
            self.queue.cancel()
        except BroadcastError as e:
            return f"❌ {e}"
        return "❌ Broadcast cancelled.\n\n💡 You can start a new broadcast."

    @staticmethod
    def _already_running_text() -> str:
        return (
            "⚠️ A broadcast is already running!\n\n"
            "Check the queue status for details or cancel the current broadcast."
        )


async def _call(notify: Notify, text: str) -> None:
    result = notify(text)
    if inspect.isawaitable(result):
        await result
