"""Tests for the text-returning command layer."""
import pytest

from channels.base import PermanentDeliveryError
from core.commands import BroadcastCommands, format_final_results, format_progress
from models.schemas import (
    AudienceKind, BroadcastStats, FailedEntry, JobStatus, ProgressSnapshot,
)

from helpers import settle


@pytest.fixture
def commands(queue) -> BroadcastCommands:
    return BroadcastCommands(queue)


class TestStart:
    @pytest.mark.asyncio
    async def test_start_reports_job(self, commands, queue, guild, recipients):
        text = await commands.start(recipients, "Hello {user}", guild)
        assert "Safe broadcast started" in text
        assert f"**Job ID:** {queue.current_job.id}" in text
        assert "**Recipients:** 5" in text
        assert "~40 messages/minute" in text
        await queue.wait()

    @pytest.mark.asyncio
    async def test_dry_run_preview(self, commands, queue, guild, recipients):
        text = await commands.start(recipients, "Hello {user}", guild, pacing="fast", dry_run=True)
        assert "Broadcast preview" in text
        assert "**Audience:** subscribed users" in text
        assert "~69 messages/minute" in text
        assert "```Hello {user}```" in text
        assert queue.current_job is None

    @pytest.mark.asyncio
    async def test_no_recipients_managed_list(self, commands, guild):
        text = await commands.start([], "Hi", guild)
        assert "no recipients" in text
        assert "managed list is empty" in text

    @pytest.mark.asyncio
    async def test_no_recipients_server_members(self, commands, guild):
        text = await commands.start([], "Hi", guild, audience=AudienceKind.SERVER_MEMBERS)
        assert "no members" in text

    @pytest.mark.asyncio
    async def test_already_running_is_text(self, commands, queue, guild, recipients):
        await commands.start(recipients, "Hi", guild)
        text = await commands.start(recipients, "Again", guild)
        assert "already running" in text
        queue.cancel()
        await queue.wait()

    @pytest.mark.asyncio
    async def test_notify_receives_final_results(self, commands, queue, sink, guild, recipients):
        sink.script_failures("u2", PermanentDeliveryError("Unknown user"))
        messages = []
        await commands.start(recipients, "Hi", guild, notify=messages.append)
        await queue.wait()
        assert messages[0].startswith("📡 Broadcasting safely... (0/5 - 0%)")
        assert "Safe broadcast complete" in messages[-1]
        assert "user2#tag (Unknown user)" in messages[-1]


class TestControlText:
    def test_status_idle(self, commands):
        assert "no broadcast running" in commands.status()

    def test_controls_without_job(self, commands):
        assert commands.pause() == "❌ No broadcast is running to pause."
        assert commands.resume() == "❌ No broadcast is running to resume."
        assert commands.cancel() == "❌ No broadcast is running to cancel."

    @pytest.mark.asyncio
    async def test_pause_resume_cancel(self, commands, queue, guild, recipients):
        await commands.start(recipients, "Hi", guild)
        assert "paused" in commands.pause()
        await settle()

        status = commands.status()
        assert "**State:** ⏸️ paused" in status
        assert "(0/5)" in status

        assert commands.resume() == "▶️ Broadcast resumed."
        assert commands.resume() == "❌ The broadcast is already running."
        assert "cancelled" in commands.cancel()
        await queue.wait()
        assert "**State:** ❌ cancelled" in commands.status()

    @pytest.mark.asyncio
    async def test_status_completed(self, commands, queue, guild, recipients):
        await commands.start(recipients, "Hi", guild)
        await queue.wait()
        status = commands.status()
        assert "(4/5)" in status
        assert "**Sent:** 5" in status
        assert "**State:** ✅ completed" in status


class TestFormatting:
    def test_format_progress(self):
        text = format_progress(
            ProgressSnapshot(current_index=25, total=100, success_count=24, failed_count=1, progress=25), 40,
        )
        assert "(25/100 - 25%)" in text
        assert "✅ Sent: 24" in text
        assert "~40 messages/minute" in text

    def test_final_results_lists_at_most_five_failures(self):
        stats = BroadcastStats(
            job_id="1",
            status=JobStatus.COMPLETED,
            total_recipients=10,
            success_count=3,
            failed_count=7,
            failed_entries=[FailedEntry(recipient_tag=f"user{n}", reason="blocked") for n in range(7)],
            actual_duration_minutes=2,
        )
        text = format_final_results(stats)
        assert "📤 Sent: 3/10" in text
        assert "❌ Failed: 7" in text
        assert "user4 (blocked)" in text
        assert "user5" not in text
        assert text.endswith("... and 2 more")

    def test_final_results_without_failures(self):
        stats = BroadcastStats(
            job_id="1", status=JobStatus.COMPLETED, total_recipients=2,
            success_count=2, failed_count=0, actual_duration_minutes=0,
        )
        text = format_final_results(stats)
        assert "could not be reached" not in text
        assert "Actual duration: 0 minutes" in text
