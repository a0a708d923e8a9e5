"""Tests for send_with_retry and the backoff policy."""
import pytest

from channels.base import PermanentDeliveryError, RateLimitedError, TransientDeliveryError
from channels.memory_sink import InMemoryDeliverySink
from job_queue.retry import BackoffPolicy, send_with_retry


@pytest.fixture
def target(sink, guild):
    return sink.add_member(guild.id, "r1", username="target")


class TestBackoffPolicy:
    def test_doubles_per_attempt(self):
        policy = BackoffPolicy(base_delay_ms=1200)
        assert [policy.backoff_ms(n) for n in (1, 2, 3)] == [1200, 2400, 4800]

    def test_capped(self):
        policy = BackoffPolicy(base_delay_ms=20000, max_backoff_ms=30000)
        assert policy.backoff_ms(2) == 30000


class TestSendWithRetry:
    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self, sink, target, fake_sleep):
        attempts = await send_with_retry(sink, target, "hi", BackoffPolicy(), sleep=fake_sleep)
        assert attempts == 1
        assert fake_sleep.waits == []
        assert sink.delivered == [("r1", "hi")]
        assert sink.metrics.messages_sent == 1

    @pytest.mark.asyncio
    async def test_rate_limit_uses_retry_after(self, sink, target, fake_sleep):
        sink.script_failures("r1", RateLimitedError(2000), RateLimitedError(2000))
        attempts = await send_with_retry(sink, target, "hi", BackoffPolicy(), sleep=fake_sleep)
        assert attempts == 3
        assert fake_sleep.waits == [2.0, 2.0]
        assert sink.metrics.rate_limited == 2

    @pytest.mark.asyncio
    async def test_rate_limit_without_retry_after_uses_backoff(self, sink, target, fake_sleep):
        sink.script_failures("r1", RateLimitedError(), RateLimitedError())
        await send_with_retry(sink, target, "hi", BackoffPolicy(base_delay_ms=750), sleep=fake_sleep)
        assert fake_sleep.waits == [0.75, 1.5]

    @pytest.mark.asyncio
    async def test_permanent_error_raised_immediately(self, sink, target, fake_sleep):
        sink.script_failures("r1", PermanentDeliveryError("Unknown user"))
        with pytest.raises(PermanentDeliveryError):
            await send_with_retry(sink, target, "hi", BackoffPolicy(), sleep=fake_sleep)
        assert sink.attempts["r1"] == 1
        assert fake_sleep.waits == []

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_last_error(self, sink, target, fake_sleep):
        sink.script_failures(
            "r1",
            TransientDeliveryError("first"),
            TransientDeliveryError("second"),
            TransientDeliveryError("third"),
        )
        with pytest.raises(TransientDeliveryError, match="third"):
            await send_with_retry(sink, target, "hi", BackoffPolicy(), sleep=fake_sleep)
        assert sink.attempts["r1"] == 3
        assert fake_sleep.waits == [1.2, 2.4]
        assert sink.metrics.messages_failed == 3

    @pytest.mark.asyncio
    async def test_unclassified_error_is_retried(self, sink, target, fake_sleep):
        sink.script_failures("r1", ConnectionResetError("peer reset"))
        attempts = await send_with_retry(sink, target, "hi", BackoffPolicy(), sleep=fake_sleep)
        assert attempts == 2
        assert sink.delivered == [("r1", "hi")]

    @pytest.mark.asyncio
    async def test_single_attempt_policy(self, fake_sleep):
        sink = InMemoryDeliverySink()
        sink.add_context("g", "G")
        handle = sink.add_member("g", "r2")
        sink.script_failures("r2", TransientDeliveryError("down"))
        with pytest.raises(TransientDeliveryError):
            await send_with_retry(sink, handle, "hi", BackoffPolicy(max_retries=1), sleep=fake_sleep)
        assert fake_sleep.waits == []
