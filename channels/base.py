"""
Delivery Sinks — base infrastructure for every outbound channel.

Provides:
- ChannelError: structured error hierarchy with delivery classification
- DeliveryMetrics: per-sink send/fail/rate-limit tracking
- DeliverySink: abstract "send one rendered message to one recipient"
"""
from __future__ import annotations

import abc
import time
from collections import deque
from typing import Any, Optional

from models.schemas import BroadcastContext, RecipientHandle


# ══════════════════════════════════════════════════════════════
#  ERRORS
# ══════════════════════════════════════════════════════════════

class ChannelError(Exception):
    """Base exception for all channel operations."""

    def __init__(self, message: str, channel: str = "", retryable: bool = False):
        self.channel = channel
        self.retryable = retryable
        super().__init__(message)


class DeliveryError(ChannelError):
    """A single delivery attempt failed."""

    kind = "transient"

    def __init__(self, reason: str, channel: str = "", retryable: bool = True):
        self.reason = reason
        super().__init__(reason, channel, retryable=retryable)


class RateLimitedError(DeliveryError):
    """The provider asked us to slow down (HTTP 429)."""

    kind = "rate_limited"

    def __init__(self, retry_after_ms: Optional[float] = None, channel: str = ""):
        self.retry_after_ms = retry_after_ms
        wait = f" (retry after {retry_after_ms:.0f}ms)" if retry_after_ms is not None else ""
        super().__init__(f"Rate limit exceeded for {channel or 'channel'}{wait}", channel)


class PermanentDeliveryError(DeliveryError):
    """The recipient can never receive this message; do not retry."""

    kind = "permanent"

    def __init__(self, reason: str, channel: str = ""):
        super().__init__(reason, channel, retryable=False)


class TransientDeliveryError(DeliveryError):
    kind = "transient"


class RecipientUnreachable(ChannelError):
    """Recipient could not be resolved (e.g. left the server)."""

    def __init__(self, recipient_id: str, channel: str = ""):
        self.recipient_id = recipient_id
        super().__init__(f"Recipient {recipient_id} is unreachable", channel)


# ══════════════════════════════════════════════════════════════
#  DELIVERY METRICS
# ══════════════════════════════════════════════════════════════

class DeliveryMetrics:
    """Tracks per-sink send, failure, rate-limit, and latency metrics."""

    def __init__(self, channel: str):
        self.channel = channel
        self.messages_sent: int = 0
        self.messages_failed: int = 0
        self.rate_limited: int = 0
        self._latencies: deque[float] = deque(maxlen=1000)
        self._errors: deque[str] = deque(maxlen=10)

    def record_send(self, latency_ms: float = 0.0):
        self.messages_sent += 1
        if latency_ms > 0:
            self._latencies.append(latency_ms)

    def record_failure(self, error: str = ""):
        self.messages_failed += 1
        if error:
            self._errors.append(error)

    def record_rate_limit(self):
        self.rate_limited += 1

    @property
    def avg_latency_ms(self) -> float:
        return sum(self._latencies) / len(self._latencies) if self._latencies else 0.0

    @property
    def failure_rate(self) -> float:
        total = self.messages_sent + self.messages_failed
        return self.messages_failed / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "sent": self.messages_sent,
            "failed": self.messages_failed,
            "rate_limited": self.rate_limited,
            "avg_latency_ms": round(self.avg_latency_ms, 1),
            "failure_rate": round(self.failure_rate, 4),
            "recent_errors": list(self._errors),
        }


# ══════════════════════════════════════════════════════════════
#  DELIVERY SINK — Abstract Base
# ══════════════════════════════════════════════════════════════

class DeliverySink(abc.ABC):
    """
    Base class for all delivery sinks.

    Subclasses implement _do_deliver. The base class wraps every delivery
    with metrics; classification of failures is the subclass's job, by
    raising RateLimitedError / PermanentDeliveryError /
    TransientDeliveryError.
    """

    channel: str = "generic"

    def __init__(self):
        self.metrics = DeliveryMetrics(self.channel)

    # ── Abstract hooks ────────────────────────────────────────

    @abc.abstractmethod
    async def get_context(self, context_id: str) -> Optional[BroadcastContext]:
        """Return the broadcast context, or None if it is gone."""
        ...

    @abc.abstractmethod
    async def resolve(self, recipient_id: str, context: BroadcastContext) -> Optional[RecipientHandle]:
        """Return a live handle for the recipient, or None if not found."""
        ...

    @abc.abstractmethod
    async def _do_deliver(self, handle: RecipientHandle, text: str) -> None:
        ...

    # ── Public send ───────────────────────────────────────────

    async def deliver(self, handle: RecipientHandle, text: str) -> None:
        start = time.monotonic()
        try:
            await self._do_deliver(handle, text)
        except RateLimitedError:
            self.metrics.record_rate_limit()
            raise
        except Exception as e:
            self.metrics.record_failure(str(e))
            raise
        self.metrics.record_send((time.monotonic() - start) * 1000)

    async def health_check(self) -> dict[str, Any]:
        return {"channel": self.channel, "metrics": self.metrics.to_dict()}

    async def close(self) -> None:
        pass
