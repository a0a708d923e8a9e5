"""
Broadcast Queue — one durable, paced, one-message-per-recipient job at a time.

- BroadcastQueue runs the processing loop as an asyncio task
- Pacer draws jittered delays between sends
- send_with_retry classifies provider errors and backs off (tenacity)
"""
from job_queue.broadcast_queue import BroadcastQueue
from job_queue.errors import AlreadyRunningError, BroadcastError, NotPausedError, NotRunningError
from job_queue.pacing import Pacer
from job_queue.rendering import preview, render_message
from job_queue.retry import BackoffPolicy, send_with_retry

__all__ = [
    "BroadcastQueue",
    "BroadcastError",
    "AlreadyRunningError",
    "NotRunningError",
    "NotPausedError",
    "Pacer",
    "BackoffPolicy",
    "send_with_retry",
    "render_message",
    "preview",
]
