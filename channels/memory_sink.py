"""
InMemoryDeliverySink — dict-backed sink for development and testing.

Contexts and members are registered up front; every successful delivery is
recorded. Failures can be scripted per recipient as a list of exceptions
that are raised, in order, on successive attempts.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

from channels.base import DeliverySink
from models.schemas import BroadcastContext, RecipientHandle

logger = structlog.get_logger()


class InMemoryDeliverySink(DeliverySink):

    channel = "memory"

    def __init__(self):
        super().__init__()
        self._contexts: dict[str, BroadcastContext] = {}
        self._members: dict[str, dict[str, RecipientHandle]] = {}   # context id → user id → handle
        self._scripted: dict[str, list[Exception]] = {}
        self.delivered: list[tuple[str, str]] = []                  # (user id, text)
        self.attempts: dict[str, int] = {}

    # ── Setup ─────────────────────────────────────────────

    def add_context(self, context_id: str, name: str = "") -> BroadcastContext:
        ctx = BroadcastContext(id=context_id, name=name)
        self._contexts[context_id] = ctx
        self._members.setdefault(context_id, {})
        return ctx

    def remove_context(self, context_id: str) -> None:
        self._contexts.pop(context_id, None)
        self._members.pop(context_id, None)

    def add_member(self, context_id: str, user_id: str, username: str = "", tag: str = "") -> RecipientHandle:
        handle = RecipientHandle(id=user_id, username=username or user_id, tag=tag or username or user_id)
        self._members.setdefault(context_id, {})[user_id] = handle
        return handle

    def remove_member(self, context_id: str, user_id: str) -> None:
        self._members.get(context_id, {}).pop(user_id, None)

    def script_failures(self, user_id: str, *errors: Exception) -> None:
        """Raise these errors on the next len(errors) attempts for user_id."""
        self._scripted.setdefault(user_id, []).extend(errors)

    # ── DeliverySink ──────────────────────────────────────

    async def get_context(self, context_id: str) -> Optional[BroadcastContext]:
        return self._contexts.get(context_id)

    async def resolve(self, recipient_id: str, context: BroadcastContext) -> Optional[RecipientHandle]:
        return self._members.get(context.id, {}).get(recipient_id)

    async def _do_deliver(self, handle: RecipientHandle, text: str) -> None:
        self.attempts[handle.id] = self.attempts.get(handle.id, 0) + 1
        pending = self._scripted.get(handle.id)
        if pending:
            raise pending.pop(0)
        self.delivered.append((handle.id, text))
        logger.debug("memory_sink_delivered", recipient=handle.tag)

    async def health_check(self) -> dict[str, Any]:
        result = await super().health_check()
        result["contexts"] = len(self._contexts)
        result["delivered"] = len(self.delivered)
        return result
