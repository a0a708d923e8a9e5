"""Test helpers shared by the broadcast tests."""
import asyncio
from typing import Callable

from models.schemas import RecipientSnapshot


class RecordingSleep:
    """
    Stand-in for asyncio.sleep: records every requested wait (seconds)
    and only yields to the event loop.

    `hooks` maps a 1-based call number to a callable run before yielding,
    which lets tests pause or cancel at a precise point of the loop.
    """

    def __init__(self):
        self.waits: list[float] = []
        self.hooks: dict[int, Callable[[], None]] = {}

    async def __call__(self, seconds: float) -> None:
        self.waits.append(seconds)
        hook = self.hooks.get(len(self.waits))
        if hook:
            hook()
        await asyncio.sleep(0)


async def settle(rounds: int = 20) -> None:
    """Let background tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_recipients(*ids: str) -> list[RecipientSnapshot]:
    return [RecipientSnapshot(id=i, display_name=f"user{i[1:]}", tag=f"user{i[1:]}#tag") for i in ids]
