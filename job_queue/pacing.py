"""
Pacing — jittered delays between consecutive deliveries.

Every delay is drawn uniformly from [base, max] so the stream of sends
never shows a fixed interval to the provider.
"""
from __future__ import annotations

import random
from typing import Callable, Optional

from config.settings import PacingProfile
from models.schemas import estimate_minutes


class Pacer:
    """Draws jittered delays for one pacing profile."""

    def __init__(self, profile: PacingProfile, rng: Optional[Callable[[], float]] = None):
        self.profile = profile
        self._rng = rng or random.random

    def next_delay_ms(self) -> int:
        jitter_range = self.profile.max_delay_ms - self.profile.base_delay_ms
        return int(self.profile.base_delay_ms + self._rng() * jitter_range)

    def next_delay_s(self) -> float:
        return self.next_delay_ms() / 1000

    def estimate_minutes(self, recipient_count: int) -> int:
        return estimate_minutes(recipient_count, self.profile.average_delay_ms)

    @property
    def messages_per_minute(self) -> int:
        return self.profile.messages_per_minute
