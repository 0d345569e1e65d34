from __future__ import annotations

import re
import time
from collections.abc import Callable

from .settings import settings

_EXTENDED_RE = re.compile(
    r"\b(show more|more options|next|another|refine)\b", re.IGNORECASE
)


def wants_extended_budget(message: str | None, action: str | None = None) -> bool:
    if action and action.lower() in {"more", "show_more", "next_page"}:
        return True
    return bool(_EXTENDED_RE.search(message or ""))


class TurnDeadline:
    """
    Wall-clock budget for one chat turn.

    Sub-calls ask `timeout_for(cap)` so a slow early step leaves less time for
    later ones instead of each step getting a fixed allowance.
    """

    def __init__(self, budget_seconds: float, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.monotonic
        self.budget_seconds = budget_seconds
        self.started_at = self._clock()

    @classmethod
    def for_turn(
        cls, message: str | None, action: str | None = None, clock: Callable[[], float] | None = None
    ) -> TurnDeadline:
        extended = wants_extended_budget(message, action)
        budget = settings.TURN_EXTENDED_TIMEOUT_SECONDS if extended else settings.TURN_TIMEOUT_SECONDS
        return cls(budget, clock=clock)

    def remaining(self) -> float:
        return max(0.0, self.budget_seconds - (self._clock() - self.started_at))

    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def timeout_for(self, cap: float | None = None) -> float:
        remaining = self.remaining()
        if cap is None:
            return remaining
        return max(0.0, min(cap, remaining))

    def elapsed_ms(self) -> int:
        return int((self._clock() - self.started_at) * 1000)
