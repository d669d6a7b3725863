"""Delay and backoff primitives used by the fetch core's retry loop."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass


async def wait(ms: float) -> None:
    """Suspend the current task for *ms* milliseconds."""
    await asyncio.sleep(max(ms, 0.0) / 1000.0)


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with additive jitter.

    ``base_ms`` overrides the per-call base when set (keyed callers);
    otherwise the call's own base is scaled by ``multiplier``.
    """

    base_ms: float | None = None
    growth: float = 1.5
    jitter_ms: float = 200.0
    multiplier: float = 1.0

    def effective_base(self, call_base_ms: float) -> float:
        if self.base_ms is not None:
            return self.base_ms
        return call_base_ms * self.multiplier

    def delay_ms(self, attempt: int, call_base_ms: float, rand: Callable[[], float]) -> float:
        """Delay before retry number ``attempt + 1`` (``attempt`` is 0-based)."""
        base = self.effective_base(call_base_ms)
        return base * (self.growth ** attempt) + rand() * self.jitter_ms
