"""
cloudbase_manager.tier1_runtime.clock
──────────────────────────────────────
Mockable time source for request timestamps. Signatures embed the unix
second and its UTC date, so tests freeze the clock instead of patching
time.time().
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable


class Clock:
    """Mockable clock. Override now_fn to control time in tests."""

    def __init__(self, now_fn: Callable[[], datetime] | None = None) -> None:
        self._now_fn = now_fn or (lambda: datetime.now(tz=timezone.utc))

    def now(self) -> datetime:
        """Return the current UTC datetime."""
        return self._now_fn()

    def unix_seconds(self) -> int:
        """Whole unix seconds, as sent in X-TC-Timestamp."""
        return int(self.now().timestamp())

    def freeze(self, dt: datetime) -> "Clock":
        """Return a new Clock frozen at the given datetime."""
        return Clock(now_fn=lambda: dt)


_clock = Clock()


def get_clock() -> Clock:
    return _clock


def set_clock(clock: Clock) -> None:
    """Replace the global clock (use in tests)."""
    global _clock
    _clock = clock


def unix_seconds() -> int:
    return _clock.unix_seconds()


async def sleep(seconds: float) -> None:
    """Single seam for polling delays so tests can shrink them."""
    await asyncio.sleep(seconds)


__all__ = ["Clock", "get_clock", "set_clock", "unix_seconds", "sleep"]
