"""
Injectable Clock for Bounded Waits
==================================

Every wait in the orchestrator goes through a clock object so tests can
replace wall time with a manual clock.

MODES:
======
1. SystemClock: real UTC time, real sleeping
2. ManualClock: starts at a fixed instant, sleep() advances time instantly

GUARANTEES:
- Never reads system time implicitly in manual mode
- Every tick is counted, so tests can assert how long a wait polled
"""

from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import List, Optional
import time

from ..contracts.base import Timestamp


class Clock:
    """Clock interface."""

    def now(self) -> Timestamp:
        raise NotImplementedError

    def sleep(self, seconds: float):
        raise NotImplementedError


class SystemClock(Clock):
    """Real time."""

    def now(self) -> Timestamp:
        return Timestamp(value=datetime.now(timezone.utc))

    def sleep(self, seconds: float):
        if seconds > 0:
            time.sleep(seconds)

    def __repr__(self) -> str:
        return "SystemClock()"


class ManualClock(Clock):
    """
    Deterministic clock.

    now() returns the current logical instant; sleep() moves it forward.
    advance() lets tests move time without a sleeper.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._current = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        if self._current.tzinfo is None:
            self._current = self._current.replace(tzinfo=timezone.utc)
        self._sleeps: List[float] = []

    def now(self) -> Timestamp:
        return Timestamp(value=self._current)

    def sleep(self, seconds: float):
        self._sleeps.append(seconds)
        self.advance(seconds)

    def advance(self, seconds: float):
        if seconds < 0:
            raise ValueError("ManualClock cannot move backwards")
        self._current = self._current + timedelta(seconds=seconds)

    @property
    def sleep_count(self) -> int:
        return len(self._sleeps)

    @property
    def total_slept(self) -> float:
        return sum(self._sleeps)

    def __repr__(self) -> str:
        return f"ManualClock({self._current.isoformat()}, sleeps={len(self._sleeps)})"
