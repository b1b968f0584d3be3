from __future__ import annotations

from datetime import datetime, timedelta, timezone
import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...

    def monotonic(self) -> float:
        ...

    def sleep(self, seconds: float) -> None:
        ...


class RealClock:
    def now(self) -> datetime:
        return datetime.now().astimezone()

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(max(0.0, seconds))


class FakeClock:
    """Manually driven clock; ``sleep`` and ``advance`` move both readings."""

    def __init__(self, start: datetime | None = None) -> None:
        base = start or datetime(2026, 1, 1, tzinfo=timezone.utc)
        if base.tzinfo is None:
            base = base.replace(tzinfo=timezone.utc)
        self._current = base
        self._mono = 0.0
        self.sleep_calls = 0

    def now(self) -> datetime:
        return self._current

    def monotonic(self) -> float:
        return self._mono

    def advance(self, seconds: float) -> None:
        step = max(0.0, seconds)
        self._current += timedelta(seconds=step)
        self._mono += step

    def sleep(self, seconds: float) -> None:
        self.sleep_calls += 1
        self.advance(seconds)
