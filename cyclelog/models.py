from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Phase(str, Enum):
    IDLE = "idle"
    WORK = "work"
    SHORT_BREAK = "short_break"
    LONG_BREAK = "long_break"

    @property
    def is_break(self) -> bool:
        return self in (Phase.SHORT_BREAK, Phase.LONG_BREAK)

    @property
    def label(self) -> str:
        return PHASE_LABELS[self]


PHASE_LABELS = {
    Phase.IDLE: "空闲",
    Phase.WORK: "工作",
    Phase.SHORT_BREAK: "短休息",
    Phase.LONG_BREAK: "长休息",
}

INTERVAL_PHASES = (Phase.WORK, Phase.SHORT_BREAK, Phase.LONG_BREAK)


class RunMode(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


class IntervalStatus(str, Enum):
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class DeletePolicy(str, Enum):
    REJECT_IF_REFERENCED = "reject"
    CASCADE_DELETE_SESSIONS = "cascade"


@dataclass(frozen=True)
class Category:
    id: int
    name: str
    color: str


@dataclass(frozen=True)
class IntervalRecord:
    """An interval that just terminated and has not been stored yet."""

    category_id: int | None
    phase: Phase
    start_time: datetime
    end_time: datetime
    planned_sec: int
    actual_sec: int
    status: IntervalStatus
    note: str | None = None


@dataclass(frozen=True)
class StoredInterval:
    id: int
    category_id: int | None
    phase: Phase
    start_time: datetime
    end_time: datetime
    planned_sec: int
    actual_sec: int
    status: IntervalStatus
    note: str | None = None

    @property
    def completed(self) -> bool:
        return self.status is IntervalStatus.COMPLETED


@dataclass(frozen=True)
class TimeRange:
    """Half-open ``[start, end)`` window on interval start times; ``None`` is unbounded."""

    start: datetime | None = None
    end: datetime | None = None


@dataclass(frozen=True)
class IntervalFilter:
    category_id: int | None = None
    phase: Phase | None = None
    status: IntervalStatus | None = None
    time_range: TimeRange = TimeRange()


@dataclass(frozen=True)
class TimerSnapshot:
    phase: Phase
    run_mode: RunMode
    remaining_sec: float
    elapsed_sec: float
    planned_sec: int
    cycle_count: int
    cycle_length: int
    active_category_id: int | None
    selected_category_id: int | None
    started_at: datetime | None
    notice: str | None = None
    note: str | None = None

    @property
    def is_idle(self) -> bool:
        return self.phase is Phase.IDLE

    @property
    def is_ready(self) -> bool:
        return self.phase is not Phase.IDLE and self.run_mode is RunMode.STOPPED


@dataclass(frozen=True)
class Transition:
    """Outcome of an interval ending through tick or skip.

    ``record`` is ``None`` when the interval could not be kept because its
    category was deleted while it ran.
    """

    finished_phase: Phase
    record: StoredInterval | None
    next_phase: Phase
    auto_started: bool
    category_required: bool = False
