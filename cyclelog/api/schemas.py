from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field

from ..models import Category, DeletePolicy, StoredInterval, TimerSnapshot, Transition
from ..stats import CategoryTotal, DailyTotal, StatsWindow


class HealthOut(BaseModel):
    status: str = Field(default="ok")


class MetaOut(BaseModel):
    app: str
    version: str
    db_path: str
    platform: str


class ErrorOut(BaseModel):
    error: str
    detail: str


class FileResult(BaseModel):
    path: str


class CategoryIn(BaseModel):
    name: str = Field(min_length=1)
    color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")


class CategoryRenameIn(BaseModel):
    name: str = Field(min_length=1)


class CategoryOut(BaseModel):
    id: int
    name: str
    color: str

    @classmethod
    def of(cls, item: Category) -> CategoryOut:
        return cls(id=item.id, name=item.name, color=item.color)


class CategoryDeleteOut(BaseModel):
    id: int
    policy: DeletePolicy
    intervals_removed: int


class IntervalOut(BaseModel):
    id: int
    category_id: int | None
    phase: str
    start_time: datetime
    end_time: datetime
    planned_seconds: int
    actual_seconds: int
    status: str
    note: str | None = None

    @classmethod
    def of(cls, item: StoredInterval) -> IntervalOut:
        return cls(
            id=item.id,
            category_id=item.category_id,
            phase=item.phase.value,
            start_time=item.start_time,
            end_time=item.end_time,
            planned_seconds=item.planned_sec,
            actual_seconds=item.actual_sec,
            status=item.status.value,
            note=item.note,
        )


class IntervalPageOut(BaseModel):
    items: list[IntervalOut]
    total: int
    offset: int
    limit: int


class CategoryTotalOut(BaseModel):
    category_id: int
    name: str
    color: str
    total_seconds: int
    intervals: int

    @classmethod
    def of(cls, item: CategoryTotal) -> CategoryTotalOut:
        return cls(
            category_id=item.category_id,
            name=item.name,
            color=item.color,
            total_seconds=item.total_sec,
            intervals=item.intervals,
        )


class DailyTotalOut(BaseModel):
    day: date
    total_seconds: int

    @classmethod
    def of(cls, item: DailyTotal) -> DailyTotalOut:
        return cls(day=item.day, total_seconds=item.total_sec)


class CompletionRateOut(BaseModel):
    rate: float


class StatsWindowOut(BaseModel):
    work_sec: int
    break_sec: int
    work_intervals: int
    completed_work_intervals: int
    abandoned_intervals: int
    completion_rate: float

    @classmethod
    def of(cls, item: StatsWindow) -> StatsWindowOut:
        return cls(
            work_sec=item.work_sec,
            break_sec=item.break_sec,
            work_intervals=item.work_intervals,
            completed_work_intervals=item.completed_work_intervals,
            abandoned_intervals=item.abandoned_intervals,
            completion_rate=item.completion_rate,
        )


class StatsOut(BaseModel):
    today: StatsWindowOut
    week: StatsWindowOut
    month: StatsWindowOut
    year: StatsWindowOut
    last_7_days: StatsWindowOut


class TimerStateOut(BaseModel):
    phase: str
    run_mode: str
    remaining_sec: float
    elapsed_sec: float
    planned_sec: int
    cycle_count: int
    cycle_length: int
    active_category_id: int | None
    selected_category_id: int | None
    started_at: datetime | None
    notice: str | None
    note: str | None

    @classmethod
    def of(cls, snap: TimerSnapshot) -> TimerStateOut:
        return cls(
            phase=snap.phase.value,
            run_mode=snap.run_mode.value,
            remaining_sec=snap.remaining_sec,
            elapsed_sec=snap.elapsed_sec,
            planned_sec=snap.planned_sec,
            cycle_count=snap.cycle_count,
            cycle_length=snap.cycle_length,
            active_category_id=snap.active_category_id,
            selected_category_id=snap.selected_category_id,
            started_at=snap.started_at,
            notice=snap.notice,
            note=snap.note,
        )


class TimerCommandOut(BaseModel):
    state: TimerStateOut
    recorded: IntervalOut | None = None
    next_phase: str | None = None
    auto_started: bool = False
    category_required: bool = False

    @classmethod
    def build(cls, snap: TimerSnapshot, result: object = None) -> TimerCommandOut:
        if isinstance(result, Transition):
            return cls(
                state=TimerStateOut.of(snap),
                recorded=IntervalOut.of(result.record) if result.record is not None else None,
                next_phase=result.next_phase.value,
                auto_started=result.auto_started,
                category_required=result.category_required,
            )
        if isinstance(result, StoredInterval):
            return cls(state=TimerStateOut.of(snap), recorded=IntervalOut.of(result))
        return cls(state=TimerStateOut.of(snap))


class TimerStartIn(BaseModel):
    category_id: int | None = None
    note: str | None = Field(default=None, max_length=200)


class TimerStopIn(BaseModel):
    reset_cycle: bool = False


class SelectCategoryIn(BaseModel):
    category_id: int | None = None
