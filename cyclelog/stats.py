from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time as dtime, timedelta, timezone, tzinfo
from typing import Iterable

from .config import Settings, local_timezone
from .db import SessionStore
from .errors import InvalidInput, NotFound
from .models import IntervalFilter, IntervalStatus, Phase, StoredInterval, TimeRange

PERIODS = ("today", "week", "month", "year", "last_7_days")


@dataclass(frozen=True)
class CategoryTotal:
    category_id: int
    name: str
    color: str
    total_sec: int
    intervals: int


@dataclass(frozen=True)
class DailyTotal:
    day: date
    total_sec: int


@dataclass(frozen=True)
class StatsWindow:
    work_sec: int
    break_sec: int
    work_intervals: int
    completed_work_intervals: int
    abandoned_intervals: int

    @property
    def completion_rate(self) -> float:
        return _rate(self.completed_work_intervals, self.work_intervals)


def _rate(completed: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return completed / total


class StatsAggregator:
    """Read-only summaries over the interval history.

    Only completed work intervals count toward time totals. Calendar days
    follow ``tz`` and begin at ``day_start_hour``.
    """

    def __init__(self, store: SessionStore, tz: tzinfo | None = None, day_start_hour: int = 0) -> None:
        if not 0 <= day_start_hour <= 23:
            raise InvalidInput(f"day_start_hour must be within 0..23, got {day_start_hour}")
        self.store = store
        self.tz = tz or local_timezone()
        self.day_start_hour = day_start_hour

    @classmethod
    def from_settings(cls, store: SessionStore, settings: Settings) -> StatsAggregator:
        return cls(store, tz=settings.tz(), day_start_hour=settings.day_start_hour)

    def totals_by_category(self, time_range: TimeRange | None = None) -> list[CategoryTotal]:
        sums: dict[int, int] = {}
        counts: dict[int, int] = {}
        for item in self._completed_work(time_range or TimeRange()):
            if item.category_id is None:
                continue
            sums[item.category_id] = sums.get(item.category_id, 0) + item.actual_sec
            counts[item.category_id] = counts.get(item.category_id, 0) + 1

        totals = [
            CategoryTotal(
                category_id=category.id,
                name=category.name,
                color=category.color,
                total_sec=sums.get(category.id, 0),
                intervals=counts.get(category.id, 0),
            )
            for category in self.store.list_categories()
        ]
        totals.sort(key=lambda x: (-x.total_sec, x.name))
        return totals

    def daily_breakdown(
        self,
        category_id: int | None,
        first_day: date,
        last_day: date,
    ) -> list[DailyTotal]:
        if first_day > last_day:
            raise InvalidInput(f"first_day {first_day} is after last_day {last_day}")
        if category_id is not None and self.store.get_category(category_id) is None:
            raise NotFound(f"category {category_id} not found")

        window = TimeRange(self.day_start(first_day), self.day_start(last_day + timedelta(days=1)))
        buckets: dict[date, int] = {}
        for item in self._completed_work(window, category_id=category_id):
            day = self.local_day(item.start_time)
            buckets[day] = buckets.get(day, 0) + item.actual_sec

        result: list[DailyTotal] = []
        day = first_day
        while day <= last_day:
            result.append(DailyTotal(day=day, total_sec=buckets.get(day, 0)))
            day += timedelta(days=1)
        return result

    def completion_rate(self, time_range: TimeRange | None = None) -> float:
        completed = 0
        total = 0
        work_only = IntervalFilter(phase=Phase.WORK, time_range=time_range or TimeRange())
        for item in self.store.list_intervals(work_only):
            total += 1
            if item.status is IntervalStatus.COMPLETED:
                completed += 1
        return _rate(completed, total)

    def summarize(self, time_range: TimeRange | None = None) -> StatsWindow:
        return _collect_window(self.store.list_intervals(IntervalFilter(time_range=time_range or TimeRange())))

    def build_stats(self, now: datetime | None = None) -> dict[str, StatsWindow]:
        ref = self._ref(now)
        return {period: self.summarize(self.period_range(period, ref)) for period in PERIODS}

    def period_range(self, period: str, now: datetime | None = None) -> TimeRange:
        ref = self._ref(now)
        today = self.local_day(ref)
        if period == "today":
            start = self.day_start(today)
        elif period == "week":
            start = self.day_start(today - timedelta(days=today.weekday()))
        elif period == "month":
            start = self.day_start(today.replace(day=1))
        elif period == "year":
            start = self.day_start(today.replace(month=1, day=1))
        elif period == "last_7_days":
            start = ref - timedelta(days=7)
        else:
            raise InvalidInput(f"unknown period: {period}")
        return TimeRange(start, ref)

    def day_start(self, day: date) -> datetime:
        return datetime.combine(day, dtime(hour=self.day_start_hour), tzinfo=self.tz)

    def local_day(self, moment: datetime) -> date:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        shifted = moment.astimezone(self.tz) - timedelta(hours=self.day_start_hour)
        return shifted.date()

    def _ref(self, now: datetime | None) -> datetime:
        ref = now or datetime.now(self.tz)
        if ref.tzinfo is None:
            ref = ref.replace(tzinfo=self.tz)
        return ref

    def _completed_work(self, time_range: TimeRange, category_id: int | None = None) -> Iterable[StoredInterval]:
        return self.store.list_intervals(
            IntervalFilter(
                category_id=category_id,
                phase=Phase.WORK,
                status=IntervalStatus.COMPLETED,
                time_range=time_range,
            )
        )


def _collect_window(intervals: Iterable[StoredInterval]) -> StatsWindow:
    work_sec = 0
    break_sec = 0
    work_intervals = 0
    completed_work_intervals = 0
    abandoned_intervals = 0

    for item in intervals:
        if item.phase is Phase.WORK:
            work_intervals += 1
            if item.completed:
                work_sec += item.actual_sec
                completed_work_intervals += 1
        else:
            break_sec += item.actual_sec

        if not item.completed:
            abandoned_intervals += 1

    return StatsWindow(
        work_sec=work_sec,
        break_sec=break_sec,
        work_intervals=work_intervals,
        completed_work_intervals=completed_work_intervals,
        abandoned_intervals=abandoned_intervals,
    )
