from __future__ import annotations

from datetime import date, datetime

from fastapi import APIRouter, Depends

from ...models import TimeRange
from ...stats import StatsAggregator
from ..deps import get_stats
from ..schemas import CategoryTotalOut, CompletionRateOut, DailyTotalOut, StatsOut, StatsWindowOut

router = APIRouter(prefix="/api/v1", tags=["stats"])


@router.get("/stats/totals", response_model=list[CategoryTotalOut])
def totals_by_category(
    start: datetime | None = None,
    end: datetime | None = None,
    stats: StatsAggregator = Depends(get_stats),
) -> list[CategoryTotalOut]:
    return [CategoryTotalOut.of(item) for item in stats.totals_by_category(TimeRange(start, end))]


@router.get("/stats/daily", response_model=list[DailyTotalOut])
def daily_breakdown(
    first_day: date,
    last_day: date,
    category_id: int | None = None,
    stats: StatsAggregator = Depends(get_stats),
) -> list[DailyTotalOut]:
    return [DailyTotalOut.of(item) for item in stats.daily_breakdown(category_id, first_day, last_day)]


@router.get("/stats/completion-rate", response_model=CompletionRateOut)
def completion_rate(
    start: datetime | None = None,
    end: datetime | None = None,
    stats: StatsAggregator = Depends(get_stats),
) -> CompletionRateOut:
    return CompletionRateOut(rate=stats.completion_rate(TimeRange(start, end)))


@router.get("/stats/summary", response_model=StatsOut)
def summary(stats: StatsAggregator = Depends(get_stats)) -> StatsOut:
    windows = stats.build_stats()
    return StatsOut(**{key: StatsWindowOut.of(window) for key, window in windows.items()})


@router.get("/stats/window", response_model=StatsWindowOut)
def period_window(period: str = "today", stats: StatsAggregator = Depends(get_stats)) -> StatsWindowOut:
    return StatsWindowOut.of(stats.summarize(stats.period_range(period)))
