from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from ...db import SessionStore
from ...errors import NotFound
from ...models import IntervalFilter, IntervalStatus, Phase, TimeRange
from ..deps import get_store
from ..schemas import IntervalOut, IntervalPageOut

router = APIRouter(prefix="/api/v1", tags=["intervals"])


@router.get("/intervals", response_model=IntervalPageOut)
def list_intervals(
    category_id: int | None = None,
    phase: Phase | None = None,
    status: IntervalStatus | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=2000),
    store: SessionStore = Depends(get_store),
) -> IntervalPageOut:
    query = store.list_intervals(
        IntervalFilter(
            category_id=category_id,
            phase=phase,
            status=status,
            time_range=TimeRange(start, end),
        )
    )
    items = [IntervalOut.of(item) for item in query.page(offset=offset, limit=limit)]
    return IntervalPageOut(items=items, total=query.count(), offset=offset, limit=limit)


@router.get("/intervals/{interval_id}", response_model=IntervalOut)
def get_interval(interval_id: int, store: SessionStore = Depends(get_store)) -> IntervalOut:
    item = store.get_interval(interval_id)
    if item is None:
        raise NotFound(f"interval {interval_id} not found")
    return IntervalOut.of(item)
