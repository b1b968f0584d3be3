from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
import shutil
import uuid

from cyclelog.db import SessionStore
from cyclelog.models import IntervalRecord, IntervalStatus, Phase, StoredInterval


@contextmanager
def local_tmp_dir():
    base = Path(__file__).resolve().parent / "_tmp"
    base.mkdir(parents=True, exist_ok=True)
    path = base / uuid.uuid4().hex
    path.mkdir(parents=True, exist_ok=False)
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)


def add_interval(
    store: SessionStore,
    category_id: int | None,
    start: datetime,
    planned_sec: int = 1500,
    actual_sec: int | None = None,
    phase: Phase = Phase.WORK,
    status: IntervalStatus = IntervalStatus.COMPLETED,
    note: str | None = None,
) -> StoredInterval:
    actual = planned_sec if actual_sec is None else actual_sec
    return store.record_interval(
        IntervalRecord(
            category_id=category_id,
            phase=phase,
            start_time=start,
            end_time=start + timedelta(seconds=actual),
            planned_sec=planned_sec,
            actual_sec=actual,
            status=status,
            note=note,
        )
    )


UTC = timezone.utc
