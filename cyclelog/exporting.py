from __future__ import annotations

import csv
from pathlib import Path

from .db import SessionStore
from .models import IntervalFilter


def export_intervals_csv(
    store: SessionStore,
    out_dir: Path,
    interval_filter: IntervalFilter | None = None,
) -> Path:
    out_path = Path(out_dir)
    out_path.mkdir(parents=True, exist_ok=True)
    csv_path = out_path / "cyclelog.csv"

    names = {category.id: category.name for category in store.list_categories()}

    with csv_path.open("w", encoding="utf-8", newline="") as fp:
        writer = csv.writer(fp)
        writer.writerow(
            [
                "id",
                "category_id",
                "category",
                "phase",
                "start_time",
                "end_time",
                "planned_seconds",
                "actual_seconds",
                "status",
                "note",
            ]
        )
        for item in store.list_intervals(interval_filter):
            writer.writerow(
                [
                    item.id,
                    item.category_id if item.category_id is not None else "",
                    names.get(item.category_id, "") if item.category_id is not None else "",
                    item.phase.value,
                    item.start_time.isoformat(),
                    item.end_time.isoformat(),
                    item.planned_sec,
                    item.actual_sec,
                    item.status.value,
                    item.note or "",
                ]
            )

    return csv_path
