from __future__ import annotations

from datetime import datetime
import unittest

from cyclelog.db import SessionStore
from cyclelog.models import IntervalStatus
from cyclelog.reporting import format_countdown, format_duration, format_rate, generate_weekly_report
from cyclelog.stats import StatsAggregator
from cyclelog.tests.test_helpers import UTC, add_interval, local_tmp_dir


class TestReport(unittest.TestCase):
    def test_generate_weekly_report_markdown(self) -> None:
        with local_tmp_dir() as tmp:
            store = SessionStore(tmp / "cyclelog.sqlite")
            out_dir = tmp / "out"
            now = datetime(2026, 2, 13, 12, 0, tzinfo=UTC)
            paper = store.create_category("写论文")
            reading = store.create_category("看文献")
            outside = store.create_category("周外任务")

            add_interval(store, paper, datetime(2026, 2, 10, 9, 0, tzinfo=UTC), planned_sec=1800)
            add_interval(store, reading, datetime(2026, 2, 12, 14, 0, tzinfo=UTC), planned_sec=1200)
            add_interval(
                store,
                reading,
                datetime(2026, 2, 12, 15, 0, tzinfo=UTC),
                actual_sec=100,
                status=IntervalStatus.ABANDONED,
            )
            add_interval(store, outside, datetime(2026, 2, 3, 9, 0, tzinfo=UTC), planned_sec=600)

            report_path = generate_weekly_report(
                stats=StatsAggregator(store, tz=UTC),
                out_dir=out_dir,
                year=2026,
                week=7,
                now=now,
            )

            self.assertTrue(report_path.exists())
            self.assertEqual(report_path.name, "week-2026-07.md")
            content = report_path.read_text(encoding="utf-8")
            self.assertIn("# CycleLog 周报 2026-W07", content)
            self.assertIn("| 写论文 | 30分00秒 | 1 |", content)
            self.assertIn("看文献", content)
            self.assertNotIn("周外任务", content)
            self.assertIn("完成率：66.7%", content)
            self.assertIn("| 2026-02-09 | 0分00秒 |", content)
            self.assertIn("| 2026-02-15 | 0分00秒 |", content)

    def test_empty_week(self) -> None:
        with local_tmp_dir() as tmp:
            store = SessionStore(tmp / "cyclelog.sqlite")
            report_path = generate_weekly_report(
                stats=StatsAggregator(store, tz=UTC),
                out_dir=tmp,
                now=datetime(2026, 2, 13, 12, 0, tzinfo=UTC),
            )
            content = report_path.read_text(encoding="utf-8")
            self.assertIn("2026-W07", content)
            self.assertIn("本周暂无完成的工作区间。", content)
            self.assertIn("完成率：0.0%", content)


class TestFormatting(unittest.TestCase):
    def test_format_duration(self) -> None:
        self.assertEqual(format_duration(0), "0分00秒")
        self.assertEqual(format_duration(1500), "25分00秒")
        self.assertEqual(format_duration(3725), "1小时02分05秒")

    def test_format_countdown_rounds_up(self) -> None:
        self.assertEqual(format_countdown(59.2), "01:00")
        self.assertEqual(format_countdown(0), "00:00")
        self.assertEqual(format_countdown(3600), "01:00:00")

    def test_format_rate(self) -> None:
        self.assertEqual(format_rate(0.75), "75.0%")


if __name__ == "__main__":
    unittest.main()
