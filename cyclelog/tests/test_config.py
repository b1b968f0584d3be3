from __future__ import annotations

from datetime import datetime
import json
from pathlib import Path
import unittest

from cyclelog.config import (
    Settings,
    TimerConfig,
    load_settings,
    local_timezone,
    minutes_to_seconds,
    save_settings,
)
from cyclelog.errors import InvalidInput
from cyclelog.tests.test_helpers import local_tmp_dir


class TestTimerConfig(unittest.TestCase):
    def test_defaults(self) -> None:
        config = TimerConfig()
        self.assertEqual(config.work_sec, 1500)
        self.assertEqual(config.short_break_sec, 300)
        self.assertEqual(config.long_break_sec, 900)
        self.assertEqual(config.cycle_length, 4)
        self.assertFalse(config.auto_advance)

    def test_rejects_non_positive_durations(self) -> None:
        with self.assertRaises(InvalidInput):
            TimerConfig(work_sec=0)
        with self.assertRaises(InvalidInput):
            TimerConfig(short_break_sec=-5)
        with self.assertRaises(InvalidInput):
            TimerConfig(cycle_length=0)

    def test_minutes_to_seconds(self) -> None:
        self.assertEqual(minutes_to_seconds(25), 1500)
        self.assertEqual(minutes_to_seconds(0.001), 1)
        self.assertEqual(minutes_to_seconds(0), 0)


class TestSettings(unittest.TestCase):
    def test_missing_file_gives_defaults(self) -> None:
        with local_tmp_dir() as tmp:
            settings = load_settings(tmp / "absent.json", environ={})
            self.assertEqual(settings.timer, TimerConfig())
            self.assertEqual(settings.tick_seconds, 1.0)
            self.assertTrue(settings.seed_default_categories)

    def test_save_and_load(self) -> None:
        with local_tmp_dir() as tmp:
            path = tmp / "settings.json"
            original = Settings(
                timer=TimerConfig(work_sec=600, cycle_length=2, auto_advance=True),
                db_path=tmp / "db.sqlite",
                day_start_hour=4,
                notify=True,
            )
            save_settings(original, path)
            loaded = load_settings(path, environ={})
            self.assertEqual(loaded.timer.work_sec, 600)
            self.assertEqual(loaded.timer.cycle_length, 2)
            self.assertTrue(loaded.timer.auto_advance)
            self.assertEqual(loaded.db_path, tmp / "db.sqlite")
            self.assertEqual(loaded.day_start_hour, 4)
            self.assertTrue(loaded.notify)
            self.assertFalse(Path(str(path) + ".tmp").exists())

    def test_env_overrides(self) -> None:
        with local_tmp_dir() as tmp:
            settings = load_settings(
                tmp / "absent.json",
                environ={
                    "CYCLELOG_DB": str(tmp / "env.sqlite"),
                    "CYCLELOG_JOURNAL_MODE": "wal",
                    "CYCLELOG_AUTO_ADVANCE": "yes",
                },
            )
            self.assertEqual(settings.db_path, tmp / "env.sqlite")
            self.assertEqual(settings.journal_mode, "WAL")
            self.assertTrue(settings.timer.auto_advance)

    def test_invalid_values_raise(self) -> None:
        with local_tmp_dir() as tmp:
            path = tmp / "settings.json"
            path.write_text("{not json", encoding="utf-8")
            with self.assertRaises(InvalidInput):
                load_settings(path, environ={})

            path.write_text(json.dumps({"day_start_hour": 30}), encoding="utf-8")
            with self.assertRaises(InvalidInput):
                load_settings(path, environ={})

            path.write_text(json.dumps({"timezone": "Nowhere/Special"}), encoding="utf-8")
            with self.assertRaises(InvalidInput):
                load_settings(path, environ={})

    def test_local_timezone_is_aware(self) -> None:
        zone = local_timezone()
        self.assertIsNotNone(datetime(2026, 3, 2, 9, 0, tzinfo=zone).utcoffset())


if __name__ == "__main__":
    unittest.main()
