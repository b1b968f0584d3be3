from __future__ import annotations

from datetime import datetime, timedelta
import sqlite3
import unittest

from cyclelog.db import DEFAULT_CATEGORIES, SessionStore
from cyclelog.errors import (
    CategoryInUse,
    DuplicateCategory,
    InvalidCategory,
    InvalidInput,
    NotFound,
    StorageUnavailable,
)
from cyclelog.models import (
    DeletePolicy,
    IntervalFilter,
    IntervalRecord,
    IntervalStatus,
    Phase,
    TimeRange,
)
from cyclelog.tests.test_helpers import UTC, add_interval, local_tmp_dir


class TestSchema(unittest.TestCase):
    def test_schema_created(self) -> None:
        with local_tmp_dir() as tmp:
            db_path = tmp / "data" / "cyclelog.sqlite"
            SessionStore(db_path)

            with sqlite3.connect(db_path) as conn:
                names = {
                    row[0]
                    for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
                }

            self.assertIn("categories", names)
            self.assertIn("intervals", names)

    def test_unopenable_path_is_storage_unavailable(self) -> None:
        with local_tmp_dir() as tmp:
            (tmp / "taken").mkdir()
            with self.assertRaises(StorageUnavailable):
                SessionStore(tmp / "taken")

    def test_interval_rows_are_append_only(self) -> None:
        with local_tmp_dir() as tmp:
            store = SessionStore(tmp / "cyclelog.sqlite")
            category_id = store.create_category("写作")
            stored = add_interval(store, category_id, datetime(2026, 3, 2, 9, 0, tzinfo=UTC))

            conn = sqlite3.connect(store.db_path)
            try:
                with self.assertRaises(sqlite3.DatabaseError):
                    conn.execute("UPDATE intervals SET actual_seconds = 1 WHERE id = ?", (stored.id,))
                with self.assertRaises(sqlite3.DatabaseError):
                    conn.execute("UPDATE intervals SET note = '改写' WHERE id = ?", (stored.id,))
            finally:
                conn.close()
            self.assertEqual(store.get_interval(stored.id), stored)


class TestCategories(unittest.TestCase):
    def test_seed_only_when_empty(self) -> None:
        with local_tmp_dir() as tmp:
            store = SessionStore(tmp / "cyclelog.sqlite")
            self.assertEqual(store.seed_default_categories(), len(DEFAULT_CATEGORIES))
            self.assertEqual(store.seed_default_categories(), 0)
            names = [item.name for item in store.list_categories()]
            self.assertEqual(names, sorted(name for name, _ in DEFAULT_CATEGORIES))

    def test_create_rename_and_lookup(self) -> None:
        with local_tmp_dir() as tmp:
            store = SessionStore(tmp / "cyclelog.sqlite")
            category_id = store.create_category("阅读", color="#a1b2c3")
            category = store.get_category(category_id)
            assert category is not None
            self.assertEqual(category.color, "#A1B2C3")

            renamed = store.rename_category(category_id, "精读")
            self.assertEqual(renamed.id, category_id)
            self.assertEqual(renamed.name, "精读")
            self.assertIsNone(store.find_category("阅读"))
            self.assertEqual(store.find_category("精读"), renamed)

            self.assertEqual(store.get_category(store.create_category("Other")).color, "#808080")

    def test_names_are_unique_and_case_sensitive(self) -> None:
        with local_tmp_dir() as tmp:
            store = SessionStore(tmp / "cyclelog.sqlite")
            first = store.create_category("Coding")
            store.create_category("coding")
            with self.assertRaises(DuplicateCategory):
                store.create_category("Coding")
            second = store.create_category("Reading")
            with self.assertRaises(DuplicateCategory):
                store.rename_category(second, "Coding")
            self.assertEqual(store.get_category(first).name, "Coding")

    def test_invalid_names_and_colors(self) -> None:
        with local_tmp_dir() as tmp:
            store = SessionStore(tmp / "cyclelog.sqlite")
            with self.assertRaises(InvalidInput):
                store.create_category("   ")
            with self.assertRaises(InvalidInput):
                store.create_category("x", color="red")
            with self.assertRaises(NotFound):
                store.rename_category(999, "x")
            with self.assertRaises(NotFound):
                store.delete_category(999)

    def test_delete_reject_and_cascade(self) -> None:
        with local_tmp_dir() as tmp:
            store = SessionStore(tmp / "cyclelog.sqlite")
            used = store.create_category("项目")
            other = store.create_category("杂项")
            start = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
            add_interval(store, used, start)
            add_interval(store, used, start + timedelta(hours=1))
            kept = add_interval(store, other, start + timedelta(hours=2))

            with self.assertRaises(CategoryInUse):
                store.delete_category(used)
            self.assertIsNotNone(store.get_category(used))
            self.assertEqual(len(store.list_all_intervals()), 3)

            removed = store.delete_category(used, DeletePolicy.CASCADE_DELETE_SESSIONS)
            self.assertEqual(removed, 2)
            self.assertIsNone(store.get_category(used))
            self.assertEqual(store.list_all_intervals(), [kept])

            unused = store.create_category("空")
            self.assertEqual(store.delete_category(unused), 0)


class TestIntervals(unittest.TestCase):
    def test_record_and_get(self) -> None:
        with local_tmp_dir() as tmp:
            store = SessionStore(tmp / "cyclelog.sqlite")
            category_id = store.create_category("测试")
            start = datetime(2026, 3, 2, 9, 0, 0, 700000, tzinfo=UTC)
            stored = add_interval(
                store,
                category_id,
                start,
                planned_sec=1500,
                actual_sec=600,
                status=IntervalStatus.ABANDONED,
            )
            loaded = store.get_interval(stored.id)
            self.assertEqual(loaded, stored)
            assert loaded is not None
            self.assertEqual(loaded.start_time, datetime(2026, 3, 2, 9, 0, tzinfo=UTC))
            self.assertFalse(loaded.completed)
            self.assertIsNone(store.get_interval(stored.id + 100))

    def test_breaks_have_no_category(self) -> None:
        with local_tmp_dir() as tmp:
            store = SessionStore(tmp / "cyclelog.sqlite")
            stored = add_interval(
                store,
                None,
                datetime(2026, 3, 2, 9, 25, tzinfo=UTC),
                planned_sec=300,
                phase=Phase.SHORT_BREAK,
            )
            self.assertIsNone(stored.category_id)
            self.assertEqual(stored.phase, Phase.SHORT_BREAK)

    def test_rejects_invalid_records(self) -> None:
        with local_tmp_dir() as tmp:
            store = SessionStore(tmp / "cyclelog.sqlite")
            category_id = store.create_category("测试")
            start = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

            def record(**changes: object) -> IntervalRecord:
                values: dict[str, object] = dict(
                    category_id=category_id,
                    phase=Phase.WORK,
                    start_time=start,
                    end_time=start + timedelta(minutes=25),
                    planned_sec=1500,
                    actual_sec=1500,
                    status=IntervalStatus.COMPLETED,
                )
                values.update(changes)
                return IntervalRecord(**values)  # type: ignore[arg-type]

            with self.assertRaises(InvalidInput):
                store.record_interval(record(category_id=None))
            with self.assertRaises(InvalidInput):
                store.record_interval(record(actual_sec=1200))
            with self.assertRaises(InvalidInput):
                store.record_interval(record(actual_sec=1600, status=IntervalStatus.ABANDONED))
            with self.assertRaises(InvalidInput):
                store.record_interval(record(end_time=start - timedelta(seconds=1)))
            with self.assertRaises(InvalidInput):
                store.record_interval(record(phase=Phase.IDLE))
            with self.assertRaises(InvalidCategory):
                store.record_interval(record(category_id=category_id + 50))
            self.assertEqual(store.list_all_intervals(), [])

    def test_notes_are_cleaned(self) -> None:
        with local_tmp_dir() as tmp:
            store = SessionStore(tmp / "cyclelog.sqlite")
            category_id = store.create_category("测试")
            start = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

            stored = add_interval(store, category_id, start, note="  第一章初稿  ")
            self.assertEqual(stored.note, "第一章初稿")
            self.assertEqual(store.get_interval(stored.id).note, "第一章初稿")
            blank = add_interval(store, category_id, start + timedelta(hours=1), note="   ")
            self.assertIsNone(blank.note)
            self.assertIsNone(add_interval(store, category_id, start + timedelta(hours=2)).note)

            with self.assertRaises(InvalidInput):
                add_interval(store, category_id, start + timedelta(hours=3), note="长" * 201)
            self.assertEqual(len(store.list_all_intervals()), 3)

    def test_note_column_added_to_older_databases(self) -> None:
        with local_tmp_dir() as tmp:
            db_path = tmp / "cyclelog.sqlite"
            with sqlite3.connect(db_path) as conn:
                conn.execute(
                    "CREATE TABLE intervals (id INTEGER PRIMARY KEY AUTOINCREMENT, category_id INTEGER, "
                    "phase TEXT NOT NULL, start_ts TEXT NOT NULL, end_ts TEXT NOT NULL, "
                    "planned_seconds INTEGER NOT NULL, actual_seconds INTEGER NOT NULL, status TEXT NOT NULL)"
                )
                conn.execute(
                    "INSERT INTO intervals (phase, start_ts, end_ts, planned_seconds, actual_seconds, status) "
                    "VALUES ('short_break', '2026-03-02T09:00:00', '2026-03-02T09:05:00', 300, 300, 'completed')"
                )
            conn.close()

            store = SessionStore(db_path)
            [old] = store.list_all_intervals()
            self.assertIsNone(old.note)
            self.assertEqual(old.phase, Phase.SHORT_BREAK)

    def test_filters_and_half_open_range(self) -> None:
        with local_tmp_dir() as tmp:
            store = SessionStore(tmp / "cyclelog.sqlite")
            a = store.create_category("A")
            b = store.create_category("B")
            day = datetime(2026, 3, 2, 0, 0, tzinfo=UTC)
            first = add_interval(store, a, day + timedelta(hours=9))
            add_interval(store, None, day + timedelta(hours=10), planned_sec=300, phase=Phase.SHORT_BREAK)
            add_interval(
                store,
                b,
                day + timedelta(hours=11),
                actual_sec=60,
                status=IntervalStatus.ABANDONED,
            )
            add_interval(store, a, day + timedelta(days=1))

            in_day = TimeRange(day, day + timedelta(days=1))
            self.assertEqual(store.list_intervals(IntervalFilter(time_range=in_day)).count(), 3)
            self.assertEqual(
                list(store.list_intervals(IntervalFilter(category_id=a, time_range=in_day))),
                [first],
            )
            self.assertEqual(store.list_intervals(IntervalFilter(phase=Phase.SHORT_BREAK)).count(), 1)
            self.assertEqual(store.list_intervals(IntervalFilter(status=IntervalStatus.ABANDONED)).count(), 1)
            self.assertEqual(
                store.list_intervals(IntervalFilter(time_range=TimeRange(start=day + timedelta(days=1)))).count(),
                1,
            )

    def test_iteration_pages_in_start_order(self) -> None:
        with local_tmp_dir() as tmp:
            store = SessionStore(tmp / "cyclelog.sqlite", page_size=2)
            category_id = store.create_category("分页")
            base = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
            for offset in (4, 0, 3, 1, 2):
                add_interval(store, category_id, base + timedelta(hours=offset), planned_sec=60)
            add_interval(store, category_id, base + timedelta(hours=2), planned_sec=60)

            items = list(store.list_intervals())
            self.assertEqual(len(items), 6)
            keys = [(item.start_time, item.id) for item in items]
            self.assertEqual(keys, sorted(keys))

            page = store.list_intervals().page(offset=2, limit=3)
            self.assertEqual(page, items[2:5])
            with self.assertRaises(InvalidInput):
                store.list_intervals().page(offset=-1)

    def test_second_store_sees_committed_writes(self) -> None:
        with local_tmp_dir() as tmp:
            path = tmp / "cyclelog.sqlite"
            writer = SessionStore(path)
            reader = SessionStore(path)
            category_id = writer.create_category("共享")
            stored = add_interval(writer, category_id, datetime(2026, 3, 2, 9, 0, tzinfo=UTC))
            self.assertEqual(reader.get_interval(stored.id), stored)
            self.assertEqual(reader.find_category("共享").id, category_id)


if __name__ == "__main__":
    unittest.main()
