from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import os
from pathlib import Path
import re
import sqlite3
import threading
from typing import Iterator

from .config import default_db_path
from .errors import (
    CategoryInUse,
    DuplicateCategory,
    InvalidCategory,
    InvalidInput,
    NotFound,
    StorageUnavailable,
)
from .models import (
    INTERVAL_PHASES,
    Category,
    DeletePolicy,
    IntervalFilter,
    IntervalRecord,
    IntervalStatus,
    Phase,
    StoredInterval,
)

logger = logging.getLogger(__name__)

DEFAULT_COLOR = "#808080"
DEFAULT_PAGE_SIZE = 500
NOTE_MAX_LENGTH = 200
_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")

DEFAULT_CATEGORIES = (
    ("work", "#FF6B6B"),
    ("study", "#4ECDC4"),
    ("coding", "#45B7D1"),
    ("reading", "#96CEB4"),
    ("exercise", "#FFEAA7"),
    ("other", "#DFE6E9"),
)

_INTERVAL_COLUMNS = (
    "id, category_id, phase, start_ts, end_ts, planned_seconds, actual_seconds, status, note"
)

# One writer at a time per database file, across every SessionStore instance.
_WRITE_LOCKS: dict[str, threading.Lock] = {}
_WRITE_LOCKS_GUARD = threading.Lock()


def _writer_lock(db_path: Path) -> threading.Lock:
    key = str(db_path.resolve())
    with _WRITE_LOCKS_GUARD:
        lock = _WRITE_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _WRITE_LOCKS[key] = lock
        return lock


def _to_utc_text(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S")


def _from_utc_text(text: str) -> datetime:
    return datetime.strptime(text, "%Y-%m-%dT%H:%M:%S").replace(tzinfo=timezone.utc)


def _check_name(name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidInput("category name cannot be empty")
    return name


def _check_color(color: str | None) -> str:
    if color is None:
        return DEFAULT_COLOR
    if not _COLOR_RE.match(color):
        raise InvalidInput(f"color must look like #RRGGBB, got {color!r}")
    return color.upper()


def clean_note(note: str | None) -> str | None:
    """Strip a free-text note; blank becomes ``None``."""
    if note is None:
        return None
    if not isinstance(note, str):
        raise InvalidInput("note must be text")
    text = note.strip()
    if not text:
        return None
    if len(text) > NOTE_MAX_LENGTH:
        raise InvalidInput(f"note is longer than {NOTE_MAX_LENGTH} characters")
    return text


def _check_record(record: IntervalRecord) -> None:
    if record.phase not in INTERVAL_PHASES:
        raise InvalidInput(f"cannot record an interval for phase {record.phase.value}")
    if record.phase is Phase.WORK and record.category_id is None:
        raise InvalidInput("work intervals need a category")
    if record.end_time < record.start_time:
        raise InvalidInput("interval ends before it starts")
    if record.planned_sec <= 0:
        raise InvalidInput("planned duration must be positive")
    if record.actual_sec < 0 or record.actual_sec > record.planned_sec:
        raise InvalidInput("actual duration must be within 0..planned")
    if record.status is IntervalStatus.COMPLETED and record.actual_sec != record.planned_sec:
        raise InvalidInput("completed intervals must run their planned duration")


def _row_to_interval(row: sqlite3.Row) -> StoredInterval:
    category_id = row["category_id"]
    return StoredInterval(
        id=int(row["id"]),
        category_id=int(category_id) if category_id is not None else None,
        phase=Phase(row["phase"]),
        start_time=_from_utc_text(row["start_ts"]),
        end_time=_from_utc_text(row["end_ts"]),
        planned_sec=int(row["planned_seconds"]),
        actual_sec=int(row["actual_seconds"]),
        status=IntervalStatus(row["status"]),
        note=row["note"],
    )


def _row_to_category(row: sqlite3.Row) -> Category:
    return Category(id=int(row["id"]), name=row["name"], color=row["color"])


class SessionStore:
    """Durable categories and append-only interval history in one SQLite file."""

    def __init__(
        self,
        db_path: Path | None = None,
        journal_mode: str | None = None,
        busy_timeout_sec: float = 5.0,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self.db_path = Path(db_path or default_db_path())
        raw_mode = (journal_mode or os.getenv("CYCLELOG_JOURNAL_MODE") or "MEMORY").strip()
        self.journal_mode = raw_mode.upper() if raw_mode else "MEMORY"
        self.busy_timeout_sec = max(0.1, float(busy_timeout_sec))
        self.page_size = max(1, int(page_size))
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageUnavailable(f"cannot create data directory {self.db_path.parent}: {exc}") from exc
        self._write_lock = _writer_lock(self.db_path)
        self.init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout_sec)
        conn.row_factory = sqlite3.Row
        self._apply_journal_mode(conn)
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _apply_journal_mode(self, conn: sqlite3.Connection) -> None:
        try:
            conn.execute(f"PRAGMA journal_mode={self.journal_mode}")
        except sqlite3.OperationalError:
            conn.execute("PRAGMA journal_mode=MEMORY")

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            logger.error("cannot open %s: %s", self.db_path, exc)
            raise StorageUnavailable(f"cannot open database {self.db_path}: {exc}") from exc
        try:
            yield conn
        except sqlite3.Error as exc:
            logger.error("read failed on %s: %s", self.db_path, exc)
            raise StorageUnavailable(f"database read failed: {exc}") from exc
        finally:
            conn.close()

    @contextmanager
    def _writing(self) -> Iterator[sqlite3.Connection]:
        """Single writer, single transaction: commits on success, rolls back on any error."""
        if not self._write_lock.acquire(timeout=self.busy_timeout_sec):
            raise StorageUnavailable("timed out waiting for the database writer lock")
        try:
            try:
                conn = self._connect()
            except sqlite3.Error as exc:
                logger.error("cannot open %s: %s", self.db_path, exc)
                raise StorageUnavailable(f"cannot open database {self.db_path}: {exc}") from exc
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.commit()
            except sqlite3.IntegrityError:
                conn.rollback()
                raise
            except sqlite3.Error as exc:
                conn.rollback()
                logger.error("write failed on %s: %s", self.db_path, exc)
                raise StorageUnavailable(f"database write failed: {exc}") from exc
            except BaseException:
                conn.rollback()
                raise
            finally:
                conn.close()
        finally:
            self._write_lock.release()

    def init_schema(self) -> None:
        with self._writing() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS categories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE CHECK (length(trim(name)) > 0),
                    color TEXT NOT NULL DEFAULT '#808080'
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS intervals (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    category_id INTEGER REFERENCES categories(id),
                    phase TEXT NOT NULL CHECK (phase IN ('work', 'short_break', 'long_break')),
                    start_ts TEXT NOT NULL,
                    end_ts TEXT NOT NULL CHECK (end_ts >= start_ts),
                    planned_seconds INTEGER NOT NULL CHECK (planned_seconds > 0),
                    actual_seconds INTEGER NOT NULL
                        CHECK (actual_seconds >= 0 AND actual_seconds <= planned_seconds),
                    status TEXT NOT NULL CHECK (status IN ('completed', 'abandoned')),
                    note TEXT CHECK (note IS NULL OR length(note) <= 200),
                    CHECK (status = 'abandoned' OR actual_seconds = planned_seconds),
                    CHECK (phase != 'work' OR category_id IS NOT NULL)
                )
                """
            )
            columns = {row["name"] for row in conn.execute("PRAGMA table_info(intervals)")}
            if "note" not in columns:
                conn.execute("ALTER TABLE intervals ADD COLUMN note TEXT")
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_intervals_start_ts
                ON intervals(start_ts, id)
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_intervals_category
                ON intervals(category_id)
                """
            )
            conn.execute(
                """
                CREATE TRIGGER IF NOT EXISTS intervals_append_only
                BEFORE UPDATE ON intervals
                BEGIN
                    SELECT RAISE(ABORT, 'interval records are append-only');
                END
                """
            )

    def seed_default_categories(self) -> int:
        """Insert the stock categories when none exist yet; returns how many were added."""
        with self._writing() as conn:
            count = conn.execute("SELECT COUNT(*) FROM categories").fetchone()[0]
            if count:
                return 0
            conn.executemany(
                "INSERT OR IGNORE INTO categories (name, color) VALUES (?, ?)",
                DEFAULT_CATEGORIES,
            )
        logger.info("seeded %d default categories", len(DEFAULT_CATEGORIES))
        return len(DEFAULT_CATEGORIES)

    # -- categories ---------------------------------------------------------

    def create_category(self, name: str, color: str | None = None) -> int:
        clean_name = _check_name(name)
        clean_color = _check_color(color)
        try:
            with self._writing() as conn:
                cur = conn.execute(
                    "INSERT INTO categories (name, color) VALUES (?, ?)",
                    (clean_name, clean_color),
                )
                category_id = int(cur.lastrowid)
        except sqlite3.IntegrityError as exc:
            raise DuplicateCategory(f"category already exists: {clean_name}") from exc
        logger.info("created category %s (%d)", clean_name, category_id)
        return category_id

    def rename_category(self, category_id: int, new_name: str) -> Category:
        clean_name = _check_name(new_name)
        try:
            with self._writing() as conn:
                row = conn.execute(
                    "SELECT id, name, color FROM categories WHERE id = ?",
                    (category_id,),
                ).fetchone()
                if row is None:
                    raise NotFound(f"category {category_id} not found")
                if row["name"] != clean_name:
                    conn.execute(
                        "UPDATE categories SET name = ? WHERE id = ?",
                        (clean_name, category_id),
                    )
        except sqlite3.IntegrityError as exc:
            raise DuplicateCategory(f"category already exists: {clean_name}") from exc
        logger.info("renamed category %d to %s", category_id, clean_name)
        return Category(id=int(row["id"]), name=clean_name, color=row["color"])

    def delete_category(
        self,
        category_id: int,
        policy: DeletePolicy = DeletePolicy.REJECT_IF_REFERENCED,
    ) -> int:
        """Delete a category; returns the number of interval records removed with it."""
        with self._writing() as conn:
            row = conn.execute("SELECT id FROM categories WHERE id = ?", (category_id,)).fetchone()
            if row is None:
                raise NotFound(f"category {category_id} not found")
            referenced = conn.execute(
                "SELECT COUNT(*) FROM intervals WHERE category_id = ?",
                (category_id,),
            ).fetchone()[0]
            if referenced and policy is not DeletePolicy.CASCADE_DELETE_SESSIONS:
                raise CategoryInUse(
                    f"category {category_id} is referenced by {referenced} interval(s)"
                )
            if referenced:
                conn.execute("DELETE FROM intervals WHERE category_id = ?", (category_id,))
            conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
        logger.info("deleted category %d (%d intervals removed)", category_id, referenced)
        return int(referenced)

    def get_category(self, category_id: int) -> Category | None:
        with self._reading() as conn:
            row = conn.execute(
                "SELECT id, name, color FROM categories WHERE id = ?",
                (category_id,),
            ).fetchone()
        return _row_to_category(row) if row is not None else None

    def find_category(self, name: str) -> Category | None:
        with self._reading() as conn:
            row = conn.execute(
                "SELECT id, name, color FROM categories WHERE name = ?",
                (name,),
            ).fetchone()
        return _row_to_category(row) if row is not None else None

    def list_categories(self) -> list[Category]:
        with self._reading() as conn:
            rows = conn.execute("SELECT id, name, color FROM categories ORDER BY name ASC, id ASC").fetchall()
        return [_row_to_category(row) for row in rows]

    # -- intervals ----------------------------------------------------------

    def record_interval(self, record: IntervalRecord) -> StoredInterval:
        _check_record(record)
        note = clean_note(record.note)
        values = (
            record.category_id,
            record.phase.value,
            _to_utc_text(record.start_time),
            _to_utc_text(record.end_time),
            int(record.planned_sec),
            int(record.actual_sec),
            record.status.value,
            note,
        )
        try:
            with self._writing() as conn:
                cur = conn.execute(
                    """
                    INSERT INTO intervals (
                        category_id,
                        phase,
                        start_ts,
                        end_ts,
                        planned_seconds,
                        actual_seconds,
                        status,
                        note
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    values,
                )
                interval_id = int(cur.lastrowid)
        except sqlite3.IntegrityError as exc:
            if "FOREIGN KEY" in str(exc).upper():
                raise InvalidCategory(f"category {record.category_id} does not exist") from exc
            raise InvalidInput(f"interval rejected: {exc}") from exc

        stored = StoredInterval(
            id=interval_id,
            category_id=record.category_id,
            phase=record.phase,
            start_time=_from_utc_text(values[2]),
            end_time=_from_utc_text(values[3]),
            planned_sec=int(record.planned_sec),
            actual_sec=int(record.actual_sec),
            status=record.status,
            note=note,
        )
        logger.debug(
            "recorded %s %s interval %d (%ds of %ds)",
            stored.status.value,
            stored.phase.value,
            stored.id,
            stored.actual_sec,
            stored.planned_sec,
        )
        return stored

    def get_interval(self, interval_id: int) -> StoredInterval | None:
        with self._reading() as conn:
            row = conn.execute(
                f"SELECT {_INTERVAL_COLUMNS} FROM intervals WHERE id = ?",
                (interval_id,),
            ).fetchone()
        return _row_to_interval(row) if row is not None else None

    def list_intervals(self, interval_filter: IntervalFilter | None = None) -> IntervalQuery:
        return IntervalQuery(self, interval_filter or IntervalFilter())

    def list_all_intervals(self) -> list[StoredInterval]:
        return list(self.list_intervals())

    def _fetch_page(
        self,
        clauses: list[str],
        params: list[object],
        after: tuple[str, int] | None,
        limit: int,
        offset: int = 0,
    ) -> list[StoredInterval]:
        where = list(clauses)
        args = list(params)
        if after is not None:
            where.append("(start_ts > ? OR (start_ts = ? AND id > ?))")
            args.extend([after[0], after[0], after[1]])
        query = (
            f"SELECT {_INTERVAL_COLUMNS} FROM intervals "
            f"WHERE {' AND '.join(where)} "
            "ORDER BY start_ts ASC, id ASC "
            "LIMIT ? OFFSET ?"
        )
        args.extend([int(limit), int(offset)])
        with self._reading() as conn:
            rows = conn.execute(query, args).fetchall()
        return [_row_to_interval(row) for row in rows]

    def _count(self, clauses: list[str], params: list[object]) -> int:
        query = f"SELECT COUNT(*) FROM intervals WHERE {' AND '.join(clauses)}"
        with self._reading() as conn:
            return int(conn.execute(query, params).fetchone()[0])


@dataclass(frozen=True)
class IntervalQuery:
    """Lazy view over matching intervals, oldest first.

    Every iteration starts over and pulls rows page by page, so callers can
    walk an unbounded history without loading it at once.
    """

    store: SessionStore
    interval_filter: IntervalFilter

    def _where(self) -> tuple[list[str], list[object]]:
        clauses = ["1=1"]
        params: list[object] = []
        flt = self.interval_filter
        if flt.category_id is not None:
            clauses.append("category_id = ?")
            params.append(int(flt.category_id))
        if flt.phase is not None:
            clauses.append("phase = ?")
            params.append(Phase(flt.phase).value)
        if flt.status is not None:
            clauses.append("status = ?")
            params.append(IntervalStatus(flt.status).value)
        if flt.time_range.start is not None:
            clauses.append("start_ts >= ?")
            params.append(_to_utc_text(flt.time_range.start))
        if flt.time_range.end is not None:
            clauses.append("start_ts < ?")
            params.append(_to_utc_text(flt.time_range.end))
        return clauses, params

    def __iter__(self) -> Iterator[StoredInterval]:
        clauses, params = self._where()
        after: tuple[str, int] | None = None
        while True:
            page = self.store._fetch_page(clauses, params, after, self.store.page_size)
            yield from page
            if len(page) < self.store.page_size:
                return
            last = page[-1]
            after = (_to_utc_text(last.start_time), last.id)

    def count(self) -> int:
        clauses, params = self._where()
        return self.store._count(clauses, params)

    def page(self, offset: int = 0, limit: int = 50) -> list[StoredInterval]:
        if offset < 0 or limit < 1:
            raise InvalidInput("offset must be >= 0 and limit >= 1")
        clauses, params = self._where()
        return self.store._fetch_page(clauses, params, None, limit, offset)
