from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone, tzinfo
import json
import os
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import InvalidInput

SETTINGS_DIR_NAME = ".cyclelog"
SETTINGS_FILE_NAME = "settings.json"

DEFAULT_WORK_SEC = 25 * 60
DEFAULT_SHORT_BREAK_SEC = 5 * 60
DEFAULT_LONG_BREAK_SEC = 15 * 60
DEFAULT_CYCLE_LENGTH = 4


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off", ""}:
            return False
    return default


def minutes_to_seconds(minutes: float) -> int:
    if minutes <= 0:
        return 0
    seconds = int(round(minutes * 60))
    return max(1, seconds)


@dataclass(frozen=True)
class TimerConfig:
    work_sec: int = DEFAULT_WORK_SEC
    short_break_sec: int = DEFAULT_SHORT_BREAK_SEC
    long_break_sec: int = DEFAULT_LONG_BREAK_SEC
    cycle_length: int = DEFAULT_CYCLE_LENGTH
    auto_advance: bool = False

    def __post_init__(self) -> None:
        for name in ("work_sec", "short_break_sec", "long_break_sec"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise InvalidInput(f"{name} must be a positive integer, got {value!r}")
        if isinstance(self.cycle_length, bool) or not isinstance(self.cycle_length, int) or self.cycle_length < 1:
            raise InvalidInput(f"cycle_length must be >= 1, got {self.cycle_length!r}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "work_sec": self.work_sec,
            "short_break_sec": self.short_break_sec,
            "long_break_sec": self.long_break_sec,
            "cycle_length": self.cycle_length,
            "auto_advance": self.auto_advance,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> TimerConfig:
        try:
            return cls(
                work_sec=int(payload.get("work_sec", DEFAULT_WORK_SEC)),
                short_break_sec=int(payload.get("short_break_sec", DEFAULT_SHORT_BREAK_SEC)),
                long_break_sec=int(payload.get("long_break_sec", DEFAULT_LONG_BREAK_SEC)),
                cycle_length=int(payload.get("cycle_length", DEFAULT_CYCLE_LENGTH)),
                auto_advance=_as_bool(payload.get("auto_advance", False), False),
            )
        except (TypeError, ValueError) as exc:
            raise InvalidInput(f"invalid timer settings: {exc}") from exc


@dataclass(frozen=True)
class Settings:
    """Everything the core needs at startup. Immutable once loaded."""

    timer: TimerConfig = field(default_factory=TimerConfig)
    db_path: Path = field(default_factory=lambda: default_db_path())
    timezone: str = ""
    day_start_hour: int = 0
    tick_seconds: float = 1.0
    journal_mode: str = "MEMORY"
    busy_timeout_sec: float = 5.0
    notify: bool = False
    seed_default_categories: bool = True
    log_level: str = "WARNING"
    log_file: str = ""

    def __post_init__(self) -> None:
        if not 0 <= self.day_start_hour <= 23:
            raise InvalidInput(f"day_start_hour must be within 0..23, got {self.day_start_hour}")
        if self.tick_seconds <= 0:
            raise InvalidInput(f"tick_seconds must be > 0, got {self.tick_seconds}")
        if self.busy_timeout_sec <= 0:
            raise InvalidInput(f"busy_timeout_sec must be > 0, got {self.busy_timeout_sec}")
        if self.timezone:
            resolve_timezone(self.timezone)

    def tz(self) -> tzinfo:
        return resolve_timezone(self.timezone)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timer": self.timer.to_dict(),
            "db_path": str(self.db_path),
            "timezone": self.timezone,
            "day_start_hour": self.day_start_hour,
            "tick_seconds": self.tick_seconds,
            "journal_mode": self.journal_mode,
            "busy_timeout_sec": self.busy_timeout_sec,
            "notify": self.notify,
            "seed_default_categories": self.seed_default_categories,
            "log_level": self.log_level,
            "log_file": self.log_file,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Settings:
        timer_raw = payload.get("timer", {})
        if not isinstance(timer_raw, dict):
            raise InvalidInput("timer settings must be an object")
        db_raw = str(payload.get("db_path", "") or "").strip()
        try:
            return cls(
                timer=TimerConfig.from_dict(timer_raw),
                db_path=Path(db_raw).expanduser() if db_raw else default_db_path(),
                timezone=str(payload.get("timezone", "") or "").strip(),
                day_start_hour=int(payload.get("day_start_hour", 0)),
                tick_seconds=float(payload.get("tick_seconds", 1.0)),
                journal_mode=str(payload.get("journal_mode", "MEMORY") or "MEMORY").strip().upper(),
                busy_timeout_sec=float(payload.get("busy_timeout_sec", 5.0)),
                notify=_as_bool(payload.get("notify", False), False),
                seed_default_categories=_as_bool(payload.get("seed_default_categories", True), True),
                log_level=str(payload.get("log_level", "WARNING") or "WARNING").strip().upper(),
                log_file=str(payload.get("log_file", "") or "").strip(),
            )
        except (TypeError, ValueError) as exc:
            raise InvalidInput(f"invalid settings: {exc}") from exc


def resolve_timezone(name: str) -> tzinfo:
    if not name:
        return local_timezone()
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidInput(f"unknown timezone: {name}") from exc


def local_timezone() -> tzinfo:
    return datetime.now().astimezone().tzinfo or timezone.utc


def default_db_path() -> Path:
    return Path(__file__).resolve().parent / "data" / "cyclelog.sqlite"


def default_settings_path(home: Path | None = None) -> Path:
    base = home if home is not None else Path.home()
    return base / SETTINGS_DIR_NAME / SETTINGS_FILE_NAME


def load_settings(path: Path | None = None, environ: dict[str, str] | None = None) -> Settings:
    target = path or default_settings_path()
    payload: dict[str, Any] = {}
    if target.exists():
        try:
            with target.open("r", encoding="utf-8") as fp:
                payload = json.load(fp)
        except json.JSONDecodeError as exc:
            raise InvalidInput(f"settings file is not valid JSON: {target}") from exc
        if not isinstance(payload, dict):
            raise InvalidInput(f"settings file must contain an object: {target}")
    settings = Settings.from_dict(payload)
    return apply_env_overrides(settings, os.environ if environ is None else environ)


def apply_env_overrides(settings: Settings, environ: Any) -> Settings:
    db_env = (environ.get("CYCLELOG_DB") or "").strip()
    if db_env:
        settings = replace(settings, db_path=Path(db_env).expanduser())
    journal_env = (environ.get("CYCLELOG_JOURNAL_MODE") or "").strip()
    if journal_env:
        settings = replace(settings, journal_mode=journal_env.upper())
    auto_env = environ.get("CYCLELOG_AUTO_ADVANCE")
    if auto_env is not None:
        timer = replace(settings.timer, auto_advance=_as_bool(auto_env, settings.timer.auto_advance))
        settings = replace(settings, timer=timer)
    return settings


def save_settings(settings: Settings, path: Path | None = None) -> Path:
    target = path or default_settings_path()
    target.parent.mkdir(parents=True, exist_ok=True)
    temp_path = target.with_suffix(target.suffix + ".tmp")
    with temp_path.open("w", encoding="utf-8") as fp:
        json.dump(settings.to_dict(), fp, indent=2, ensure_ascii=False, sort_keys=True)
        fp.write("\n")
    temp_path.replace(target)
    return target
