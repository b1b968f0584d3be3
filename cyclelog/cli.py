from __future__ import annotations

import argparse
from dataclasses import replace
from datetime import date, datetime, time as dtime, timedelta
from pathlib import Path
import sys
import threading
from typing import Any, TextIO

from .clock import RealClock
from .config import Settings, TimerConfig, load_settings, minutes_to_seconds
from .control import Command, ControlLoop
from .db import SessionStore
from .engine import NOTICE_INTERVAL_DROPPED, TimerEngine
from .errors import CycleLogError, InvalidInput, NotFound, StorageUnavailable
from .exporting import export_intervals_csv
from .logs import configure_logging
from .models import INTERVAL_PHASES, Category, DeletePolicy, IntervalFilter, IntervalStatus, Phase, TimeRange, Transition
from .notifier import Notifier
from .reporting import format_countdown, format_duration, format_rate, generate_weekly_report
from .stats import PERIODS, StatsAggregator

DEFAULT_OUT_DIR = Path(__file__).resolve().parent / "out"

PERIOD_TITLES = {
    "today": "今天",
    "week": "本周",
    "month": "本月",
    "year": "今年",
    "last_7_days": "最近 7 天",
}

RUN_HELP = "命令：p 暂停  r 继续  s 跳过  x 停止  n [分类] 开始下一阶段  c <分类> 预选分类  q 退出"


def parse_since(value: str) -> datetime:
    text = value.strip()
    local_tz = datetime.now().astimezone().tzinfo
    if local_tz is None:
        raise argparse.ArgumentTypeError("无法识别本地时区")

    try:
        if len(text) == 10:
            day = date.fromisoformat(text)
            return datetime.combine(day, dtime.min).replace(tzinfo=local_tz)

        dt = datetime.fromisoformat(text)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=local_tz)
        return dt
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            f"时间格式错误：{value}，请使用 YYYY-MM-DD 或 ISO 日期时间"
        ) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cyclelog",
        description="CycleLog：离线的番茄钟、分类记录与统计工具",
    )
    parser.add_argument("--db", default=None, help="SQLite 数据库路径（覆盖配置文件）")
    parser.add_argument("--config", default=None, help="配置文件路径（默认 ~/.cyclelog/settings.json）")
    parser.add_argument("--log-level", default=None, help="日志级别，例如 INFO、DEBUG")

    subparsers = parser.add_subparsers(dest="command", required=True)

    category_parser = subparsers.add_parser("category", help="管理分类")
    category_sub = category_parser.add_subparsers(dest="category_command", required=True)
    category_sub.add_parser("list", help="列出分类")
    add_parser = category_sub.add_parser("add", help="新建分类")
    add_parser.add_argument("name", help="分类名称（区分大小写）")
    add_parser.add_argument("--color", default=None, help="颜色，形如 #FF6B6B")
    rename_parser = category_sub.add_parser("rename", help="重命名分类")
    rename_parser.add_argument("category", help="分类 id 或名称")
    rename_parser.add_argument("new_name", help="新名称")
    delete_parser = category_sub.add_parser("delete", help="删除分类")
    delete_parser.add_argument("category", help="分类 id 或名称")
    delete_parser.add_argument("--cascade", action="store_true", help="同时删除该分类下的全部记录")

    log_parser = subparsers.add_parser("log", help="查看区间记录")
    log_parser.add_argument("--since", type=parse_since, default=None, help="起始时间")
    log_parser.add_argument("--until", type=parse_since, default=None, help="结束时间（不含）")
    log_parser.add_argument("--category", default=None, help="按分类过滤")
    log_parser.add_argument("--phase", choices=[p.value for p in INTERVAL_PHASES], default=None)
    log_parser.add_argument("--status", choices=[s.value for s in IntervalStatus], default=None)
    log_parser.add_argument("--limit", type=int, default=20, help="最多显示条数")
    log_parser.add_argument("--offset", type=int, default=0, help="跳过条数")

    stats_parser = subparsers.add_parser("stats", help="查看统计")
    stats_parser.add_argument("--period", choices=PERIODS, default=None, help="只看某个时间段")

    daily_parser = subparsers.add_parser("daily", help="按天查看工作时长")
    daily_parser.add_argument("--days", type=int, default=7, help="天数（含今天）")
    daily_parser.add_argument("--category", default=None, help="只统计某个分类")

    report_parser = subparsers.add_parser("report", help="生成周报 Markdown")
    report_parser.add_argument("--year", type=int, default=None, help="ISO 年")
    report_parser.add_argument("--week", type=int, default=None, help="ISO 周")
    report_parser.add_argument("--out-dir", default=str(DEFAULT_OUT_DIR), help="输出目录")

    export_parser = subparsers.add_parser("export", help="导出 CSV")
    export_parser.add_argument("--out-dir", default=str(DEFAULT_OUT_DIR), help="输出目录")

    run_parser = subparsers.add_parser("run", help="交互式运行番茄钟")
    run_parser.add_argument("--category", default=None, help="第一个工作区间的分类")
    run_parser.add_argument("--note", default=None, help="第一个区间的备注")
    run_parser.add_argument("--work", type=float, default=None, help="工作时长（分钟）")
    run_parser.add_argument("--short-break", type=float, default=None, help="短休息时长（分钟）")
    run_parser.add_argument("--long-break", type=float, default=None, help="长休息时长（分钟）")
    run_parser.add_argument("--cycles", type=int, default=None, help="几个工作区间后长休息")
    run_parser.add_argument("--auto-advance", action="store_true", default=None, help="阶段结束后自动开始下一阶段")
    run_parser.add_argument("--tick-seconds", type=float, default=None, help="刷新间隔（秒，>0）")
    run_parser.add_argument("--notify", action="store_true", default=None, help="启用桌面通知")

    serve_parser = subparsers.add_parser("serve", help="启动本地 HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8765)

    return parser


def main(argv: list[str] | None = None, stdin: TextIO | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = _load(args)
        configure_logging(args.log_level or settings.log_level, settings.log_file or None)
        if args.command == "serve":
            return _handle_serve(args, settings)
        if args.command == "run":
            return _handle_run(args, settings, parser, stdin or sys.stdin)

        store = _open_store(settings)
        stats = StatsAggregator.from_settings(store, settings)
        if args.command == "category":
            return _handle_category(args, store)
        if args.command == "log":
            return _handle_log(args, store)
        if args.command == "stats":
            return _handle_stats(args, stats)
        if args.command == "daily":
            return _handle_daily(args, store, stats)
        if args.command == "report":
            return _handle_report(args, stats)
        if args.command == "export":
            return _handle_export(args, store)
    except CycleLogError as exc:
        _print_error(exc)
        return 1

    parser.print_help()
    return 2


def _load(args: argparse.Namespace) -> Settings:
    settings = load_settings(Path(args.config).expanduser() if args.config else None)
    if args.db:
        settings = replace(settings, db_path=Path(args.db).expanduser())
    return settings


def _open_store(settings: Settings) -> SessionStore:
    store = SessionStore(
        settings.db_path,
        journal_mode=settings.journal_mode,
        busy_timeout_sec=settings.busy_timeout_sec,
    )
    if settings.seed_default_categories:
        store.seed_default_categories()
    return store


def _print_error(exc: CycleLogError) -> None:
    print(f"错误：{exc.message}", file=sys.stderr)
    if isinstance(exc, StorageUnavailable):
        print("请检查数据库路径是否存在且可写。", file=sys.stderr)


def _resolve_category(store: SessionStore, raw: str) -> Category:
    text = raw.strip()
    found = store.find_category(text)
    if found is None and text.isdigit():
        found = store.get_category(int(text))
    if found is None:
        raise NotFound(f"分类不存在：{raw}")
    return found


def _handle_category(args: argparse.Namespace, store: SessionStore) -> int:
    if args.category_command == "list":
        categories = store.list_categories()
        if not categories:
            print("还没有分类。")
            return 0
        for item in categories:
            print(f"{item.id:>4} | {item.color} | {item.name}")
        return 0

    if args.category_command == "add":
        category_id = store.create_category(args.name, color=args.color)
        print(f"已创建分类 {args.name}（id={category_id}）")
        return 0

    if args.category_command == "rename":
        category = _resolve_category(store, args.category)
        renamed = store.rename_category(category.id, args.new_name)
        print(f"已重命名：{category.name} -> {renamed.name}")
        return 0

    category = _resolve_category(store, args.category)
    policy = DeletePolicy.CASCADE_DELETE_SESSIONS if args.cascade else DeletePolicy.REJECT_IF_REFERENCED
    removed = store.delete_category(category.id, policy)
    print(f"已删除分类 {category.name}，同时删除记录 {removed} 条")
    return 0


def _handle_log(args: argparse.Namespace, store: SessionStore) -> int:
    category_id = _resolve_category(store, args.category).id if args.category else None
    query = store.list_intervals(
        IntervalFilter(
            category_id=category_id,
            phase=Phase(args.phase) if args.phase else None,
            status=IntervalStatus(args.status) if args.status else None,
            time_range=TimeRange(args.since, args.until),
        )
    )
    items = query.page(offset=max(0, args.offset), limit=max(1, min(2000, args.limit)))
    if not items:
        print("没有匹配记录。")
        return 0

    names = {item.id: item.name for item in store.list_categories()}
    for item in items:
        start_text = item.start_time.astimezone().strftime("%Y-%m-%d %H:%M:%S")
        state_text = "完成" if item.completed else "放弃"
        category_text = names.get(item.category_id, "-") if item.category_id is not None else "-"
        line = (
            f"{start_text} | {item.phase.label} | {format_duration(item.actual_sec)}"
            f"/{format_duration(item.planned_sec)} | {state_text} | 分类: {category_text}"
        )
        if item.note:
            line += f" | 备注: {item.note}"
        print(line)
    print(f"共 {query.count()} 条，显示 {len(items)} 条。")
    return 0


def _handle_stats(args: argparse.Namespace, stats: StatsAggregator) -> int:
    periods = [args.period] if args.period else list(PERIODS)
    for period in periods:
        window_range = stats.period_range(period)
        window = stats.summarize(window_range)
        print(f"[{PERIOD_TITLES[period]}]")
        print(f"工作时长: {format_duration(window.work_sec)}")
        print(f"休息时长: {format_duration(window.break_sec)}")
        print(f"工作区间: {window.work_intervals} 次")
        print(f"完成工作区间: {window.completed_work_intervals} 次")
        print(f"放弃区间: {window.abandoned_intervals} 次")
        print(f"完成率: {format_rate(stats.completion_rate(window_range))}")
        for item in stats.totals_by_category(window_range):
            if item.total_sec > 0:
                print(f"  {item.name}: {format_duration(item.total_sec)}")
        print("")
    return 0


def _handle_daily(args: argparse.Namespace, store: SessionStore, stats: StatsAggregator) -> int:
    if args.days < 1:
        raise InvalidInput("--days 必须大于等于 1")
    category_id = _resolve_category(store, args.category).id if args.category else None
    last_day = stats.local_day(datetime.now(stats.tz))
    first_day = last_day - timedelta(days=args.days - 1)
    for item in stats.daily_breakdown(category_id, first_day, last_day):
        print(f"{item.day.isoformat()} | {format_duration(item.total_sec)}")
    return 0


def _handle_report(args: argparse.Namespace, stats: StatsAggregator) -> int:
    report_path = generate_weekly_report(
        stats=stats,
        out_dir=Path(args.out_dir),
        year=args.year,
        week=args.week,
    )
    print(f"周报已生成：{report_path}")
    return 0


def _handle_export(args: argparse.Namespace, store: SessionStore) -> int:
    csv_path = export_intervals_csv(store=store, out_dir=Path(args.out_dir))
    print(f"CSV 已导出：{csv_path}")
    return 0


def _handle_serve(args: argparse.Namespace, settings: Settings) -> int:
    import uvicorn

    from .api.app import create_app

    app = create_app(settings=settings)
    uvicorn.run(app, host=args.host, port=args.port, log_level=settings.log_level.lower())
    return 0


def _run_settings(args: argparse.Namespace, settings: Settings, parser: argparse.ArgumentParser) -> Settings:
    timer = settings.timer
    overrides: dict[str, Any] = {}
    for flag, field_name in (
        ("work", "work_sec"),
        ("short_break", "short_break_sec"),
        ("long_break", "long_break_sec"),
    ):
        minutes = getattr(args, flag)
        if minutes is None:
            continue
        if minutes <= 0:
            parser.error("时长参数必须大于 0")
        overrides[field_name] = minutes_to_seconds(minutes)
    if args.cycles is not None:
        if args.cycles < 1:
            parser.error("--cycles 必须大于等于 1")
        overrides["cycle_length"] = args.cycles
    if args.auto_advance:
        overrides["auto_advance"] = True
    if overrides:
        timer = TimerConfig(**{**timer.to_dict(), **overrides})

    changes: dict[str, Any] = {"timer": timer}
    if args.tick_seconds is not None:
        if args.tick_seconds <= 0:
            parser.error("--tick-seconds 必须大于 0")
        changes["tick_seconds"] = args.tick_seconds
    if args.notify:
        changes["notify"] = True
    return replace(settings, **changes)


def _handle_run(
    args: argparse.Namespace,
    settings: Settings,
    parser: argparse.ArgumentParser,
    stdin: TextIO,
) -> int:
    settings = _run_settings(args, settings, parser)
    store = _open_store(settings)
    engine = TimerEngine(store, settings.timer, clock=RealClock())
    notifier = Notifier() if settings.notify else None
    view = _RunView(store, notifier)
    loop = ControlLoop(engine, tick_seconds=settings.tick_seconds, event_callback=view.on_event)

    if args.category:
        category = _resolve_category(store, args.category)
        loop.execute(Command("start", category_id=category.id, note=args.note))
    print(RUN_HELP)

    reader = threading.Thread(target=_read_commands, args=(stdin, loop, store), daemon=True)
    reader.start()
    try:
        loop.run()
    except KeyboardInterrupt:
        if not engine.snapshot().is_idle:
            loop.execute(Command("stop"))
        loop.request_stop()
    reader.join(timeout=1.0)
    view.clear_line()
    print("已退出。")
    return 0


def _read_commands(stdin: TextIO, loop: ControlLoop, store: SessionStore) -> None:
    for raw in stdin:
        if loop.stopping:
            return
        text = raw.strip()
        if not text:
            continue
        key, _, rest = text.partition(" ")
        key = key.lower()
        if key in {"q", "quit"}:
            break
        if key in {"?", "h", "help"}:
            print(RUN_HELP)
            continue
        try:
            command = _decode_command(key, rest.strip(), store)
        except CycleLogError as exc:
            _print_error(exc)
            continue
        try:
            loop.call(command, timeout=None)
        except CycleLogError:
            # already shown through the loop's "error" event
            continue
    _quit(loop)


def _quit(loop: ControlLoop) -> None:
    try:
        if not loop.engine.snapshot().is_idle:
            loop.call(Command("stop"), timeout=None)
    except CycleLogError as exc:
        _print_error(exc)
    finally:
        loop.request_stop()


def _decode_command(key: str, rest: str, store: SessionStore) -> Command:
    if key in {"p", "pause"}:
        return Command("pause")
    if key in {"r", "resume"}:
        return Command("resume")
    if key in {"s", "skip"}:
        return Command("skip")
    if key in {"x", "stop"}:
        return Command("stop")
    if key in {"n", "next", "start"}:
        category_id = _resolve_category(store, rest).id if rest else None
        return Command("start", category_id=category_id)
    if key in {"c", "category"}:
        if not rest:
            return Command("select_category", category_id=None)
        return Command("select_category", category_id=_resolve_category(store, rest).id)
    raise InvalidInput(f"未知命令：{key}（输入 ? 查看帮助）")


class _RunView:
    def __init__(self, store: SessionStore, notifier: Notifier | None) -> None:
        self.store = store
        self.notifier = notifier

    def on_event(self, event: str, payload: dict[str, Any]) -> None:
        if event == "tick":
            snap = payload["snapshot"]
            sys.stdout.write(
                f"\r{snap.phase.label} {snap.cycle_count}/{snap.cycle_length} 剩余 {format_countdown(snap.remaining_sec)}"
            )
            sys.stdout.flush()
        elif event == "transition":
            self._print_transition(payload["transition"])
        elif event == "command":
            snap = payload["snapshot"]
            self.clear_line()
            print(f"[{payload['command']}] 当前：{snap.phase.label}（{snap.run_mode.value}）")
            if payload["command"] == "stop" and snap.notice == NOTICE_INTERVAL_DROPPED:
                print("分类已被删除，本次区间记录已丢弃。")
        elif event == "error":
            self.clear_line()
            _print_error(payload["error"])

    def _print_transition(self, transition: Transition) -> None:
        record = transition.record
        self.clear_line()
        if record is None:
            print(
                f"{transition.finished_phase.label}阶段的分类已被删除，本次记录已丢弃，"
                f"下一阶段：{transition.next_phase.label}"
            )
        else:
            state_text = "完成" if record.completed else "放弃"
            print(
                f"{record.phase.label}阶段：{state_text}，用时 {format_duration(record.actual_sec)}，"
                f"下一阶段：{transition.next_phase.label}"
            )
        if transition.category_required:
            print("自动进入工作区间需要分类：输入 n <分类> 开始。")
        if self.notifier is not None:
            self.notifier.interval_finished(transition)

    def clear_line(self) -> None:
        sys.stdout.write("\r" + (" " * 60) + "\r")
        sys.stdout.flush()
