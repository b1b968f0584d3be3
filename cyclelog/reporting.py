from __future__ import annotations

from datetime import date, datetime, timedelta
from pathlib import Path

from .models import TimeRange
from .stats import StatsAggregator


def format_duration(seconds: int | float) -> str:
    total = max(0, int(seconds))
    minutes, sec = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}小时{minutes:02d}分{sec:02d}秒"
    return f"{minutes}分{sec:02d}秒"


def format_countdown(seconds: int | float) -> str:
    total = max(0, int(seconds + 0.999))
    minutes, sec = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{sec:02d}"
    return f"{minutes:02d}:{sec:02d}"


def format_rate(rate: float) -> str:
    return f"{rate * 100:.1f}%"


def generate_weekly_report(
    stats: StatsAggregator,
    out_dir: Path,
    year: int | None = None,
    week: int | None = None,
    now: datetime | None = None,
) -> Path:
    ref = now or datetime.now(stats.tz)
    if ref.tzinfo is None:
        ref = ref.replace(tzinfo=stats.tz)

    iso = stats.local_day(ref).isocalendar()
    target_year = int(year or iso[0])
    target_week = int(week or iso[1])

    first_day = date.fromisocalendar(target_year, target_week, 1)
    last_day = first_day + timedelta(days=6)
    window = TimeRange(stats.day_start(first_day), stats.day_start(last_day + timedelta(days=1)))

    summary = stats.summarize(window)
    totals = [item for item in stats.totals_by_category(window) if item.total_sec > 0]
    daily = stats.daily_breakdown(None, first_day, last_day)

    lines: list[str] = []
    lines.append(f"# CycleLog 周报 {target_year}-W{target_week:02d}")
    lines.append("")
    lines.append(f"- 统计区间：{first_day.isoformat()} 至 {last_day.isoformat()}")
    lines.append(f"- 生成时间：{ref.strftime('%Y-%m-%d %H:%M:%S %Z')}")
    lines.append("")

    lines.append("## 总览")
    lines.append(f"- 工作总时长：{format_duration(summary.work_sec)}")
    lines.append(f"- 休息总时长：{format_duration(summary.break_sec)}")
    lines.append(f"- 工作区间：{summary.work_intervals} 次")
    lines.append(f"- 完成工作区间：{summary.completed_work_intervals} 次")
    lines.append(f"- 放弃区间：{summary.abandoned_intervals} 次")
    lines.append(f"- 完成率：{format_rate(stats.completion_rate(window))}")
    lines.append("")

    lines.append("## 分类分布")
    if totals:
        lines.append("| 分类 | 时长 | 次数 |")
        lines.append("| --- | --- | --- |")
        for item in totals:
            lines.append(f"| {item.name} | {format_duration(item.total_sec)} | {item.intervals} |")
    else:
        lines.append("本周暂无完成的工作区间。")
    lines.append("")

    lines.append("## 每日工作时长")
    lines.append("| 日期 | 时长 |")
    lines.append("| --- | --- |")
    for item in daily:
        lines.append(f"| {item.day.isoformat()} | {format_duration(item.total_sec)} |")
    lines.append("")

    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    report_path = out_dir / f"week-{target_year}-{target_week:02d}.md"
    report_path.write_text("\n".join(lines), encoding="utf-8")
    return report_path
