from __future__ import annotations

from datetime import datetime
import io
import subprocess
from types import SimpleNamespace
import unittest
from unittest import mock

from cyclelog.models import IntervalStatus, Phase, StoredInterval, Transition
from cyclelog.notifier import Notifier
from cyclelog.tests.test_helpers import UTC


def _transition(**changes: object) -> Transition:
    record = StoredInterval(
        id=1,
        category_id=3,
        phase=Phase.WORK,
        start_time=datetime(2026, 3, 2, 9, 0, tzinfo=UTC),
        end_time=datetime(2026, 3, 2, 9, 25, tzinfo=UTC),
        planned_sec=1500,
        actual_sec=1500,
        status=IntervalStatus.COMPLETED,
    )
    values: dict[str, object] = dict(
        finished_phase=Phase.WORK,
        record=record,
        next_phase=Phase.SHORT_BREAK,
        auto_started=False,
    )
    values.update(changes)
    return Transition(**values)  # type: ignore[arg-type]


class TestNotifier(unittest.TestCase):
    def linux(self, **run_kwargs: object):
        return (
            mock.patch("cyclelog.notifier.platform.system", return_value="Linux"),
            mock.patch("cyclelog.notifier.shutil.which", return_value="/usr/bin/notify-send"),
            mock.patch("cyclelog.notifier.subprocess.run", **run_kwargs),
        )

    def test_fallback_when_command_fails(self) -> None:
        stream = io.StringIO()
        notifier = Notifier(stream=stream)
        system, which, run = self.linux(return_value=SimpleNamespace(returncode=1))

        with system, which, run:
            self.assertFalse(notifier.notify("测试通知"))

        self.assertIn("[通知] CycleLog: 测试通知", stream.getvalue())

    def test_fallback_when_command_times_out(self) -> None:
        stream = io.StringIO()
        notifier = Notifier(stream=stream)
        system, which, run = self.linux(side_effect=subprocess.TimeoutExpired("notify-send", 5))

        with system, which, run:
            self.assertFalse(notifier.notify("超时"))

        self.assertIn("[通知] CycleLog: 超时", stream.getvalue())

    def test_no_fallback_when_command_succeeds(self) -> None:
        stream = io.StringIO()
        notifier = Notifier(stream=stream)
        system, which, run = self.linux(return_value=SimpleNamespace(returncode=0))

        with system, which, run:
            self.assertTrue(notifier.notify("测试通知"))

        self.assertEqual(stream.getvalue(), "")

    def test_interval_messages(self) -> None:
        stream = io.StringIO()
        notifier = Notifier(stream=stream)
        with mock.patch("cyclelog.notifier.platform.system", return_value="Plan9"):
            notifier.interval_finished(_transition())
            notifier.interval_finished(
                _transition(next_phase=Phase.IDLE, category_required=True)
            )

        lines = stream.getvalue().splitlines()
        self.assertEqual(lines[0], "[通知] CycleLog: 工作已完成，下一阶段：短休息（待开始）")
        self.assertIn("请选择分类", lines[1])

    def test_dropped_interval_message(self) -> None:
        stream = io.StringIO()
        notifier = Notifier(stream=stream)
        with mock.patch("cyclelog.notifier.platform.system", return_value="Plan9"):
            notifier.interval_finished(_transition(record=None, auto_started=True))

        self.assertEqual(
            stream.getvalue().strip(),
            "[通知] CycleLog: 工作的分类已被删除，本次记录已丢弃，下一阶段：短休息（已开始）",
        )


if __name__ == "__main__":
    unittest.main()
