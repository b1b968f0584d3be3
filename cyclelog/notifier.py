from __future__ import annotations

import logging
import platform
import shutil
import subprocess
import sys
from typing import TextIO

from .models import Phase, Transition

logger = logging.getLogger(__name__)

APP_TITLE = "CycleLog"


class Notifier:
    def __init__(self, stream: TextIO | None = None, title: str = APP_TITLE) -> None:
        self.stream = stream or sys.stdout
        self.title = title

    def interval_finished(self, transition: Transition) -> None:
        record = transition.record
        if record is None:
            message = f"{transition.finished_phase.label}的分类已被删除，本次记录已丢弃"
        else:
            state_text = "已完成" if record.completed else "已放弃"
            message = f"{record.phase.label}{state_text}"
        if transition.category_required:
            message += "，请选择分类后开始下一个工作区间"
        elif transition.next_phase is not Phase.IDLE:
            verb = "已开始" if transition.auto_started else "待开始"
            message += f"，下一阶段：{transition.next_phase.label}（{verb}）"
        self.notify(message)

    def notify(self, message: str) -> bool:
        sent = False
        system_name = platform.system().lower()

        try:
            if system_name == "darwin" and shutil.which("osascript"):
                script = (
                    "display notification "
                    f"\"{self._escape(message)}\" with title \"{self._escape(self.title)}\""
                )
                sent = self._run(["osascript", "-e", script])
            elif system_name == "linux" and shutil.which("notify-send"):
                sent = self._run(["notify-send", self.title, message])
        except (OSError, subprocess.SubprocessError) as exc:
            logger.debug("desktop notification failed: %s", exc)
            sent = False

        if not sent:
            self.stream.write(f"[通知] {self.title}: {message}\n")
            self.stream.flush()
        return sent

    @staticmethod
    def _run(cmd: list[str]) -> bool:
        result = subprocess.run(
            cmd,
            check=False,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=5,
        )
        return result.returncode == 0

    @staticmethod
    def _escape(text: str) -> str:
        return text.replace("\\", "\\\\").replace('"', '\\"')
