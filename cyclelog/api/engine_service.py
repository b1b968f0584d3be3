from __future__ import annotations

import logging
from typing import Any

from ..clock import Clock, RealClock
from ..config import Settings
from ..control import Command, ControlLoop
from ..db import SessionStore
from ..engine import TimerEngine
from ..models import TimerSnapshot

logger = logging.getLogger(__name__)

COMMAND_TIMEOUT_SEC = 10.0


class EngineService:
    """Owns the one engine behind the API and the loop thread that drives it."""

    def __init__(self, settings: Settings, store: SessionStore, clock: Clock | None = None) -> None:
        self.settings = settings
        self.store = store
        self.engine = TimerEngine(store, settings.timer, clock=clock or RealClock())
        self.loop = ControlLoop(self.engine, tick_seconds=settings.tick_seconds)

    def start(self) -> None:
        self.loop.start_thread()
        logger.info("engine loop running against %s", self.store.db_path)

    def shutdown(self) -> None:
        self.loop.join(timeout=2.0)

    def snapshot(self) -> TimerSnapshot:
        return self.engine.snapshot()

    def command(
        self,
        name: str,
        category_id: int | None = None,
        reset_cycle: bool = False,
        note: str | None = None,
    ) -> Any:
        return self.loop.call(
            Command(name, category_id=category_id, reset_cycle=reset_cycle, note=note),
            timeout=COMMAND_TIMEOUT_SEC,
        )
