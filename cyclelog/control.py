from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass
import logging
import queue
import threading
from typing import Any, Callable

from .clock import Clock
from .engine import TimerEngine
from .errors import CycleLogError, InvalidInput
from .models import RunMode, Transition

logger = logging.getLogger(__name__)

COMMANDS = ("start", "pause", "resume", "skip", "stop", "select_category")

EventCallback = Callable[[str, dict[str, Any]], None]


@dataclass(frozen=True)
class Command:
    name: str
    category_id: int | None = None
    reset_cycle: bool = False
    note: str | None = None


class ControlLoop:
    """Feeds the engine one event at a time: either a queued command or a tick.

    Other threads only ``submit`` commands and wait on the returned future;
    every engine call happens on the thread running ``run``/``poll``.
    """

    def __init__(
        self,
        engine: TimerEngine,
        clock: Clock | None = None,
        tick_seconds: float = 1.0,
        event_callback: EventCallback | None = None,
    ) -> None:
        if tick_seconds <= 0:
            raise InvalidInput(f"tick_seconds must be > 0, got {tick_seconds}")
        self.engine = engine
        self.clock = clock or engine.clock
        self.tick_seconds = float(tick_seconds)
        self.event_callback = event_callback
        self.last_error: CycleLogError | None = None
        self._commands: queue.Queue[tuple[Command, Future[Any]]] = queue.Queue()
        self._stop_requested = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_mark: float | None = None
        self._next_tick_at = self.clock.monotonic() + self.tick_seconds

    def submit(self, command: Command) -> Future[Any]:
        if command.name not in COMMANDS:
            raise InvalidInput(f"unknown command: {command.name}")
        future: Future[Any] = Future()
        self._commands.put((command, future))
        return future

    def call(self, command: Command, timeout: float | None = 5.0) -> Any:
        return self.submit(command).result(timeout=timeout)

    def request_stop(self) -> None:
        self._stop_requested.set()

    @property
    def stopping(self) -> bool:
        return self._stop_requested.is_set()

    def start_thread(self) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._stop_requested.clear()
        self._thread = threading.Thread(target=self.run, name="cyclelog-control", daemon=True)
        self._thread.start()
        return self._thread

    def join(self, timeout: float | None = None) -> None:
        self.request_stop()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def run(self) -> None:
        logger.debug("control loop started (tick=%.2fs)", self.tick_seconds)
        while not self._stop_requested.is_set():
            self.poll()
        logger.debug("control loop stopped")

    def poll(self, block: bool = True) -> None:
        """Process exactly one command, or tick when none arrives before the tick is due."""
        try:
            if block:
                timeout = max(0.0, self._next_tick_at - self.clock.monotonic())
                command, future = self._commands.get(timeout=timeout)
            else:
                command, future = self._commands.get_nowait()
        except queue.Empty:
            self._next_tick_at = self.clock.monotonic() + self.tick_seconds
            self.tick_now()
            return

        if not future.set_running_or_notify_cancel():
            return
        try:
            result = self.execute(command)
        except CycleLogError as exc:
            future.set_exception(exc)
            self._emit("error", error=exc, command=command.name)
        else:
            future.set_result(result)

    def execute(self, command: Command) -> Any:
        self._flush()
        engine = self.engine
        if command.name == "start":
            result: Any = engine.start(command.category_id, note=command.note)
        elif command.name == "pause":
            result = engine.pause()
        elif command.name == "resume":
            result = engine.resume()
        elif command.name == "skip":
            result = engine.skip()
        elif command.name == "stop":
            result = engine.stop(reset_cycle=command.reset_cycle)
        elif command.name == "select_category":
            result = engine.select_category(command.category_id)
        else:
            raise InvalidInput(f"unknown command: {command.name}")

        self._last_mark = self.clock.monotonic()
        if isinstance(result, Transition):
            self._emit("transition", transition=result)
        self._emit("command", command=command.name, snapshot=engine.snapshot())
        return result

    def tick_now(self) -> Transition | None:
        """Tick with the monotonic time elapsed since the last successful tick."""
        now = self.clock.monotonic()
        if self.engine.snapshot().run_mode is not RunMode.RUNNING or self._last_mark is None:
            self._last_mark = now
            return None

        delta = max(0.0, now - self._last_mark)
        try:
            transition = self.engine.tick(delta)
        except CycleLogError as exc:
            # Keep the mark so the accumulated delta is retried on the next tick.
            self.last_error = exc
            logger.error("tick failed: %s", exc)
            self._emit("error", error=exc, command="tick")
            return None

        self._last_mark = now
        self.last_error = None
        if transition is not None:
            self._emit("transition", transition=transition)
        self._emit("tick", snapshot=self.engine.snapshot())
        return transition

    def _flush(self) -> None:
        if self.engine.snapshot().run_mode is RunMode.RUNNING:
            self.last_error = None
            self.tick_now()
            if self.last_error is not None:
                raise self.last_error
        else:
            self._last_mark = self.clock.monotonic()

    def _emit(self, event: str, **payload: Any) -> None:
        if self.event_callback is None:
            return
        try:
            self.event_callback(event, payload)
        except Exception:
            logger.exception("event callback failed on %r", event)
