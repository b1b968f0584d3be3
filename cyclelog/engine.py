from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
import logging
import math

from .clock import Clock, RealClock
from .config import TimerConfig
from .db import SessionStore, clean_note
from .errors import CategoryRequired, InvalidCategory, InvalidInput, InvalidTransition
from .models import (
    IntervalRecord,
    IntervalStatus,
    Phase,
    RunMode,
    StoredInterval,
    TimerSnapshot,
    Transition,
)

logger = logging.getLogger(__name__)

NOTICE_CATEGORY_REQUIRED = "category_required"
NOTICE_INTERVAL_DROPPED = "interval_dropped"


@dataclass(frozen=True)
class _State:
    phase: Phase = Phase.IDLE
    run_mode: RunMode = RunMode.STOPPED
    planned_sec: int = 0
    remaining_sec: float = 0.0
    cycle_count: int = 0
    active_category_id: int | None = None
    selected_category_id: int | None = None
    started_at: datetime | None = None
    notice: str | None = None
    note: str | None = None

    @property
    def elapsed_sec(self) -> float:
        if self.run_mode is RunMode.STOPPED:
            return 0.0
        return max(0.0, self.planned_sec - max(0.0, self.remaining_sec))


class TimerEngine:
    """Pomodoro state machine writing every finished interval through the store.

    Each operation either replaces the whole state at once or raises and leaves
    it untouched; a failed store write never advances the phase.
    """

    def __init__(self, store: SessionStore, config: TimerConfig, clock: Clock | None = None) -> None:
        self.store = store
        self.clock = clock or RealClock()
        self._config = config
        self._state = _State()

    @property
    def config(self) -> TimerConfig:
        return self._config

    def planned_for(self, phase: Phase) -> int:
        if phase is Phase.WORK:
            return self._config.work_sec
        if phase is Phase.SHORT_BREAK:
            return self._config.short_break_sec
        if phase is Phase.LONG_BREAK:
            return self._config.long_break_sec
        return 0

    def snapshot(self) -> TimerSnapshot:
        st = self._state
        return TimerSnapshot(
            phase=st.phase,
            run_mode=st.run_mode,
            remaining_sec=max(0.0, st.remaining_sec),
            elapsed_sec=st.elapsed_sec,
            planned_sec=st.planned_sec,
            cycle_count=st.cycle_count,
            cycle_length=self._config.cycle_length,
            active_category_id=st.active_category_id,
            selected_category_id=st.selected_category_id,
            started_at=st.started_at,
            notice=st.notice,
            note=st.note,
        )

    # -- commands -----------------------------------------------------------

    def start(self, category_id: int | None = None, note: str | None = None) -> TimerSnapshot:
        st = self._state
        if st.run_mode is not RunMode.STOPPED:
            raise InvalidTransition(f"cannot start while {st.run_mode.value}")
        clean = clean_note(note)

        phase = Phase.WORK if st.phase is Phase.IDLE else st.phase
        active: int | None = None
        selected = st.selected_category_id
        if phase is Phase.WORK:
            active = category_id if category_id is not None else selected
            if active is None:
                raise CategoryRequired("choose a category before starting a work interval")
            self._require_category(active)
            selected = None

        planned = self.planned_for(phase)
        self._state = replace(
            st,
            phase=phase,
            run_mode=RunMode.RUNNING,
            planned_sec=planned,
            remaining_sec=float(planned),
            active_category_id=active,
            selected_category_id=selected,
            started_at=self.clock.now(),
            notice=None,
            note=clean,
        )
        logger.info("started %s interval (%ds, category=%s)", phase.value, planned, active)
        return self.snapshot()

    def tick(self, elapsed_delta: float) -> Transition | None:
        delta = _check_delta(elapsed_delta)
        st = self._state
        if st.run_mode is not RunMode.RUNNING:
            raise InvalidTransition(f"cannot tick while {st.run_mode.value}")

        remaining = st.remaining_sec - delta
        if remaining > 0:
            self._state = replace(st, remaining_sec=remaining)
            return None

        record = self._record_for(st, st.planned_sec, IntervalStatus.COMPLETED)
        return self._finish(st, record)

    def pause(self) -> TimerSnapshot:
        st = self._state
        if st.run_mode is not RunMode.RUNNING:
            raise InvalidTransition(f"cannot pause while {st.run_mode.value}")
        self._state = replace(st, run_mode=RunMode.PAUSED)
        logger.debug("paused %s with %.1fs left", st.phase.value, st.remaining_sec)
        return self.snapshot()

    def resume(self) -> TimerSnapshot:
        st = self._state
        if st.run_mode is not RunMode.PAUSED:
            raise InvalidTransition(f"cannot resume while {st.run_mode.value}")
        self._state = replace(st, run_mode=RunMode.RUNNING)
        logger.debug("resumed %s with %.1fs left", st.phase.value, st.remaining_sec)
        return self.snapshot()

    def skip(self) -> Transition:
        st = self._state
        if st.run_mode not in (RunMode.RUNNING, RunMode.PAUSED):
            raise InvalidTransition(f"cannot skip while {st.run_mode.value}")
        record = self._record_for(st, _actual_seconds(st), IntervalStatus.ABANDONED)
        return self._finish(st, record)

    def stop(self, reset_cycle: bool = False) -> StoredInterval | None:
        """End the current interval and go idle.

        Returns the abandoned record, or ``None`` when nothing was kept. A
        record lost to a deleted category leaves ``notice`` set to
        ``interval_dropped`` on the idle snapshot.
        """
        st = self._state
        if st.phase is Phase.IDLE:
            raise InvalidTransition("timer is already idle")

        stored: StoredInterval | None = None
        notice: str | None = None
        if st.elapsed_sec > 0:
            record = self._record_for(st, _actual_seconds(st), IntervalStatus.ABANDONED)
            stored = self._store_or_drop(st, record)
            if stored is None:
                notice = NOTICE_INTERVAL_DROPPED

        self._state = _State(
            cycle_count=0 if reset_cycle else st.cycle_count,
            selected_category_id=st.selected_category_id,
            notice=notice,
        )
        logger.info("stopped %s interval (recorded=%s)", st.phase.value, stored is not None)
        return stored

    def select_category(self, category_id: int | None) -> TimerSnapshot:
        """Remember the category for the next work interval (``None`` clears it)."""
        if category_id is not None:
            self._require_category(category_id)
        self._state = replace(self._state, selected_category_id=category_id, notice=None)
        return self.snapshot()

    def reconfigure(self, config: TimerConfig) -> TimerSnapshot:
        st = self._state
        if st.run_mode is not RunMode.STOPPED:
            raise InvalidTransition("cannot change durations during an interval")
        self._config = config
        count = min(st.cycle_count, config.cycle_length - 1)
        if st.phase is Phase.IDLE:
            self._state = replace(st, cycle_count=count)
        else:
            planned = self.planned_for(st.phase)
            self._state = replace(st, cycle_count=count, planned_sec=planned, remaining_sec=float(planned))
        return self.snapshot()

    # -- internals ----------------------------------------------------------

    def _require_category(self, category_id: int) -> None:
        if self.store.get_category(category_id) is None:
            raise InvalidCategory(f"category {category_id} does not exist")

    def _record_for(self, st: _State, actual_sec: int, status: IntervalStatus) -> IntervalRecord:
        if st.started_at is None:
            raise InvalidTransition(f"{st.phase.value} interval was never started")
        end = self.clock.now()
        if end < st.started_at:
            end = st.started_at
        return IntervalRecord(
            category_id=st.active_category_id if st.phase is Phase.WORK else None,
            phase=st.phase,
            start_time=st.started_at,
            end_time=end,
            planned_sec=st.planned_sec,
            actual_sec=actual_sec,
            status=status,
            note=st.note,
        )

    def _store_or_drop(self, st: _State, record: IntervalRecord) -> StoredInterval | None:
        try:
            return self.store.record_interval(record)
        except InvalidCategory:
            # The category went away mid-interval; its history is gone with it.
            logger.warning(
                "dropping %s interval of deleted category %s",
                st.phase.value,
                st.active_category_id,
            )
            return None

    def _finish(self, st: _State, record: IntervalRecord) -> Transition:
        stored = self._store_or_drop(st, record)
        next_state, transition = self._advance(st, stored)
        if stored is None and next_state.notice is None:
            next_state = replace(next_state, notice=NOTICE_INTERVAL_DROPPED)
        self._state = next_state
        logger.info(
            "%s %s interval %s -> %s (cycle %d/%d)",
            record.status.value,
            record.phase.value,
            stored.id if stored is not None else "dropped",
            next_state.phase.value,
            next_state.cycle_count,
            self._config.cycle_length,
        )
        return transition

    def _advance(self, st: _State, stored: StoredInterval | None) -> tuple[_State, Transition]:
        count = st.cycle_count
        if st.phase is Phase.WORK:
            count += 1
            if count >= self._config.cycle_length:
                next_phase = Phase.LONG_BREAK
                count = 0
            else:
                next_phase = Phase.SHORT_BREAK
        else:
            next_phase = Phase.WORK

        planned = self.planned_for(next_phase)
        armed = replace(
            st,
            phase=next_phase,
            run_mode=RunMode.STOPPED,
            planned_sec=planned,
            remaining_sec=float(planned),
            cycle_count=count,
            active_category_id=None,
            started_at=None,
            notice=None,
            note=None,
        )
        if not self._config.auto_advance:
            return armed, Transition(
                finished_phase=st.phase,
                record=stored,
                next_phase=next_phase,
                auto_started=False,
            )

        if next_phase.is_break:
            running = replace(armed, run_mode=RunMode.RUNNING, started_at=self.clock.now())
            return running, Transition(
                finished_phase=st.phase,
                record=stored,
                next_phase=next_phase,
                auto_started=True,
            )

        if armed.selected_category_id is not None:
            running = replace(
                armed,
                run_mode=RunMode.RUNNING,
                active_category_id=armed.selected_category_id,
                selected_category_id=None,
                started_at=self.clock.now(),
            )
            return running, Transition(
                finished_phase=st.phase,
                record=stored,
                next_phase=next_phase,
                auto_started=True,
            )

        halted = replace(
            armed,
            phase=Phase.IDLE,
            planned_sec=0,
            remaining_sec=0.0,
            notice=NOTICE_CATEGORY_REQUIRED,
        )
        logger.info("auto-advance halted: no category selected for the next work interval")
        return halted, Transition(
            finished_phase=st.phase,
            record=stored,
            next_phase=Phase.IDLE,
            auto_started=False,
            category_required=True,
        )


def _check_delta(value: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInput(f"tick delta must be a number, got {value!r}")
    delta = float(value)
    if math.isnan(delta) or math.isinf(delta) or delta < 0:
        raise InvalidInput(f"tick delta must be a finite number >= 0, got {value!r}")
    return delta


def _actual_seconds(st: _State) -> int:
    actual = int(round(st.elapsed_sec))
    return max(0, min(st.planned_sec, actual))
