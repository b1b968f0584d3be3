from __future__ import annotations

from fastapi import APIRouter, Depends

from ..deps import get_engine_service
from ..engine_service import EngineService
from ..schemas import SelectCategoryIn, TimerCommandOut, TimerStartIn, TimerStateOut, TimerStopIn

router = APIRouter(prefix="/api/v1", tags=["timer"])


def _run(service: EngineService, name: str, **kwargs: object) -> TimerCommandOut:
    result = service.command(name, **kwargs)
    return TimerCommandOut.build(service.snapshot(), result)


@router.get("/timer/state", response_model=TimerStateOut)
def timer_state(service: EngineService = Depends(get_engine_service)) -> TimerStateOut:
    return TimerStateOut.of(service.snapshot())


@router.post("/timer/start", response_model=TimerCommandOut)
def start_timer(
    payload: TimerStartIn | None = None,
    service: EngineService = Depends(get_engine_service),
) -> TimerCommandOut:
    if payload is None:
        return _run(service, "start")
    return _run(service, "start", category_id=payload.category_id, note=payload.note)


@router.post("/timer/pause", response_model=TimerCommandOut)
def pause_timer(service: EngineService = Depends(get_engine_service)) -> TimerCommandOut:
    return _run(service, "pause")


@router.post("/timer/resume", response_model=TimerCommandOut)
def resume_timer(service: EngineService = Depends(get_engine_service)) -> TimerCommandOut:
    return _run(service, "resume")


@router.post("/timer/skip", response_model=TimerCommandOut)
def skip_timer(service: EngineService = Depends(get_engine_service)) -> TimerCommandOut:
    return _run(service, "skip")


@router.post("/timer/stop", response_model=TimerCommandOut)
def stop_timer(
    payload: TimerStopIn | None = None,
    service: EngineService = Depends(get_engine_service),
) -> TimerCommandOut:
    reset_cycle = payload.reset_cycle if payload is not None else False
    return _run(service, "stop", reset_cycle=reset_cycle)


@router.post("/timer/select-category", response_model=TimerCommandOut)
def select_category(
    payload: SelectCategoryIn,
    service: EngineService = Depends(get_engine_service),
) -> TimerCommandOut:
    return _run(service, "select_category", category_id=payload.category_id)
