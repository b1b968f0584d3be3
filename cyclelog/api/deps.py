from __future__ import annotations

from fastapi import Request

from ..db import SessionStore
from ..stats import StatsAggregator
from .engine_service import EngineService


def get_store(request: Request) -> SessionStore:
    return request.app.state.store


def get_stats(request: Request) -> StatsAggregator:
    return request.app.state.stats


def get_engine_service(request: Request) -> EngineService:
    return request.app.state.engine_service
