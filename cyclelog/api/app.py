from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from pathlib import Path
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..clock import Clock
from ..config import Settings, load_settings
from ..db import SessionStore
from ..errors import CycleLogError
from ..stats import StatsAggregator
from .engine_service import EngineService
from .schemas import ErrorOut
from .routes.categories import router as categories_router
from .routes.export import router as export_router
from .routes.health import router as health_router
from .routes.intervals import router as intervals_router
from .routes.meta import router as meta_router
from .routes.report import router as report_router
from .routes.stats import router as stats_router
from .routes.timer import router as timer_router

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    db_path: Path | None = None,
    clock: Clock | None = None,
    start_loop: bool = True,
) -> FastAPI:
    resolved = settings or load_settings()
    if db_path is not None:
        resolved = replace(resolved, db_path=Path(db_path))

    store = SessionStore(
        resolved.db_path,
        journal_mode=resolved.journal_mode,
        busy_timeout_sec=resolved.busy_timeout_sec,
    )
    if resolved.seed_default_categories:
        store.seed_default_categories()
    service = EngineService(resolved, store, clock=clock)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            service.shutdown()
            logger.info("engine loop stopped")

    app = FastAPI(title="CycleLog API", version=__version__, lifespan=lifespan)
    app.state.settings = resolved
    app.state.store = store
    app.state.stats = StatsAggregator.from_settings(store, resolved)
    app.state.engine_service = service

    @app.exception_handler(CycleLogError)
    async def _cyclelog_error(_: Request, exc: CycleLogError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.http_status,
            content=ErrorOut(error=exc.kind, detail=exc.message).model_dump(),
        )

    app.include_router(health_router)
    app.include_router(meta_router)
    app.include_router(categories_router)
    app.include_router(intervals_router)
    app.include_router(stats_router)
    app.include_router(timer_router)
    app.include_router(report_router)
    app.include_router(export_router)

    if start_loop:
        service.start()
    return app
