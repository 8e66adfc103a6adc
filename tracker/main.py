from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from shared.database import Database, init_db
from shared.utils.logger import setup_logger
from tracker.config import Settings, get_settings
from tracker.errors import ConcurrentUpdateConflict, CycleDetected, NotFound, TrackerError, ValidationError
from tracker.routes import goals as goals_routes
from tracker.routes import tasks as tasks_routes
from tracker.routes import users as users_routes

ERROR_STATUS = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (CycleDetected, status.HTTP_409_CONFLICT),
    (ConcurrentUpdateConflict, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def _status_for(exc: TrackerError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app(*, override_settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    settings = override_settings or get_settings()
    logger = setup_logger("tracker", settings.log_level)

    owns_database = database is None
    if owns_database:
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs(os.path.dirname(settings.database_url[len("sqlite:///"):]), exist_ok=True)
        database = init_db(settings.database_url, echo=settings.db_echo)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.create_all()
        logger.info("%s started (db=%s)", settings.app_name, database.engine.url.render_as_string(hide_password=True))
        yield
        if owns_database:
            database.engine.dispose()

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.state.db = database
    app.state.settings = settings

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s -> %s (%.2f ms)",
            request.method,
            request.url.path,
            response.status_code,
            duration,
        )
        return response

    @app.exception_handler(TrackerError)
    async def tracker_error_handler(request: Request, exc: TrackerError) -> JSONResponse:
        code = _status_for(exc)
        level = logging.ERROR if code >= 500 else logging.INFO
        logger.log(level, "%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=code,
            content={"error": type(exc).__name__, "detail": exc.message, "hint": exc.hint},
        )

    app.include_router(users_routes.router)
    app.include_router(goals_routes.router)
    app.include_router(tasks_routes.router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
