"""TextTune - FastAPI application."""

import logging
import sys
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from texttune.api.v1.health import router as health_router
from texttune.api.v1.router import v1_router
from texttune.config import Settings, settings as default_settings
from texttune.db.jobs import JobStore
from texttune.db.session import create_db_engine, init_db
from texttune.db.tracks import TrackStore
from texttune.db.users import UserStore
from texttune.jobs.scheduler import InProcessScheduler
from texttune.jobs.submission import SubmissionError
from texttune.renderers.registry import select_backend
from texttune.storage.audio_store import AudioStore

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _configure_logging(settings: Settings) -> None:
    """Send application logs to stdout and a rotating file."""
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root_logger.addHandler(stdout_handler)

    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root_logger.addHandler(file_handler)

    level = logging.DEBUG if settings.debug else settings.log_level.upper()
    root_logger.setLevel(level)

    for noisy in ("httpx", "httpcore", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic."""
        _configure_logging(settings)
        logger.info("Starting %s %s", settings.app_name, settings.app_version)
        logger.info("Database: %s", settings.database_path)
        logger.info("Audio storage: %s", settings.storage_dir)

        engine = create_db_engine(settings.database_path)
        init_db(engine)

        job_store = JobStore(engine)
        track_store = TrackStore(engine)
        audio_store = AudioStore(settings.storage_dir)

        scheduler = InProcessScheduler(
            backend=select_backend(settings),
            job_store=job_store,
            track_store=track_store,
            audio_store=audio_store,
            capacity=1,
            progress_interval=settings.progress_interval_seconds,
            render_timeout=settings.render_timeout_seconds,
        )

        app.state.engine = engine
        app.state.job_store = job_store
        app.state.track_store = track_store
        app.state.user_store = UserStore(engine)
        app.state.audio_store = audio_store

        await scheduler.start()
        app.state.scheduler = scheduler
        logger.info("Job scheduler started")

        try:
            yield
        finally:
            logger.info("Shutting down %s", settings.app_name)
            app.state.scheduler = None
            await scheduler.stop()
            engine.dispose()

    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Text-to-music generation with a serialized render queue",
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SubmissionError)
    async def submission_error_handler(request: Request, exc: SubmissionError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        detail = exc.detail
        content = {"error": detail} if isinstance(detail, str) else {"error": "error", "detail": detail}
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "invalid_request", "detail": jsonable_errors(exc)},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "internal_error"})

    app.include_router(health_router, tags=["health"])  # GET /health at root
    app.include_router(v1_router)  # All /v1/* endpoints
    return app


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]


app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "texttune.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
    )
