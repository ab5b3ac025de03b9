# chatwal/main.py
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError as PydanticValidationError

from chatwal.api import batch, messages, persistence
from chatwal.api.sync_temporal import router as sync_temporal_router
from chatwal.config import Settings, get_settings
from chatwal.domain.errors import (
    BadRequestError, CommitError, ConflictError, NotFoundError, PersistenceError,
)
from chatwal.repo.primary import PrimaryStore
from chatwal.service import DurabilityService

LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
LOG_FILE = LOG_DIR / "chatwal.log"


def _configure_logging(level: str = "INFO"):
    logger = logging.getLogger("chatwal")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not logger.handlers:
        fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")

        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(fmt)
        logger.addHandler(stream_handler)

        try:
            LOG_DIR.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(LOG_FILE, maxBytes=5 * 1024 * 1024, backupCount=5)
            file_handler.setFormatter(fmt)
            logger.addHandler(file_handler)
        except Exception as exc:
            logger.warning("Failed to initialize file logging at %s: %s", LOG_FILE, exc)

    logger.propagate = False
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def create_app(settings: Optional[Settings] = None, primary: Optional[PrimaryStore] = None) -> FastAPI:
    settings = settings or get_settings()
    _configure_logging(settings.log_level)
    logger = logging.getLogger("chatwal")
    logger.info(
        "[config] data_dir=%s batch_interval_s=%s recovery_interval_s=%s primary_store=%s",
        settings.data_dir, settings.batch_interval_s, settings.recovery_interval_s, settings.primary_store,
    )

    app = FastAPI(title="chatwal")
    app.state.service = DurabilityService(settings, primary=primary)

    @app.on_event("startup")
    async def _replay_logs_and_start_timers():
        await app.state.service.start()

    @app.on_event("shutdown")
    async def _drain_and_stop():
        await app.state.service.shutdown()

    # Routers
    app.include_router(messages.router)
    app.include_router(batch.router)
    app.include_router(persistence.router)
    app.include_router(sync_temporal_router)

    # Exception handlers
    @app.exception_handler(NotFoundError)
    async def not_found_handler(_: Request, exc: NotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND,
                            content={"error":"NotFound","detail":exc.what})

    @app.exception_handler(ConflictError)
    async def conflict_handler(_: Request, exc: ConflictError):
        return JSONResponse(status_code=status.HTTP_409_CONFLICT,
                            content={"error":"Conflict","detail":exc.detail})

    @app.exception_handler(BadRequestError)
    async def badreq_handler(_: Request, exc: BadRequestError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST,
                            content={"error":"BadRequest","detail":exc.detail})

    @app.exception_handler(PersistenceError)
    async def persistence_handler(_: Request, exc: PersistenceError):
        # the message was NOT made durable; the caller must retry
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            content={"error":"PersistenceError","detail":exc.detail})

    @app.exception_handler(CommitError)
    async def commit_handler(_: Request, exc: CommitError):
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY,
                            content={"error":"CommitError","detail":exc.detail})

    @app.exception_handler(PydanticValidationError)
    async def pydantic_validation_handler(_: Request, exc: PydanticValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=jsonable_encoder({"error":"ValidationError","detail":exc.errors()}),
        )

    return app

# Instantiate for uvicorn
app = create_app()
