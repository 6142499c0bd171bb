from contextlib import asynccontextmanager, suppress
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.api.v1 import upload, jobs, health, admin, ws
from app.core.config import Settings, settings as default_settings
from app.core.logging_config import configure_logging
from app.services.broadcaster import ProgressBroadcaster
from app.services.executor import JobExecutor
from app.services.ffmpeg import FFmpegEngine
from app.services.log_publisher import LogPublisher
from app.services.registry import JobRegistry
from app.services.storage_manager import RetentionSweeper
import asyncio
import logging
import os

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    cfg: Settings = app.state.settings
    os.makedirs(cfg.UPLOAD_DIR, exist_ok=True)
    os.makedirs(cfg.OUTPUT_DIR, exist_ok=True)

    sweeper_task = asyncio.ensure_future(app.state.sweeper.run_forever())
    logger.info(f"{cfg.PROJECT_NAME} started: uploads={cfg.UPLOAD_DIR} outputs={cfg.OUTPUT_DIR}")
    try:
        yield
    finally:
        sweeper_task.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper_task
        await app.state.executor.wait_idle()
        logger.info(f"{cfg.PROJECT_NAME} stopped")


def create_app(settings: Optional[Settings] = None, engine: Optional[FFmpegEngine] = None) -> FastAPI:
    """
    build the application and every stateful component it owns

    components live on app.state for the lifetime of the process;
    pass a custom engine to run without ffmpeg (tests)
    """
    settings = settings or default_settings

    app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

    log_publisher = LogPublisher(settings.REDIS_URL)
    registry = JobRegistry()
    broadcaster = ProgressBroadcaster()
    engine = engine or FFmpegEngine(settings.FFMPEG_PATH, settings.FFPROBE_PATH)

    app.state.settings = settings
    app.state.log_publisher = log_publisher
    app.state.registry = registry
    app.state.broadcaster = broadcaster
    app.state.engine = engine
    app.state.executor = JobExecutor(
        registry,
        broadcaster,
        engine,
        output_dir=settings.OUTPUT_DIR,
        log_publisher=log_publisher,
    )
    app.state.sweeper = RetentionSweeper(
        registry,
        upload_dir=settings.UPLOAD_DIR,
        output_dir=settings.OUTPUT_DIR,
        retention_window_sec=settings.RETENTION_WINDOW_SEC,
        interval_sec=settings.CLEANUP_INTERVAL_SEC,
        log_publisher=log_publisher,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.get("/")
    def read_root():
        return {"message": f"Welcome to {settings.PROJECT_NAME} API"}

    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(upload.router, prefix="/api", tags=["upload"])
    app.include_router(jobs.router, prefix="/api", tags=["jobs"])
    app.include_router(admin.router, prefix="/api/admin", tags=["admin"])
    app.include_router(ws.router, prefix="/ws", tags=["websocket"])

    return app


configure_logging(default_settings.LOG_LEVEL, default_settings.LOG_DIR or None)
app = create_app()
