from fastapi import APIRouter, Depends
from app.core.config import Settings
from app.core.deps import get_settings, get_registry, get_engine, get_executor, get_log_publisher
from app.services.executor import JobExecutor
from app.services.ffmpeg import FFmpegEngine
from app.services.log_publisher import LogPublisher
from app.services.registry import JobRegistry
from datetime import datetime
import os

router = APIRouter()


@router.get("/")
def health_check():
    """basic liveness check"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "service": "clipsmith-backend"
    }


@router.get("/ready")
def readiness_check(
    settings: Settings = Depends(get_settings),
    engine: FFmpegEngine = Depends(get_engine),
    log_publisher: LogPublisher = Depends(get_log_publisher),
):
    """comprehensive readiness check - verifies all dependencies"""
    checks = {}
    all_healthy = True

    # check ffmpeg / ffprobe binaries
    for name, found in engine.available().items():
        if found:
            checks[name] = {"status": "healthy", "message": "found"}
        else:
            checks[name] = {"status": "unhealthy", "message": "not found on PATH"}
            all_healthy = False

    # check storage directories
    for name, path in (("uploads", settings.UPLOAD_DIR), ("outputs", settings.OUTPUT_DIR)):
        if os.path.isdir(path) and os.access(path, os.W_OK):
            checks[name] = {"status": "healthy", "message": path}
        else:
            checks[name] = {"status": "unhealthy", "message": f"{path} is not writable"}
            all_healthy = False

    # check redis (optional, only feeds the log stream)
    if not log_publisher.enabled:
        checks["redis"] = {"status": "warning", "message": "not configured"}
    else:
        try:
            log_publisher.get_redis_client().ping()
            checks["redis"] = {"status": "healthy", "message": "connected"}
        except Exception as e:
            checks["redis"] = {"status": "warning", "message": str(e)}

    return {
        "status": "healthy" if all_healthy else "unhealthy",
        "timestamp": datetime.utcnow().isoformat(),
        "checks": checks
    }


@router.get("/metrics")
def get_metrics(
    registry: JobRegistry = Depends(get_registry),
    executor: JobExecutor = Depends(get_executor),
):
    """in-memory counters for sources and jobs"""
    counts = registry.counts()
    return {
        "timestamp": datetime.utcnow().isoformat(),
        "files": {"total": counts["sources"]},
        "jobs": counts["jobs"],
        "executor": {"active_tasks": executor.active_count},
    }
