from fastapi import APIRouter, UploadFile, File, HTTPException, Depends
from app.core.config import Settings
from app.core.deps import get_settings, get_registry, get_engine, get_log_publisher
from app.core.errors import ProbeError, StorageError
from app.models.files import SourceFile
from app.services.ffmpeg import FFmpegEngine
from app.services.log_publisher import LogPublisher
from app.services.registry import JobRegistry
import logging
import os
from uuid import uuid4

logger = logging.getLogger(__name__)

router = APIRouter()

ALLOWED_EXTENSIONS = ('.mp4', '.mov', '.avi', '.webm', '.mkv', '.flv')
ALLOWED_MIME_TYPES = (
    'video/mp4',
    'video/quicktime', 'video/mov',
    'video/x-msvideo', 'video/avi',
    'video/webm',
    'video/x-matroska', 'video/mkv',
    'video/x-flv', 'video/flv',
)
CHUNK_SIZE = 1024 * 1024


def _remove_quietly(path: str):
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError as e:
        logger.warning(f"could not remove {path}: {e}")


def _save_capped(upload: UploadFile, temp_path: str, max_bytes: int) -> int:
    """stream the upload to disk; returns bytes written or -1 if over the cap"""
    written = 0
    with open(temp_path, "wb") as buffer:
        for chunk in iter(lambda: upload.file.read(CHUNK_SIZE), b""):
            written += len(chunk)
            if written > max_bytes:
                return -1
            buffer.write(chunk)
    return written


def _finalize(temp_path: str, final_path: str):
    try:
        os.replace(temp_path, final_path)
    except OSError as e:
        raise StorageError(f"could not store upload: {e}")


@router.post("/upload")
def upload_file(
    video: UploadFile = File(...),
    settings: Settings = Depends(get_settings),
    registry: JobRegistry = Depends(get_registry),
    engine: FFmpegEngine = Depends(get_engine),
    log_publisher: LogPublisher = Depends(get_log_publisher),
):
    """accept one video, probe it and register it as a source file"""
    filename = video.filename or ""
    ext = os.path.splitext(filename)[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(status_code=400, detail=f"Unsupported file extension: {ext or 'none'}")
    if video.content_type not in ALLOWED_MIME_TYPES:
        raise HTTPException(status_code=400, detail=f"Unsupported file type: {video.content_type}")

    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    file_id = uuid4().hex
    temp_path = os.path.join(settings.UPLOAD_DIR, f"temp_{file_id}{ext}")
    final_path = os.path.join(settings.UPLOAD_DIR, f"{file_id}{ext}")

    try:
        size = _save_capped(video, temp_path, settings.MAX_FILE_SIZE)
        if size < 0:
            raise HTTPException(
                status_code=400,
                detail=f"File too large: must be less than {settings.MAX_FILE_SIZE // (1024 * 1024)}MB"
            )
        _finalize(temp_path, final_path)
    except (StorageError, OSError) as e:
        logger.error(f"upload failed for {filename}: {e}")
        raise HTTPException(status_code=500, detail=f"Upload failed: {e}")
    finally:
        _remove_quietly(temp_path)

    try:
        meta = engine.probe(final_path)
    except ProbeError as e:
        _remove_quietly(final_path)
        raise HTTPException(status_code=400, detail=f"Invalid video file: {e}")

    source = registry.register(SourceFile(
        id=file_id,
        original_filename=filename,
        stored_path=final_path,
        size_bytes=size,
        duration=meta.duration,
        width=meta.width,
        height=meta.height,
        format=meta.format,
    ))
    log_publisher.publish_log('backend', 'INFO', f'uploaded {filename}', {"file_id": file_id})

    return source.upload_payload()


@router.get("/files/{file_id}")
def get_file_info(file_id: str, registry: JobRegistry = Depends(get_registry)):
    """metadata for a registered upload"""
    source = registry.get(file_id)
    if not source:
        raise HTTPException(status_code=404, detail="File not found")

    info = source.upload_payload()
    info.update({
        "original_filename": source.original_filename,
        "size": source.size_bytes,
        "uploaded_at": source.created_at.isoformat(),
        "exists": os.path.exists(source.stored_path),
    })
    return info
