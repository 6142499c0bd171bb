import logging

logger = logging.getLogger(__name__)


def handle_worker_error(job_id: str, error: Exception):
    """
    centralized error handler for pipeline jobs
    logs the failure; the job record itself carries the message to clients
    """
    logger.error(f"job {job_id} failed: {error}", exc_info=error)


class ClipsmithException(Exception):
    """base exception for clipsmith-specific errors"""
    pass


class SourceNotFound(ClipsmithException):
    """raised when a file id is not registered"""
    pass


class JobNotFound(ClipsmithException):
    """raised when a job id is not registered"""
    pass


class ProbeError(ClipsmithException):
    """raised when ffprobe cannot read a file or finds no video stream"""
    pass


class EngineError(ClipsmithException):
    """raised when an ffmpeg transcode fails"""
    pass


class StorageError(ClipsmithException):
    """raised when moving or deleting an artifact on disk fails"""
    pass


class InvalidTransition(ClipsmithException):
    """raised when a job state change is not allowed from its current status"""
    pass
