from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse
from pydantic import BaseModel
from typing import Any, Dict, Optional
from app.core.deps import get_registry, get_executor
from app.core.errors import SourceNotFound
from app.models.jobs import JobStatus
from app.services.executor import JobExecutor
from app.services.operations import sanitize_operations
from app.services.registry import JobRegistry
import logging
import os

logger = logging.getLogger(__name__)

router = APIRouter()

MEDIA_TYPES = {
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".gif": "image/gif",
}


class ProcessRequest(BaseModel):
    file_id: str
    # sanitized field by field, so accept anything here
    operations: Dict[str, Any]


@router.post("/process")
async def process_file(
    request: ProcessRequest,
    registry: JobRegistry = Depends(get_registry),
    executor: JobExecutor = Depends(get_executor),
):
    """create a pending job and start it in the background"""
    operations = sanitize_operations(request.operations)

    try:
        job_id = registry.create_job(request.file_id, operations)
    except SourceNotFound:
        raise HTTPException(status_code=404, detail="File not found")

    executor.submit(job_id)
    return {"job_id": job_id}


@router.get("/status/{job_id}")
def get_status(job_id: str, registry: JobRegistry = Depends(get_registry)):
    job = registry.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.status_payload()


@router.get("/download/{job_id}")
def download_output(job_id: str, registry: JobRegistry = Depends(get_registry)):
    """serve the finished artifact for a completed job"""
    job = registry.get_job(job_id)
    if not job or job.status != JobStatus.COMPLETED or not job.output_path:
        raise HTTPException(status_code=404, detail="File not found or processing incomplete")

    if not os.path.exists(job.output_path):
        logger.error(f"output missing on disk for job {job_id}: {job.output_path}")
        raise HTTPException(status_code=404, detail="File not found or processing incomplete")

    filename = os.path.basename(job.output_path)
    ext = os.path.splitext(filename)[1]
    return FileResponse(
        job.output_path,
        media_type=MEDIA_TYPES.get(ext, "application/octet-stream"),
        filename=filename
    )


@router.get("/jobs/")
def get_jobs(
    registry: JobRegistry = Depends(get_registry),
    status: Optional[JobStatus] = None,
    limit: int = Query(default=50, le=200)
):
    """job statuses grouped by state, newest first"""
    jobs = registry.list_jobs(status)[:limit]

    grouped = {s.value: [] for s in JobStatus}
    for job in jobs:
        grouped[job.status.value].append(job.summary())

    counts = registry.counts()["jobs"]
    return {
        "processing": grouped[JobStatus.PROCESSING.value],
        "pending": grouped[JobStatus.PENDING.value],
        "completed": grouped[JobStatus.COMPLETED.value][:20],  # last 20
        "failed": grouped[JobStatus.FAILED.value][:20],  # last 20
        "summary": {
            "processing_count": counts[JobStatus.PROCESSING.value],
            "pending_count": counts[JobStatus.PENDING.value],
            "completed_count": counts[JobStatus.COMPLETED.value],
            "failed_count": counts[JobStatus.FAILED.value],
        }
    }
