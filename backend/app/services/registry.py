import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from app.core.errors import JobNotFound, SourceNotFound
from app.models.files import SourceFile
from app.models.jobs import JobStatus, ProcessingJob
from app.models.operations import OperationSet

logger = logging.getLogger(__name__)


class JobRegistry:
    """
    authoritative in-memory state for uploaded sources and processing jobs

    every public method holds the registry lock for the duration of a single
    map operation and never awaits, so it is safe to call from request
    threads and from the event loop alike. callers only ever see copies;
    jobs change exclusively through update_job.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._sources: Dict[str, SourceFile] = {}
        self._jobs: Dict[str, ProcessingJob] = {}

    # sources

    def register(self, source: SourceFile) -> SourceFile:
        with self._lock:
            self._sources[source.id] = source
        logger.info(f"registered source {source.id} ({source.original_filename})")
        return source.model_copy()

    def get(self, source_id: str) -> Optional[SourceFile]:
        with self._lock:
            source = self._sources.get(source_id)
            return source.model_copy() if source else None

    def list_stale_sources(self, now: datetime, window: timedelta) -> List[SourceFile]:
        cutoff = now - window
        with self._lock:
            return [s.model_copy() for s in self._sources.values() if s.created_at < cutoff]

    def is_source_in_use(self, source_id: str) -> bool:
        with self._lock:
            return any(
                job.file_id == source_id and not job.is_terminal
                for job in self._jobs.values()
            )

    def delete_source(self, source_id: str, older_than: Optional[datetime] = None) -> Optional[SourceFile]:
        """
        remove a source record and return it so the caller can delete its file

        returns None (and removes nothing) if the source is unknown, was
        registered after older_than, or still backs a non-terminal job
        """
        with self._lock:
            source = self._sources.get(source_id)
            if source is None:
                return None
            if older_than is not None and source.created_at >= older_than:
                return None
            if self.is_source_in_use(source_id):
                logger.info(f"keeping source {source_id}: referenced by an active job")
                return None
            del self._sources[source_id]
            return source

    # jobs

    def create_job(self, source_id: str, operations: OperationSet) -> str:
        with self._lock:
            if source_id not in self._sources:
                raise SourceNotFound(f"file {source_id} not found")
            job = ProcessingJob(file_id=source_id, operations=operations)
            self._jobs[job.id] = job
        logger.info(f"created job {job.id} for source {source_id}")
        return job.id

    def get_job(self, job_id: str) -> Optional[ProcessingJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy() if job else None

    def update_job(self, job_id: str, mutator: Callable[[ProcessingJob], object]) -> ProcessingJob:
        """
        apply mutator to the stored job atomically and return a copy of the result

        if the mutator raises, the job is left exactly as it was
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFound(f"job {job_id} not found")
            working = job.model_copy()
            mutator(working)
            self._jobs[job_id] = working
            return working.model_copy()

    def list_jobs(self, status: Optional[JobStatus] = None) -> List[ProcessingJob]:
        with self._lock:
            jobs = [j.model_copy() for j in self._jobs.values() if status is None or j.status == status]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    def list_stale_job_outputs(self, now: datetime, window: timedelta) -> List[ProcessingJob]:
        cutoff = now - window
        with self._lock:
            return [
                j.model_copy() for j in self._jobs.values()
                if j.status == JobStatus.COMPLETED and j.output_path and j.updated_at < cutoff
            ]

    def clear_job_output(self, job_id: str, older_than: Optional[datetime] = None) -> Optional[str]:
        """
        drop a completed job's artifact reference and return the path to delete

        the job must still be completed and (if older_than is given) not
        updated since the cutoff; otherwise nothing changes and None is returned
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.COMPLETED or not job.output_path:
                return None
            if older_than is not None and job.updated_at >= older_than:
                return None
            return job.clear_output()

    def counts(self) -> dict:
        with self._lock:
            by_status = {status.value: 0 for status in JobStatus}
            for job in self._jobs.values():
                by_status[job.status.value] += 1
            return {"sources": len(self._sources), "jobs": by_status}
