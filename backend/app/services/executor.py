import asyncio
import logging
import os
from typing import Optional, Set

from app.core.errors import EngineError, InvalidTransition, JobNotFound, SourceNotFound, handle_worker_error
from app.models.jobs import ProcessingJob
from app.services.broadcaster import ProgressBroadcaster
from app.services.ffmpeg import FFmpegEngine
from app.services.filter_graph import compile_pipeline, expected_output_duration
from app.services.log_publisher import LogPublisher
from app.services.registry import JobRegistry

logger = logging.getLogger(__name__)

DOWNLOAD_URL = "/api/download/{job_id}"


def output_filename(job_id: str, output_format: str) -> str:
    extension = ".gif" if output_format == "gif" else f".{output_format}"
    return f"{job_id}{extension}"


class JobExecutor:
    """
    drives one job at a time through pending -> processing -> completed|failed

    submit() detaches run() as an asyncio task; run() is the only code that
    changes a job's status, and it commits every change through the registry
    before notifying the broadcaster, so observers see events in order
    """

    def __init__(
        self,
        registry: JobRegistry,
        broadcaster: ProgressBroadcaster,
        engine: FFmpegEngine,
        output_dir: str,
        log_publisher: Optional[LogPublisher] = None,
    ):
        self.registry = registry
        self.broadcaster = broadcaster
        self.engine = engine
        self.output_dir = output_dir
        self.log_publisher = log_publisher or LogPublisher()
        self._tasks: Set[asyncio.Task] = set()

    def submit(self, job_id: str) -> asyncio.Task:
        """start run(job_id) in the background and return immediately"""
        task = asyncio.get_running_loop().create_task(self.run(job_id), name=f"job-{job_id}")
        # hold a reference until the task finishes
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    async def wait_idle(self):
        """wait for every submitted job to finish (used on shutdown and in tests)"""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _notify(self, job: ProcessingJob):
        self.broadcaster.notify(
            job.id,
            job.status,
            job.progress,
            error=job.error,
            output_url=job.output_url,
        )

    async def run(self, job_id: str):
        try:
            job = self.registry.update_job(job_id, lambda j: j.mark_processing())
        except (JobNotFound, InvalidTransition) as e:
            # unknown job or already started: nothing of ours to drive
            logger.error(f"cannot start job {job_id}: {e}")
            return

        self._notify(job)
        self.log_publisher.publish_log('executor', 'INFO', f'starting job {job_id}', {"job_id": job_id})

        try:
            output_path, output_url = await self._execute(job)
        except Exception as e:
            handle_worker_error(job_id, e)
            self._fail(job_id, str(e) or e.__class__.__name__)
            return

        job = self.registry.update_job(job_id, lambda j: j.mark_completed(output_path, output_url))
        logger.info(f"job {job_id} completed: {output_path}")
        self._notify(job)
        self.log_publisher.publish_log('executor', 'SUCCESS', f'job {job_id} completed', {"job_id": job_id})

    async def _execute(self, job: ProcessingJob):
        source = self.registry.get(job.file_id)
        if source is None:
            raise SourceNotFound(f"source file {job.file_id} not found")
        if not os.path.exists(source.stored_path):
            raise SourceNotFound(f"source file {job.file_id} is missing on disk")

        operations = job.operations
        os.makedirs(self.output_dir, exist_ok=True)
        output_path = os.path.join(self.output_dir, output_filename(job.id, operations.output_format))

        spec = compile_pipeline(operations, source.width, source.height)
        duration = expected_output_duration(operations, source.duration)
        logger.info(
            f"job {job.id}: format={spec.format} steps={[s.kind for s in spec.steps]} "
            f"source={source.width}x{source.height} expected={duration:.2f}s"
        )

        # the engine stream is consumed sequentially, so events for this job
        # are committed and emitted one at a time
        last_progress = job.progress
        async for percent in self.engine.transcode(spec, source.stored_path, output_path, duration):
            updated = self.registry.update_job(job.id, lambda j: j.record_progress(percent))
            if updated.progress > last_progress:
                last_progress = updated.progress
                self._notify(updated)

        if not os.path.exists(output_path):
            raise EngineError("FFmpeg error: no output file was produced")

        return output_path, DOWNLOAD_URL.format(job_id=job.id)

    def _fail(self, job_id: str, message: str):
        try:
            job = self.registry.update_job(job_id, lambda j: j.mark_failed(message))
        except (JobNotFound, InvalidTransition) as e:
            logger.error(f"could not mark job {job_id} failed: {e}")
            return
        self._notify(job)
        self.log_publisher.publish_log('executor', 'ERROR', f'job {job_id} failed: {message}', {"job_id": job_id})
