import asyncio
import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Optional

from app.services.log_publisher import LogPublisher
from app.services.registry import JobRegistry

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    sources_deleted: int = 0
    sources_kept_in_use: int = 0
    outputs_deleted: int = 0
    bytes_freed: int = 0
    delete_errors: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


class RetentionSweeper:
    """reclaims uploads and job outputs older than the retention window"""

    def __init__(
        self,
        registry: JobRegistry,
        upload_dir: str,
        output_dir: str,
        retention_window_sec: float = 1800,
        interval_sec: float = 3600,
        log_publisher: Optional[LogPublisher] = None,
    ):
        self.registry = registry
        self.upload_dir = upload_dir
        self.output_dir = output_dir
        self.retention_window = timedelta(seconds=retention_window_sec)
        self.interval_sec = interval_sec
        self.log_publisher = log_publisher or LogPublisher()

    def get_disk_usage(self) -> dict:
        """get current disk usage statistics"""
        uploads_size = self._get_directory_size(self.upload_dir)
        outputs_size = self._get_directory_size(self.output_dir)
        total_size = uploads_size + outputs_size

        return {
            "uploads_mb": uploads_size / (1024**2),
            "outputs_mb": outputs_size / (1024**2),
            "total_mb": total_size / (1024**2),
            "retention_window_sec": self.retention_window.total_seconds(),
        }

    def _get_directory_size(self, path: str) -> int:
        """recursively calculate directory size in bytes"""
        total = 0
        try:
            for entry in os.scandir(path):
                if entry.is_file():
                    total += entry.stat().st_size
                elif entry.is_dir():
                    total += self._get_directory_size(entry.path)
        except OSError as e:
            logger.warning(f"error calculating size for {path}: {e}")
        return total

    def _delete_file(self, path: str, report: SweepReport):
        """delete one file; failures are logged and counted, never raised"""
        try:
            file_size = os.path.getsize(path)
            os.remove(path)
            report.bytes_freed += file_size
        except FileNotFoundError:
            logger.info(f"already gone: {path}")
        except OSError as e:
            report.delete_errors += 1
            logger.error(f"error deleting {path}: {e}")

    def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """
        run one retention pass

        1. stale sources are removed from the registry and disk, except those
           still backing a pending/processing job
        2. completed jobs past the window lose their output file; the job
           record stays for status queries

        the registry re-checks staleness and job state under its lock when
        each entry is removed, so a job finishing mid-sweep is left alone
        """
        now = now or datetime.utcnow()
        cutoff = now - self.retention_window
        report = SweepReport()

        for source in self.registry.list_stale_sources(now, self.retention_window):
            removed = self.registry.delete_source(source.id, older_than=cutoff)
            if removed is None:
                report.sources_kept_in_use += 1
                continue
            self._delete_file(removed.stored_path, report)
            report.sources_deleted += 1
            logger.info(f"deleted old upload: {removed.stored_path}")

        for job in self.registry.list_stale_job_outputs(now, self.retention_window):
            path = self.registry.clear_job_output(job.id, older_than=cutoff)
            if path is None:
                continue
            self._delete_file(path, report)
            report.outputs_deleted += 1
            logger.info(f"deleted old output for job {job.id}: {path}")

        if report.sources_deleted or report.outputs_deleted:
            message = (
                f"cleanup complete: {report.sources_deleted} uploads, "
                f"{report.outputs_deleted} outputs, {report.bytes_freed / (1024**2):.2f} MB freed"
            )
            logger.info(message)
            self.log_publisher.publish_log('sweeper', 'INFO', message, report.as_dict())
        return report

    async def run_forever(self):
        """sweep every interval_sec until cancelled"""
        logger.info(
            f"retention sweeper started: every {self.interval_sec}s, "
            f"window {self.retention_window.total_seconds()}s"
        )
        while True:
            await asyncio.sleep(self.interval_sec)
            try:
                await asyncio.to_thread(self.sweep)
            except Exception as e:
                # keep the loop alive; the next interval retries
                logger.error(f"cleanup error: {e}", exc_info=True)
