from datetime import datetime
from enum import Enum
from uuid import uuid4
from sqlmodel import SQLModel, Field
from typing import Optional

from app.core.errors import InvalidTransition
from app.models.files import utcnow
from app.models.operations import OperationSet


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)


class ProcessingJob(SQLModel):
    """
    one execution of a compiled pipeline against a source file

    status only moves forward: pending -> processing -> completed | failed.
    every mutator bumps updated_at, which the retention sweep keys on.
    """
    id: str = Field(default_factory=lambda: uuid4().hex)
    file_id: str
    operations: OperationSet = Field(default_factory=OperationSet)
    status: JobStatus = Field(default=JobStatus.PENDING)
    progress: int = Field(default=0)
    output_path: Optional[str] = Field(default=None)
    output_url: Optional[str] = Field(default=None)
    error: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _touch(self):
        self.updated_at = utcnow()

    def mark_processing(self):
        if self.status != JobStatus.PENDING:
            raise InvalidTransition(f"job {self.id} cannot start from {self.status.value}")
        self.status = JobStatus.PROCESSING
        self._touch()

    def record_progress(self, percent: float) -> bool:
        """apply a progress sample; returns True if the stored value advanced"""
        if self.status != JobStatus.PROCESSING:
            raise InvalidTransition(f"job {self.id} is {self.status.value}, not processing")
        value = max(0, min(100, int(round(percent))))
        self._touch()
        if value <= self.progress:
            return False
        self.progress = value
        return True

    def mark_completed(self, output_path: str, output_url: str):
        if self.status != JobStatus.PROCESSING:
            raise InvalidTransition(f"job {self.id} cannot complete from {self.status.value}")
        self.status = JobStatus.COMPLETED
        self.progress = 100
        self.output_path = output_path
        self.output_url = output_url
        self.error = None
        self._touch()

    def mark_failed(self, message: str):
        if self.is_terminal:
            raise InvalidTransition(f"job {self.id} is already {self.status.value}")
        self.status = JobStatus.FAILED
        self.error = message
        self.output_path = None
        self.output_url = None
        self._touch()

    def clear_output(self) -> Optional[str]:
        """drop the artifact reference; the record stays queryable"""
        path = self.output_path
        self.output_path = None
        self.output_url = None
        return path

    def status_payload(self) -> dict:
        payload = {"status": self.status.value, "progress": self.progress}
        if self.output_url is not None:
            payload["output_url"] = self.output_url
        if self.error is not None:
            payload["error"] = self.error
        return payload

    def summary(self) -> dict:
        return {
            "id": self.id,
            "file_id": self.file_id,
            "status": self.status.value,
            "progress": self.progress,
            "output_url": self.output_url,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
