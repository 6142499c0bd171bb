from datetime import datetime
from uuid import uuid4
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.utcnow()


class SourceFile(SQLModel):
    """an uploaded video with its probe metadata cached at registration"""
    id: str = Field(default_factory=lambda: uuid4().hex)
    original_filename: str
    stored_path: str
    size_bytes: int = Field(default=0)
    duration: float = Field(default=0.0)  # seconds
    width: int = Field(default=0)
    height: int = Field(default=0)
    format: str = Field(default="unknown")  # container format reported by ffprobe
    created_at: datetime = Field(default_factory=utcnow)

    def upload_payload(self) -> dict:
        return {
            "file_id": self.id,
            "duration": self.duration,
            "dimensions": {"width": self.width, "height": self.height},
            "format": self.format,
        }
