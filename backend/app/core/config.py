import os
from typing import List

from pydantic import BaseModel


class Settings(BaseModel):
    PROJECT_NAME: str = "Clipsmith"

    # storage paths
    DATA_DIR: str = os.getenv("DATA_DIR", "/data")
    UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", os.path.join(os.getenv("DATA_DIR", "/data"), "uploads"))
    OUTPUT_DIR: str = os.getenv("OUTPUT_DIR", os.path.join(os.getenv("DATA_DIR", "/data"), "outputs"))

    # upload limits
    MAX_FILE_SIZE: int = int(os.getenv("MAX_FILE_SIZE", str(100 * 1024 * 1024)))  # 100MB

    # retention: sweep every hour, keep artifacts for 30 minutes
    CLEANUP_INTERVAL_SEC: float = float(os.getenv("CLEANUP_INTERVAL_SEC", "3600"))
    RETENTION_WINDOW_SEC: float = float(os.getenv("RETENTION_WINDOW_SEC", "1800"))

    # external engine binaries
    FFMPEG_PATH: str = os.getenv("FFMPEG_PATH", "ffmpeg")
    FFPROBE_PATH: str = os.getenv("FFPROBE_PATH", "ffprobe")

    # empty string disables the redis log stream
    REDIS_URL: str = os.getenv("REDIS_URL", "")

    ALLOWED_ORIGINS: str = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000")

    LOG_DIR: str = os.getenv("LOG_DIR", "")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    def allowed_origins(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]


settings = Settings()
