import json
import logging
from datetime import datetime
from typing import Literal, Optional

logger = logging.getLogger(__name__)

LOG_CHANNEL = 'system_logs'

LogLevel = Literal['INFO', 'WARNING', 'ERROR', 'SUCCESS', 'DEBUG']
LogSource = Literal['executor', 'sweeper', 'backend', 'system']


class LogPublisher:
    """publish lifecycle log lines to redis for the /ws/logs stream"""

    def __init__(self, redis_url: str = ""):
        self.redis_url = redis_url
        self._redis_client = None

    @property
    def enabled(self) -> bool:
        return bool(self.redis_url)

    def get_redis_client(self):
        # lazy initialize redis to avoid startup issues
        if self._redis_client is None:
            import redis
            self._redis_client = redis.from_url(self.redis_url)
        return self._redis_client

    def publish_log(
        self,
        source: LogSource,
        level: LogLevel,
        message: str,
        metadata: Optional[dict] = None
    ):
        """publish a log message to redis for real-time streaming"""
        if not self.enabled:
            return

        log_entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "source": source,
            "level": level,
            "message": message,
            "metadata": metadata or {}
        }

        try:
            self.get_redis_client().publish(LOG_CHANNEL, json.dumps(log_entry))
        except Exception as e:
            # don't crash if redis publish fails
            logger.warning(f"failed to publish log: {e}")
