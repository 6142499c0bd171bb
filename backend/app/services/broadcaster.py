import asyncio
import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Union

from app.models.jobs import JobStatus

logger = logging.getLogger(__name__)


class Observer(Protocol):
    observer_id: str

    def deliver(self, event: dict) -> None:
        """hand an event over without blocking"""


class QueueObserver:
    """
    observer backed by an asyncio queue

    deliver() may be called from any thread; the owning connection drains
    the queue on its own event loop
    """

    def __init__(self, observer_id: str, loop: Optional[asyncio.AbstractEventLoop] = None, maxsize: int = 256):
        self.observer_id = observer_id
        self.loop = loop or asyncio.get_running_loop()
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def _put(self, event: Union[dict, str]):
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"observer {self.observer_id} is not keeping up, dropping event")

    def deliver(self, event: Union[dict, str]) -> None:
        self.loop.call_soon_threadsafe(self._put, event)


def _timestamp() -> str:
    return datetime.utcnow().isoformat()


def build_job_events(
    job_id: str,
    status: JobStatus,
    progress: int,
    error: Optional[str] = None,
    output_url: Optional[str] = None,
) -> List[dict]:
    """job-progress always; job-complete or job-error follows on terminal states"""
    status_value = status.value if isinstance(status, JobStatus) else str(status)
    timestamp = _timestamp()

    events = [{
        "type": "job-progress",
        "job_id": job_id,
        "progress": progress,
        "status": status_value,
        "timestamp": timestamp,
    }]
    if status_value == JobStatus.COMPLETED.value:
        events.append({
            "type": "job-complete",
            "job_id": job_id,
            "output_url": output_url,
            "timestamp": timestamp,
        })
    elif status_value == JobStatus.FAILED.value:
        events.append({
            "type": "job-error",
            "job_id": job_id,
            "error": error,
            "timestamp": timestamp,
        })
    return events


class ProgressBroadcaster:
    """
    fan out job events to observers grouped in per-job rooms

    delivery is best effort: observers that are not joined miss events and
    can fall back to polling the status endpoint
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._rooms: Dict[str, Dict[str, Observer]] = {}

    def join_observers(self, job_id: str, observer: Observer):
        with self._lock:
            self._rooms.setdefault(job_id, {})[observer.observer_id] = observer
        logger.debug(f"observer {observer.observer_id} joined job {job_id}")

    def leave_observers(self, job_id: str, observer_id: str):
        with self._lock:
            room = self._rooms.get(job_id)
            if room is None:
                return
            room.pop(observer_id, None)
            if not room:
                del self._rooms[job_id]
        logger.debug(f"observer {observer_id} left job {job_id}")

    def drop_observer(self, observer_id: str):
        """remove an observer from every room (e.g. on disconnect)"""
        with self._lock:
            for job_id in list(self._rooms):
                room = self._rooms[job_id]
                room.pop(observer_id, None)
                if not room:
                    del self._rooms[job_id]

    def observer_count(self, job_id: str) -> int:
        with self._lock:
            return len(self._rooms.get(job_id, {}))

    def notify(
        self,
        job_id: str,
        status: JobStatus,
        progress: int,
        error: Optional[str] = None,
        output_url: Optional[str] = None,
    ):
        """push a job-progress event, plus job-complete/job-error on terminal states"""
        events = build_job_events(job_id, status, progress, error=error, output_url=output_url)

        with self._lock:
            observers = list(self._rooms.get(job_id, {}).values())
        if not observers:
            return

        # deliver outside the lock so join/leave never waits on an observer
        disconnected = []
        for observer in observers:
            try:
                for event in events:
                    observer.deliver(event)
            except Exception as e:
                logger.warning(f"dropping observer {observer.observer_id}: {e}")
                disconnected.append(observer.observer_id)

        for observer_id in disconnected:
            self.drop_observer(observer_id)

