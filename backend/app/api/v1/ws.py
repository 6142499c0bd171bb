from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends
from app.core.config import Settings
from app.core.deps import get_settings, get_registry, get_broadcaster
from app.services.broadcaster import ProgressBroadcaster, QueueObserver, build_job_events
from app.services.log_publisher import LOG_CHANNEL
from app.services.registry import JobRegistry
from datetime import datetime
from uuid import uuid4
import asyncio
import json
import logging
import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

router = APIRouter()


async def _pump(websocket: WebSocket, observer: QueueObserver):
    """forward queued events to the socket until cancelled; the only task that writes to it"""
    while True:
        event = await observer.queue.get()
        if isinstance(event, str):
            await websocket.send_text(event)
        else:
            await websocket.send_json(event)


@router.websocket("/jobs")
async def websocket_jobs(
    websocket: WebSocket,
    registry: JobRegistry = Depends(get_registry),
    broadcaster: ProgressBroadcaster = Depends(get_broadcaster),
):
    """
    real-time job events

    client messages: {"action": "join"|"leave", "job_id": "..."} or "ping".
    joining a room immediately replays the job's current state.
    """
    await websocket.accept()
    observer = QueueObserver(observer_id=uuid4().hex)
    sender = asyncio.ensure_future(_pump(websocket, observer))

    try:
        while True:
            data = await websocket.receive_text()
            # client can send "ping" to keep alive
            if data == "ping":
                observer.deliver("pong")
                continue

            try:
                message = json.loads(data)
                action = message["action"]
                job_id = str(message["job_id"])
            except (ValueError, KeyError, TypeError):
                observer.deliver({"type": "error", "message": "expected {action, job_id}"})
                continue

            if action == "join":
                broadcaster.join_observers(job_id, observer)
                job = registry.get_job(job_id)
                if job is None:
                    broadcaster.leave_observers(job_id, observer.observer_id)
                    observer.deliver({"type": "error", "job_id": job_id, "message": "job not found"})
                    continue
                for event in build_job_events(job.id, job.status, job.progress, job.error, job.output_url):
                    observer.deliver(event)
            elif action == "leave":
                broadcaster.leave_observers(job_id, observer.observer_id)
            else:
                observer.deliver({"type": "error", "message": f"unknown action {action}"})
    except WebSocketDisconnect:
        logger.debug(f"observer {observer.observer_id} disconnected")
    finally:
        broadcaster.drop_observer(observer.observer_id)
        sender.cancel()


@router.websocket("/logs")
async def websocket_logs(websocket: WebSocket, settings: Settings = Depends(get_settings)):
    """stream real-time logs from the redis pub/sub channel"""
    await websocket.accept()

    if not settings.REDIS_URL:
        await websocket.send_json({
            "type": "error",
            "timestamp": datetime.utcnow().isoformat(),
            "message": "log stream is not configured",
        })
        await websocket.close()
        return

    redis = aioredis.from_url(settings.REDIS_URL)
    pubsub = redis.pubsub()
    try:
        await pubsub.subscribe(LOG_CHANNEL)

        # send initial connection message
        await websocket.send_json({
            "type": "connected",
            "timestamp": datetime.utcnow().isoformat(),
            "source": "system",
            "level": "INFO",
            "message": "log stream connected",
            "metadata": {}
        })

        async for message in pubsub.listen():
            if message['type'] != 'message':
                continue
            try:
                log_data = json.loads(message['data'])
            except ValueError as e:
                logger.warning(f"error parsing log message: {e}")
                continue
            await websocket.send_json(log_data)

    except WebSocketDisconnect:
        logger.debug("client disconnected from log stream")
    finally:
        await pubsub.unsubscribe(LOG_CHANNEL)
        await redis.aclose()
