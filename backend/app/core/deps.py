from starlette.requests import HTTPConnection

from app.core.config import Settings
from app.services.broadcaster import ProgressBroadcaster
from app.services.executor import JobExecutor
from app.services.ffmpeg import FFmpegEngine
from app.services.log_publisher import LogPublisher
from app.services.registry import JobRegistry
from app.services.storage_manager import RetentionSweeper


# components are built once in create_app() and stored on app.state;
# these work for both http and websocket routes


def get_settings(conn: HTTPConnection) -> Settings:
    return conn.app.state.settings


def get_registry(conn: HTTPConnection) -> JobRegistry:
    return conn.app.state.registry


def get_broadcaster(conn: HTTPConnection) -> ProgressBroadcaster:
    return conn.app.state.broadcaster


def get_engine(conn: HTTPConnection) -> FFmpegEngine:
    return conn.app.state.engine


def get_executor(conn: HTTPConnection) -> JobExecutor:
    return conn.app.state.executor


def get_sweeper(conn: HTTPConnection) -> RetentionSweeper:
    return conn.app.state.sweeper


def get_log_publisher(conn: HTTPConnection) -> LogPublisher:
    return conn.app.state.log_publisher
