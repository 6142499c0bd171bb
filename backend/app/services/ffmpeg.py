import asyncio
import json
import logging
import os
import shutil
import subprocess
from collections import deque
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional

from app.core.errors import EngineError, ProbeError
from app.services.filter_graph import PipelineSpec

logger = logging.getLogger(__name__)

# codecs that honour -crf / -preset
CRF_CODECS = ("libx264", "libvpx-vp9")
PRESET_CODECS = ("libx264",)

# keep the tail of stderr for error messages
STDERR_TAIL_LINES = 20


@dataclass(frozen=True)
class MediaInfo:
    duration: float
    width: int
    height: int
    format: str
    size: int = 0


def parse_probe_output(raw: str) -> MediaInfo:
    """
    turn ffprobe json into MediaInfo
    raises ProbeError if the json is unreadable or has no video stream
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ProbeError(f"FFprobe error: unreadable output ({e})")

    streams = data.get("streams") or []
    video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
    if not video_stream:
        raise ProbeError("No video stream found")

    fmt = data.get("format") or {}
    try:
        return MediaInfo(
            duration=max(0.0, float(fmt.get("duration") or 0)),
            width=max(0, int(video_stream.get("width") or 0)),
            height=max(0, int(video_stream.get("height") or 0)),
            format=fmt.get("format_name") or "unknown",
            size=int(fmt.get("size") or 0),
        )
    except (TypeError, ValueError) as e:
        raise ProbeError(f"FFprobe error: {e}")


class FFmpegEngine:
    """thin wrapper around the ffprobe/ffmpeg binaries"""

    def __init__(self, ffmpeg_path: str = "ffmpeg", ffprobe_path: str = "ffprobe"):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path

    def available(self) -> dict:
        """which binaries can be found on PATH (used by readiness checks)"""
        return {
            "ffmpeg": shutil.which(self.ffmpeg_path) is not None,
            "ffprobe": shutil.which(self.ffprobe_path) is not None,
        }

    def probe(self, file_path: str) -> MediaInfo:
        """
        extract duration, dimensions and container format with ffprobe
        called once per upload; the result is cached on the SourceFile
        """
        if not os.path.isfile(file_path) or not os.access(file_path, os.R_OK):
            raise ProbeError(f"FFprobe error: cannot read {file_path}")

        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            file_path
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        except subprocess.CalledProcessError as e:
            raise ProbeError(f"FFprobe error: exit code {e.returncode} {(e.stderr or '').strip()}".strip())
        except OSError as e:
            raise ProbeError(f"FFprobe error: {e}")

        info = parse_probe_output(result.stdout)
        logger.info(f"probed {file_path}: {info.width}x{info.height} {info.duration:.2f}s {info.format}")
        return info

    def build_command(self, spec: PipelineSpec, input_path: str, output_path: str) -> List[str]:
        """render a compiled pipeline into an ffmpeg argument list"""
        cmd = [self.ffmpeg_path, "-i", input_path]

        if spec.video_filters:
            cmd.extend(["-vf", ",".join(spec.video_filters)])

        cmd.extend(["-c:v", spec.video_codec])
        if spec.video_codec in CRF_CODECS:
            cmd.extend(["-crf", f"{spec.crf:g}"])
        if spec.video_codec == "libvpx-vp9":
            # constant quality mode for vp9
            cmd.extend(["-b:v", "0"])
        if spec.video_codec in PRESET_CODECS:
            cmd.extend(["-preset", spec.preset])

        if spec.has_audio:
            if spec.audio_filters:
                cmd.extend(["-af", ",".join(spec.audio_filters)])
            cmd.extend(["-c:a", spec.audio_codec, "-b:a", spec.audio_bitrate])
        else:
            cmd.append("-an")

        cmd.extend([
            "-progress", "pipe:1",  # key=value progress on stdout
            "-nostats",
            "-y",
            output_path
        ])
        return cmd

    async def transcode(
        self,
        spec: PipelineSpec,
        input_path: str,
        output_path: str,
        expected_duration: Optional[float] = None,
    ) -> AsyncIterator[float]:
        """
        run ffmpeg and yield progress percentages (0-100) as they arrive

        completes normally on exit code 0; raises EngineError otherwise
        and removes any partially written output
        """
        cmd = self.build_command(spec, input_path, output_path)
        logger.info(f"running ffmpeg: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EngineError(f"FFmpeg error: {e}")

        stderr_tail = deque(maxlen=STDERR_TAIL_LINES)

        async def drain_stderr():
            async for line in process.stderr:
                stderr_tail.append(line.decode(errors="replace").rstrip())

        stderr_task = asyncio.ensure_future(drain_stderr())

        try:
            async for raw_line in process.stdout:
                line = raw_line.decode(errors="replace").strip()
                if not line.startswith("out_time_ms="):
                    continue
                try:
                    # despite the name ffmpeg reports microseconds here
                    current_time = int(line.split("=", 1)[1]) / 1_000_000
                except (ValueError, IndexError):
                    continue
                if expected_duration and expected_duration > 0 and current_time >= 0:
                    yield min(100.0, (current_time / expected_duration) * 100)

            returncode = await process.wait()
            await stderr_task
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()
            if not stderr_task.done():
                stderr_task.cancel()

        if returncode != 0:
            self._remove_partial(output_path)
            detail = "\n".join(stderr_tail) or f"exit code {returncode}"
            raise EngineError(f"FFmpeg error: {detail}")

    def _remove_partial(self, output_path: str):
        try:
            if os.path.exists(output_path):
                os.remove(output_path)
        except OSError as e:
            logger.warning(f"could not remove partial output {output_path}: {e}")
