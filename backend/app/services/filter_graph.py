from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple, Union

from app.models.operations import OperationSet

# (crf, x264 preset) per named quality
QUALITY_PRESETS = {
    "high": (18, "slow"),
    "medium": (23, "medium"),
    "low": (28, "fast"),
}
DEFAULT_PRESET = "medium"

# format -> (video codec, audio codec, audio bitrate)
CODECS = {
    "mp4": ("libx264", "aac", "128k"),
    "webm": ("libvpx-vp9", "libopus", "96k"),
    "gif": ("gif", None, None),
}

# atempo only accepts this range
MIN_ATEMPO = 0.5
MAX_ATEMPO = 2.0

# one fixed-parameter filter per effect, listed in application order
EFFECT_FILTERS = (
    ("reverse", "reverse"),
    ("blur", "boxblur=5:1"),
    ("sharpen", "unsharp=5:5:1.5:5:5:0"),
    ("brightness", "eq=brightness=0.1"),
    ("contrast", "eq=contrast=1.2"),
)


def _fmt(value: Union[int, float]) -> str:
    """render a number for a filter expression: full precision, no exponent, no trailing zeros"""
    text = format(Decimal(repr(float(value))), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


@dataclass(frozen=True)
class PipelineStep:
    """one primitive ffmpeg filter applied to the video or audio stream"""
    kind: str
    expression: str
    stream: str = "video"


@dataclass(frozen=True)
class PipelineSpec:
    """ordered filter steps plus codec/quality parameters for one transcode"""
    format: str
    steps: Tuple[PipelineStep, ...] = field(default_factory=tuple)
    video_codec: str = "libx264"
    audio_codec: Optional[str] = "aac"
    audio_bitrate: Optional[str] = "128k"
    crf: float = 23
    preset: str = DEFAULT_PRESET

    @property
    def video_filters(self) -> Tuple[str, ...]:
        return tuple(s.expression for s in self.steps if s.stream == "video")

    @property
    def audio_filters(self) -> Tuple[str, ...]:
        return tuple(s.expression for s in self.steps if s.stream == "audio")

    @property
    def has_audio(self) -> bool:
        return self.audio_codec is not None


def resolve_quality(quality: Union[str, float]) -> Tuple[float, str]:
    """map a named preset or raw crf to (crf, preset)"""
    if isinstance(quality, str):
        return QUALITY_PRESETS.get(quality, QUALITY_PRESETS["medium"])
    return quality, DEFAULT_PRESET


def clamp_crop(crop, source_width: int, source_height: int) -> Optional[Tuple[int, int, int, int]]:
    """
    fit a crop rectangle inside the source frame

    returns (width, height, x, y) or None when nothing of the rectangle
    lies inside the frame; never returns a partial or oversized crop
    """
    if crop.x >= source_width or crop.y >= source_height:
        return None
    avail_w = source_width - crop.x
    avail_h = source_height - crop.y
    width = min(crop.width, avail_w)
    height = min(crop.height, avail_h)
    if width <= 0 or height <= 0 or avail_w <= 0 or avail_h <= 0:
        return None
    return width, height, crop.x, crop.y


def compile_pipeline(operations: OperationSet, source_width: int, source_height: int) -> PipelineSpec:
    """
    compile a sanitized operation set into an ordered ffmpeg pipeline

    algorithm (order matches how ffmpeg evaluates the filter chain):
    1. trim window
    2. crop, clamped to the source frame (dropped if it falls outside)
    3. scale to the requested size
    4. speed: setpts on video, atempo on audio (clamped to what atempo accepts)
    5. effects in canonical order regardless of request order

    pure and deterministic; clamps instead of failing
    """
    output_format = operations.output_format
    video_codec, audio_codec, audio_bitrate = CODECS[output_format]
    crf, preset = resolve_quality(operations.output_quality)
    with_audio = audio_codec is not None

    steps = []

    if operations.trim:
        trim = operations.trim
        steps.append(PipelineStep("trim", f"trim=start={_fmt(trim.start)}:duration={_fmt(trim.duration)}"))

    if operations.crop:
        clamped = clamp_crop(operations.crop, source_width, source_height)
        if clamped:
            width, height, x, y = clamped
            steps.append(PipelineStep("crop", f"crop={width}:{height}:{x}:{y}"))

    if operations.scale:
        scale = operations.scale
        steps.append(PipelineStep("scale", f"scale={scale.width}:{scale.height}"))

    if operations.speed and operations.speed != 1:
        steps.append(PipelineStep("setpts", f"setpts={_fmt(1 / operations.speed)}*PTS"))
        if with_audio:
            tempo = min(MAX_ATEMPO, max(MIN_ATEMPO, operations.speed))
            steps.append(PipelineStep("atempo", f"atempo={_fmt(tempo)}", stream="audio"))

    requested = set(operations.effects or ())
    for effect, expression in EFFECT_FILTERS:
        if effect in requested:
            steps.append(PipelineStep(effect, expression))

    return PipelineSpec(
        format=output_format,
        steps=tuple(steps),
        video_codec=video_codec,
        audio_codec=audio_codec,
        audio_bitrate=audio_bitrate,
        crf=crf,
        preset=preset,
    )


def expected_output_duration(operations: OperationSet, source_duration: float) -> float:
    """seconds of media the transcode will write, used to turn time into percent"""
    duration = max(0.0, source_duration)
    if operations.trim:
        remaining = max(0.0, duration - operations.trim.start)
        duration = min(operations.trim.duration, remaining) if duration else operations.trim.duration
    if operations.speed:
        duration = duration / operations.speed
    return duration
