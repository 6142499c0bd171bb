from typing import Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict

OutputFormat = Literal["mp4", "webm", "gif"]
QualityPreset = Literal["high", "medium", "low"]
Effect = Literal["reverse", "blur", "sharpen", "brightness", "contrast"]

OUTPUT_FORMATS = ("mp4", "webm", "gif")
QUALITY_PRESETS = ("high", "medium", "low")
# canonical order in which effects are applied
EFFECTS = ("reverse", "blur", "sharpen", "brightness", "contrast")

DEFAULT_FORMAT = "mp4"
DEFAULT_QUALITY = "medium"


class Trim(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: float
    duration: float


class Crop(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: int
    y: int
    width: int
    height: int


class Scale(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int
    height: int


class OperationSet(BaseModel):
    """sanitized transformation request; every field is optional"""
    model_config = ConfigDict(frozen=True)

    format: Optional[OutputFormat] = None
    quality: Optional[Union[QualityPreset, float]] = None
    trim: Optional[Trim] = None
    crop: Optional[Crop] = None
    scale: Optional[Scale] = None
    speed: Optional[float] = None
    effects: Optional[Tuple[Effect, ...]] = None

    @property
    def output_format(self) -> str:
        return self.format or DEFAULT_FORMAT

    @property
    def output_quality(self) -> Union[str, float]:
        return self.quality if self.quality is not None else DEFAULT_QUALITY
