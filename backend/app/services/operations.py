"""
sanitize raw transformation requests into an OperationSet

the policy is permissive: a field that fails its type check or bound is
dropped (and logged at debug level) instead of rejecting the whole request.
the result is always a valid OperationSet, possibly empty.
"""
import logging
import math
from typing import Any, Mapping, Optional

from app.models.operations import (
    EFFECTS,
    OUTPUT_FORMATS,
    QUALITY_PRESETS,
    Crop,
    OperationSet,
    Scale,
    Trim,
)

logger = logging.getLogger(__name__)

MIN_SPEED = 0.25
MAX_SPEED = 4.0
MAX_CRF = 51


def _number(value: Any) -> Optional[float]:
    # bool is an int subclass but never a valid numeric field
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        num = float(value)
    except OverflowError:
        return None
    # nan and +-inf never survive into a filter expression
    if not math.isfinite(num):
        return None
    return num


def _integer(value: Any) -> Optional[int]:
    num = _number(value)
    if num is None or not num.is_integer():
        return None
    return int(num)


def _dropped(field: str, value: Any):
    logger.debug(f"dropping invalid operation field {field}={value!r}")


def _sanitize_trim(raw: Any) -> Optional[Trim]:
    if not isinstance(raw, Mapping):
        return None
    start = _number(raw.get("start"))
    duration = _number(raw.get("duration"))
    if start is None or duration is None or start < 0 or duration <= 0:
        return None
    return Trim(start=start, duration=duration)


def _sanitize_crop(raw: Any) -> Optional[Crop]:
    if not isinstance(raw, Mapping):
        return None
    x = _integer(raw.get("x"))
    y = _integer(raw.get("y"))
    width = _integer(raw.get("width"))
    height = _integer(raw.get("height"))
    if None in (x, y, width, height):
        return None
    if x < 0 or y < 0 or width <= 0 or height <= 0:
        return None
    return Crop(x=x, y=y, width=width, height=height)


def _sanitize_scale(raw: Any) -> Optional[Scale]:
    if not isinstance(raw, Mapping):
        return None
    width = _integer(raw.get("width"))
    height = _integer(raw.get("height"))
    if width is None or height is None or width <= 0 or height <= 0:
        return None
    return Scale(width=width, height=height)


def _sanitize_quality(raw: Any):
    if isinstance(raw, str):
        return raw if raw in QUALITY_PRESETS else None
    num = _number(raw)
    if num is None or num < 0 or num > MAX_CRF:
        return None
    return num


def _sanitize_speed(raw: Any) -> Optional[float]:
    num = _number(raw)
    if num is None or num < MIN_SPEED or num > MAX_SPEED:
        return None
    return num


def _sanitize_effects(raw: Any):
    if not isinstance(raw, (list, tuple)):
        return None
    effects = []
    for tag in raw:
        if isinstance(tag, str) and tag in EFFECTS and tag not in effects:
            effects.append(tag)
    return tuple(effects) or None


_SANITIZERS = {
    "format": lambda raw: raw if isinstance(raw, str) and raw in OUTPUT_FORMATS else None,
    "quality": _sanitize_quality,
    "trim": _sanitize_trim,
    "crop": _sanitize_crop,
    "scale": _sanitize_scale,
    "speed": _sanitize_speed,
    "effects": _sanitize_effects,
}


def sanitize_operations(raw: Any) -> OperationSet:
    """
    build an OperationSet from an untyped request body

    never raises: unknown keys are ignored and invalid fields dropped
    """
    if not isinstance(raw, Mapping):
        return OperationSet()

    fields = {}
    for name, sanitize in _SANITIZERS.items():
        if name not in raw or raw[name] is None:
            continue
        value = sanitize(raw[name])
        if value is None:
            _dropped(name, raw[name])
            continue
        fields[name] = value

    return OperationSet(**fields)
