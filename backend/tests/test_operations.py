import json

from app.models.operations import Crop, OperationSet, Scale, Trim
from app.services.operations import sanitize_operations


def test_empty_request_is_valid():
    """an empty request means re-encode with defaults"""
    ops = sanitize_operations({})
    assert ops == OperationSet()
    assert ops.output_format == "mp4"
    assert ops.output_quality == "medium"


def test_non_mapping_input_yields_empty_set():
    assert sanitize_operations(None) == OperationSet()
    assert sanitize_operations(["trim"]) == OperationSet()
    assert sanitize_operations("mp4") == OperationSet()


def test_valid_fields_are_kept():
    ops = sanitize_operations({
        "format": "gif",
        "quality": "high",
        "trim": {"start": 1.5, "duration": 3},
        "crop": {"x": 10, "y": 20, "width": 640, "height": 480},
        "scale": {"width": 320, "height": 240},
        "speed": 0.5,
        "effects": ["blur", "sharpen"],
    })
    assert ops.format == "gif"
    assert ops.quality == "high"
    assert ops.trim == Trim(start=1.5, duration=3.0)
    assert ops.crop == Crop(x=10, y=20, width=640, height=480)
    assert ops.scale == Scale(width=320, height=240)
    assert ops.speed == 0.5
    assert ops.effects == ("blur", "sharpen")


def test_out_of_bound_fields_are_dropped():
    ops = sanitize_operations({
        "format": "avi",
        "quality": 52,
        "trim": {"start": -1, "duration": 2},
        "crop": {"x": 0, "y": 0, "width": 0, "height": 10},
        "scale": {"width": 100, "height": -5},
        "speed": 4.5,
    })
    assert ops == OperationSet()


def test_numeric_quality_bounds():
    assert sanitize_operations({"quality": 0}).quality == 0
    assert sanitize_operations({"quality": 51}).quality == 51
    assert sanitize_operations({"quality": 51.5}).quality is None
    assert sanitize_operations({"quality": "ultra"}).quality is None


def test_speed_bounds_are_inclusive():
    assert sanitize_operations({"speed": 0.25}).speed == 0.25
    assert sanitize_operations({"speed": 4}).speed == 4
    assert sanitize_operations({"speed": 0.2}).speed is None


def test_booleans_and_strings_are_not_numbers():
    ops = sanitize_operations({
        "speed": True,
        "quality": False,
        "trim": {"start": "0", "duration": 5},
        "scale": {"width": True, "height": 10},
    })
    assert ops == OperationSet()


def test_integer_fields_accept_integral_floats_only():
    assert sanitize_operations({"scale": {"width": 640.0, "height": 480}}).scale == Scale(width=640, height=480)
    assert sanitize_operations({"scale": {"width": 640.5, "height": 480}}).scale is None


def test_effects_drop_unknown_and_duplicates():
    ops = sanitize_operations({"effects": ["contrast", "glitter", "reverse", "contrast", 7]})
    assert ops.effects == ("contrast", "reverse")


def test_effects_must_be_a_list():
    assert sanitize_operations({"effects": "blur"}).effects is None
    assert sanitize_operations({"effects": ["glitter"]}).effects is None


def test_one_bad_field_does_not_drop_the_others():
    ops = sanitize_operations({"format": "webm", "speed": "fast", "extra": 1})
    assert ops.format == "webm"
    assert ops.speed is None


def test_non_finite_numbers_are_dropped():
    # python's json parser accepts the NaN / Infinity literals
    ops = sanitize_operations(json.loads(
        '{"trim": {"start": 0, "duration": Infinity},'
        ' "speed": NaN, "quality": -Infinity,'
        ' "crop": {"x": 0, "y": 0, "width": Infinity, "height": 10}}'
    ))
    assert ops == OperationSet()


def test_oversized_integers_are_dropped():
    ops = sanitize_operations({"scale": {"width": 10 ** 400, "height": 10}})
    assert ops.scale is None
