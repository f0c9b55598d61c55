import pytest

from optimizer.config import SUPPORTED_FORMATS
from optimizer.errors import ValidationError
from optimizer.pipeline.types import (
    Background,
    CompressionLevel,
    CompressStep,
    ConvertStep,
    FlipStep,
    MetadataPolicyStep,
    ResizeMode,
    ResizeStep,
    RotateStep,
    UnknownStep,
)
from optimizer.pipeline.validator import parse_step, parse_steps, validate_steps


def _reject(steps: object) -> ValidationError:
    with pytest.raises(ValidationError) as excinfo:
        validate_steps(steps, SUPPORTED_FORMATS)
    return excinfo.value


def test_valid_pipeline_passes() -> None:
    validate_steps(
        [
            {"type": "resize", "width": 300},
            {"type": "convert", "format": "png"},
            {"type": "compress"},
            {"type": "rotate", "angle": 0},
            {"type": "flip", "vertical": True},
            {"type": "metadata"},
        ],
        SUPPORTED_FORMATS,
    )


@pytest.mark.parametrize("steps", [None, [], "resize", {"type": "resize"}])
def test_steps_must_be_a_non_empty_list(steps: object) -> None:
    error = _reject(steps)
    assert error.field == "steps"


def test_resize_without_dimensions_cites_its_index() -> None:
    error = _reject([{"type": "convert", "format": "png"}, {"type": "resize"}])

    assert error.step == 2
    assert error.errors == ["Resize step 2 must specify at least one of width or height"]


def test_every_step_is_checked() -> None:
    error = _reject(
        [
            {"width": 10},
            {"type": "convert"},
            {"type": "convert", "format": "bmp"},
            {"type": "rotate", "angle": "90"},
            {"type": "flip", "horizontal": False},
            {"type": "compress", "level": "nonsense"},
            {"type": "sharpen"},
        ]
    )

    assert error.step == 1
    assert error.errors == [
        "Step 1 is missing a type",
        "Convert step 2 must specify a format",
        "Format 'bmp' in step 3 is not supported",
        "Rotate step 4 must specify a numeric angle",
        "Flip step 5 must specify at least one of horizontal or vertical as true",
        "Step type 'sharpen' in step 7 is not supported",
    ]


def test_boolean_is_not_a_numeric_angle() -> None:
    error = _reject([{"type": "rotate", "angle": True}])
    assert error.step == 1


def test_unknown_fit_is_rejected() -> None:
    error = _reject([{"type": "resize", "width": 10, "fit": "stretch"}])
    assert "unknown fit" in error.errors[0]


def test_parse_typed_steps() -> None:
    assert parse_step({"type": "resize", "width": "300"}) == ResizeStep(width=300, fit=ResizeMode.CONTAIN)
    assert parse_step({"type": "resize", "height": 50, "fit": "cover"}) == ResizeStep(
        height=50, fit=ResizeMode.COVER
    )
    assert parse_step({"type": "convert", "format": "webp", "quality": 70, "lossless": True}) == ConvertStep(
        format="webp", quality=70, lossless=True
    )
    assert parse_step({"type": "compress", "level": 0}) == CompressStep(level=CompressionLevel.LOSSLESS)
    assert parse_step({"type": "compress", "level": "weird"}) == CompressStep(level=CompressionLevel.LOSSY)
    assert parse_step({"type": "rotate", "angleDegrees": 45}) == RotateStep(angle_degrees=45.0)
    assert parse_step({"type": "flip", "horizontal": True}) == FlipStep(horizontal=True)
    assert parse_step({"type": "metadata", "keepExif": True}) == MetadataPolicyStep(keep_exif=True)
    assert parse_step({"type": "blur", "sigma": 2}) == UnknownStep(type="blur", raw={"type": "blur", "sigma": 2})


def test_rotate_background_defaults_to_transparent_white() -> None:
    step = parse_step({"type": "rotate", "angle": 30})
    assert step.background == Background(r=255, g=255, b=255, alpha=0.0)

    custom = parse_step({"type": "rotate", "angle": 30, "background": {"r": 0, "alpha": 1}})
    assert custom.background.as_rgba() == (0, 255, 255, 255)


@pytest.mark.parametrize(
    ("step", "message"),
    [
        ({"type": "resize", "width": "abc"}, "Resize step 1 width must be a positive integer"),
        ({"type": "resize", "width": -5}, "Resize step 1 width must be a positive integer"),
        ({"type": "resize", "width": 100, "height": 2.5}, "Resize step 1 height must be a positive integer"),
        ({"type": "convert", "format": "png", "quality": "high"}, "Convert step 1 quality must be between 1 and 100"),
        ({"type": "compress", "quality": 0}, "Compress step 1 quality must be between 1 and 100"),
        ({"type": "convert", "format": ["png"]}, "Format '['png']' in step 1 is not supported"),
    ],
)
def test_malformed_step_fields(step: dict, message: str) -> None:
    error = _reject([step])

    assert error.step == 1
    assert error.errors == [message]


@pytest.mark.parametrize("background", ["white", {"r": "red"}, {"g": 300}, {"alpha": 2}])
def test_malformed_rotate_background(background: object) -> None:
    error = _reject([{"type": "flip", "vertical": True}, {"type": "rotate", "angle": 30, "background": background}])

    assert error.step == 2
    assert error.errors[0].startswith("Rotate step 2 background must be an object")


def test_numeric_strings_are_accepted() -> None:
    validate_steps(
        [
            {"type": "resize", "width": "300"},
            {"type": "convert", "format": "webp", "quality": "70"},
            {"type": "rotate", "angle": 10, "background": {"r": "0", "g": 10, "b": 20, "alpha": 0.5}},
        ],
        SUPPORTED_FORMATS,
    )


def test_parse_steps_reports_the_failing_step() -> None:
    with pytest.raises(ValidationError) as excinfo:
        parse_steps([{"type": "flip", "horizontal": True}, {"type": "resize", "width": "abc"}])

    assert excinfo.value.step == 2
    assert isinstance(excinfo.value.__cause__, ValueError)
