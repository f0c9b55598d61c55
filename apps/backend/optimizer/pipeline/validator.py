from __future__ import annotations

from collections.abc import Container, Mapping, Sequence
from numbers import Real
from typing import Any

from optimizer.errors import ValidationError
from optimizer.pipeline.types import (
    Background,
    CompressionLevel,
    CompressStep,
    ConvertStep,
    FlipStep,
    MetadataPolicyStep,
    PipelineStep,
    ResizeMode,
    ResizeStep,
    RotateStep,
    UnknownStep,
)

STEP_TYPES = ("resize", "convert", "compress", "rotate", "flip", "metadata")


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _angle(step: Mapping[str, Any]) -> Any:
    return step.get("angleDegrees", step.get("angle"))


def _is_set(value: Any) -> bool:
    return value is not None and value != ""


def _int_value(value: Any) -> int | None:
    """Integer form of ``value`` when it is an int or a digit string."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    return None


def _quality_error(step: Mapping[str, Any], label: str) -> str | None:
    quality = step.get("quality")
    if not _is_set(quality):
        return None
    parsed = _int_value(quality)
    if parsed is None or not 1 <= parsed <= 100:
        return f"{label} quality must be between 1 and 100"
    return None


def _background_error(value: Any) -> bool:
    if value is None:
        return False
    if not isinstance(value, Mapping):
        return True
    for channel in ("r", "g", "b"):
        if channel in value:
            parsed = _int_value(value[channel])
            if parsed is None or not 0 <= parsed <= 255:
                return True
    if "alpha" in value:
        alpha = value["alpha"]
        if not _is_number(alpha) or not 0 <= alpha <= 1:
            return True
    return False


def _step_error(step: Any, index: int, supported_formats: Container[str]) -> str | None:
    """Describe what is wrong with one raw step, or return ``None``."""
    if not isinstance(step, Mapping):
        return f"Step {index} must be an object"

    kind = step.get("type")
    if not kind:
        return f"Step {index} is missing a type"

    if kind == "resize":
        if not step.get("width") and not step.get("height"):
            return f"Resize step {index} must specify at least one of width or height"
        for key in ("width", "height"):
            value = step.get(key)
            if _is_set(value) and (_int_value(value) or 0) <= 0:
                return f"Resize step {index} {key} must be a positive integer"
        fit = step.get("fit", step.get("resize"))
        if fit is not None:
            try:
                ResizeMode.parse(fit)
            except ValueError:
                return f"Resize step {index} has an unknown fit '{fit}'"
        return None

    if kind == "convert":
        fmt = step.get("format")
        if not fmt:
            return f"Convert step {index} must specify a format"
        if not isinstance(fmt, str) or fmt not in supported_formats:
            return f"Format '{fmt}' in step {index} is not supported"
        return _quality_error(step, f"Convert step {index}")

    if kind == "rotate":
        if not _is_number(_angle(step)):
            return f"Rotate step {index} must specify a numeric angle"
        if _background_error(step.get("background")):
            return (
                f"Rotate step {index} background must be an object with "
                "r, g, b in 0..255 and alpha in 0..1"
            )
        return None

    if kind == "flip":
        if step.get("horizontal") is not True and step.get("vertical") is not True:
            return (
                f"Flip step {index} must specify at least one of horizontal or vertical as true"
            )
        return None

    if kind == "compress":
        return _quality_error(step, f"Compress step {index}")

    if kind == "metadata":
        return None

    return f"Step type '{kind}' in step {index} is not supported"


def validate_steps(steps: Any, supported_formats: Container[str]) -> None:
    """Check a raw step list before any image work starts.

    Every step is inspected; the raised error lists all problems and names
    the first offending step (1-based).
    """
    if not isinstance(steps, Sequence) or isinstance(steps, (str, bytes)) or not steps:
        raise ValidationError(
            "Pipeline steps array is required and cannot be empty", field="steps"
        )

    errors: list[str] = []
    first_bad: int | None = None
    for index, step in enumerate(steps, start=1):
        problem = _step_error(step, index, supported_formats)
        if problem is not None:
            errors.append(problem)
            if first_bad is None:
                first_bad = index

    if errors:
        raise ValidationError("; ".join(errors), errors=errors, step=first_bad)


def _optional_int(value: Any) -> int | None:
    if value is None or value == "" or value is False:
        return None
    return int(value)


def _background(value: Any) -> Background:
    if not isinstance(value, Mapping):
        return Background()
    defaults = Background()
    return Background(
        r=int(value.get("r", defaults.r)),
        g=int(value.get("g", defaults.g)),
        b=int(value.get("b", defaults.b)),
        alpha=float(value.get("alpha", defaults.alpha)),
    )


def _lenient_level(value: Any) -> CompressionLevel | None:
    if value is None:
        return None
    try:
        return CompressionLevel.parse(value)
    except ValueError:
        return CompressionLevel.LOSSY


def parse_step(step: Mapping[str, Any]) -> PipelineStep:
    """Turn a raw step mapping into its typed form.

    Kinds this build does not know become :class:`UnknownStep`.
    """
    kind = str(step.get("type", ""))

    if kind == "resize":
        fit = step.get("fit", step.get("resize"))
        return ResizeStep(
            width=_optional_int(step.get("width")),
            height=_optional_int(step.get("height")),
            fit=ResizeMode.parse(fit) if fit is not None else ResizeMode.CONTAIN,
        )
    if kind == "convert":
        return ConvertStep(
            format=str(step["format"]),
            quality=_optional_int(step.get("quality")),
            lossless=bool(step.get("lossless", False)),
        )
    if kind == "compress":
        return CompressStep(
            level=_lenient_level(step.get("level")),
            quality=_optional_int(step.get("quality")),
        )
    if kind == "rotate":
        return RotateStep(
            angle_degrees=float(_angle(step) or 0),
            background=_background(step.get("background")),
        )
    if kind == "flip":
        return FlipStep(
            horizontal=step.get("horizontal") is True,
            vertical=step.get("vertical") is True,
        )
    if kind == "metadata":
        return MetadataPolicyStep(keep_exif=step.get("keepExif") is True)
    return UnknownStep(type=kind, raw=dict(step))


def parse_steps(steps: Sequence[Mapping[str, Any]]) -> list[PipelineStep]:
    """Parse every step; a malformed field fails as a ValidationError naming its step."""
    parsed: list[PipelineStep] = []
    for index, step in enumerate(steps, start=1):
        try:
            parsed.append(parse_step(step))
        except (KeyError, TypeError, ValueError) as error:
            message = f"Step {index} has an invalid field: {error}"
            raise ValidationError(message, step=index) from error
    return parsed
