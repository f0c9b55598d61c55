from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any

from optimizer.config import ImageConfig
from optimizer.errors import ValidationError
from optimizer.pipeline.formats import override_format
from optimizer.pipeline.types import CompressionLevel, ImageAsset, ProcessingOptions, ResizeMode

# Legacy request field names and their canonical option keys.
OPTION_ALIASES: dict[str, str] = {
    "compression": "compressionLevel",
    "lossy": "compressionLevel",
    "resize": "resizeMode",
    "resize_width": "resizeWidth",
    "resize_height": "resizeHeight",
    "cmyk2rgb": "convertCmykToRgb",
    "keep_exif": "keepExif",
    "convertto": "targetFormat",
}


def canonical_options(raw: Mapping[str, Any] | None) -> dict[str, Any]:
    """Rename legacy keys and drop unset values."""
    result: dict[str, Any] = {}
    for key, value in (raw or {}).items():
        if value is None or value == "":
            continue
        result[OPTION_ALIASES.get(key, key)] = value
    return result


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _as_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def validate_options(raw: Mapping[str, Any] | None, image_config: ImageConfig) -> None:
    """Check request-level options and raise one error listing every problem."""
    options = canonical_options(raw)
    errors: list[str] = []

    if "compressionLevel" in options:
        try:
            CompressionLevel.parse(options["compressionLevel"])
        except ValueError:
            errors.append("Compression must be lossless, lossy or glossy (0, 1 or 2)")

    resize_mode: ResizeMode | None = None
    if "resizeMode" in options:
        try:
            resize_mode = ResizeMode.parse(options["resizeMode"])
        except ValueError:
            modes = ", ".join(mode.value for mode in ResizeMode)
            errors.append(f"Resize must be one of: {modes} (or 0, 1, 3, 4)")
    if resize_mode not in (None, ResizeMode.NONE):
        if "resizeWidth" not in options and "resizeHeight" not in options:
            errors.append(
                "Either resizeWidth or resizeHeight must be specified for resize operations"
            )

    for key in ("resizeWidth", "resizeHeight", "maxWidth"):
        if key in options:
            try:
                if int(options[key]) <= 0:
                    raise ValueError
            except (TypeError, ValueError):
                errors.append(f"{key} must be a positive integer")

    if "targetFormat" in options:
        fmt = override_format(str(options["targetFormat"]))
        if not image_config.is_supported(fmt):
            errors.append(f"Format must be one of: {', '.join(image_config.formats)}")

    if "quality" in options:
        try:
            quality = int(options["quality"])
            if quality < 1 or quality > 100:
                raise ValueError
        except (TypeError, ValueError):
            errors.append("Quality must be between 1 and 100")

    if errors:
        raise ValidationError("; ".join(errors), errors=errors)


def normalize_options(
    raw: Mapping[str, Any] | None,
    asset: ImageAsset,
    image_config: ImageConfig,
) -> ProcessingOptions:
    """Merge user options over the configured defaults.

    A bare ``maxWidth`` (with no explicit ``resizeWidth``) expands into a
    ``contain`` resize whose height keeps the source aspect ratio.
    """
    options = canonical_options(raw)

    resize_mode = ResizeMode.parse(options.get("resizeMode", ResizeMode.NONE))
    resize_width = _as_int(options.get("resizeWidth"))
    resize_height = _as_int(options.get("resizeHeight"))

    max_width = _as_int(options.get("maxWidth"))
    if max_width and not resize_width:
        resize_mode = ResizeMode.CONTAIN
        resize_width = max_width
        resize_height = round_half_up(asset.height * (max_width / asset.width))

    quality = _as_int(options.get("quality"))
    return ProcessingOptions(
        compression_level=CompressionLevel.parse(
            options.get("compressionLevel", image_config.default_compression)
        ),
        resize_mode=resize_mode,
        resize_width=resize_width,
        resize_height=resize_height,
        convert_cmyk_to_rgb=_as_bool(options.get("convertCmykToRgb", True)),
        keep_exif=_as_bool(options.get("keepExif", False)),
        target_format=str(options.get("targetFormat", image_config.default_format)),
        quality=quality if quality is not None else image_config.default_quality,
    )
