from __future__ import annotations

import re
from collections.abc import Container

from optimizer.pipeline.types import CompressionLevel, EncodeParams

_OVERRIDE_PATTERN = re.compile(r"^[^A-Za-z0-9]?([A-Za-z0-9]+)")

DEFAULT_QUALITY = 80
DEFAULT_AVIF_QUALITY = 50
AVIF_SPEED = 3

# quality per compression level; None means "explicit quality or the format default"
_QUALITY_TABLE: dict[str, dict[CompressionLevel, int | None]] = {
    "jpeg": {CompressionLevel.LOSSLESS: 100, CompressionLevel.GLOSSY: 90, CompressionLevel.LOSSY: None},
    "webp": {CompressionLevel.LOSSLESS: 100, CompressionLevel.GLOSSY: 90, CompressionLevel.LOSSY: None},
    "avif": {CompressionLevel.LOSSLESS: 100, CompressionLevel.GLOSSY: 70, CompressionLevel.LOSSY: None},
}

_PNG_COMPRESSION: dict[CompressionLevel, int] = {
    CompressionLevel.LOSSLESS: 0,
    CompressionLevel.GLOSSY: 6,
    CompressionLevel.LOSSY: 9,
}


def canonical_format(fmt: str) -> str:
    """Collapse aliases that share one encoder (``jpg`` -> ``jpeg``)."""
    return "jpeg" if fmt == "jpg" else fmt


def override_format(override: str | None) -> str | None:
    """Format key named by an override, after one optional leading marker (``+webp``)."""
    if not override:
        return None
    match = _OVERRIDE_PATTERN.match(override)
    return match.group(1) if match else None


def resolve_format(override: str | None, source_format: str, supported: Container[str]) -> str:
    """Pick the output format for a single-shot run.

    Anything that does not name a supported format means "keep the input
    format".
    """
    fmt = override_format(override)
    if fmt is not None and fmt in supported:
        return fmt
    return source_format


def format_encode_params(
    fmt: str,
    quality: int | None = None,
    lossless: bool = False,
) -> EncodeParams | None:
    """Encoder settings for an explicit format change.

    Returns ``None`` for formats without an encoder mapping, meaning the
    current settings stay as they are.
    """
    key = canonical_format(fmt)
    if key == "jpeg":
        return EncodeParams(format=fmt, quality=quality or DEFAULT_QUALITY, max_effort=True)
    if key == "png":
        return EncodeParams(
            format=fmt,
            quality=quality or DEFAULT_QUALITY,
            compression_level=9,
            max_effort=True,
        )
    if key == "webp":
        return EncodeParams(format=fmt, quality=quality or DEFAULT_QUALITY, lossless=bool(lossless))
    if key == "avif":
        return EncodeParams(
            format=fmt,
            quality=quality or DEFAULT_AVIF_QUALITY,
            lossless=bool(lossless),
            speed=AVIF_SPEED,
        )
    if key == "gif":
        return EncodeParams(format=fmt)
    return None


def compression_params(
    level: CompressionLevel,
    fmt: str,
    quality: int | None = None,
) -> EncodeParams | None:
    """Concrete encoder settings for a compression level on a given format.

    gif always uses the encoder defaults; unknown formats get ``None``.
    """
    key = canonical_format(fmt)
    lossless = level is CompressionLevel.LOSSLESS

    if key == "png":
        return EncodeParams(
            format=fmt,
            quality=quality or DEFAULT_QUALITY,
            compression_level=_PNG_COMPRESSION[level],
            max_effort=True,
        )
    if key == "gif":
        return EncodeParams(format=fmt)
    if key not in _QUALITY_TABLE:
        return None

    default_quality = DEFAULT_AVIF_QUALITY if key == "avif" else DEFAULT_QUALITY
    fixed = _QUALITY_TABLE[key][level]
    resolved_quality = fixed if fixed is not None else (quality or default_quality)

    if key == "jpeg":
        return EncodeParams(format=fmt, quality=resolved_quality, max_effort=True)
    if key == "webp":
        return EncodeParams(format=fmt, quality=resolved_quality, lossless=lossless)
    return EncodeParams(format=fmt, quality=resolved_quality, lossless=lossless, speed=AVIF_SPEED)
