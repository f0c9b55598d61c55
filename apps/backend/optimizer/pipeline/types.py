from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class CompressionLevel(str, Enum):
    LOSSLESS = "lossless"
    LOSSY = "lossy"
    GLOSSY = "glossy"

    @classmethod
    def parse(cls, value: Any) -> "CompressionLevel":
        """Accept a canonical name or one of the legacy codes 0/1/2."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            value = int(value)
        if isinstance(value, int) and not isinstance(value, bool):
            legacy = {0: cls.LOSSLESS, 1: cls.LOSSY, 2: cls.GLOSSY}
            if value in legacy:
                return legacy[value]
            raise ValueError(f"compression must be 0, 1 or 2, got {value}")
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        raise ValueError(f"unknown compression level: {value!r}")


class ResizeMode(str, Enum):
    NONE = "none"
    CONTAIN = "contain"
    COVER = "cover"
    SMART_CROP = "smartCrop"

    @classmethod
    def parse(cls, value: Any) -> "ResizeMode":
        """Accept a canonical name or one of the legacy codes 0/1/3/4."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            value = int(value)
        if isinstance(value, int) and not isinstance(value, bool):
            legacy = {0: cls.NONE, 1: cls.CONTAIN, 3: cls.COVER, 4: cls.SMART_CROP}
            if value in legacy:
                return legacy[value]
            raise ValueError(f"resize must be one of 0, 1, 3, 4, got {value}")
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value.lower() == lowered:
                    return member
        raise ValueError(f"unknown resize mode: {value!r}")


class Fit(str, Enum):
    """Concrete fit algorithm handed to the codec."""

    INSIDE = "inside"
    COVER = "cover"


class Anchor(str, Enum):
    CENTRE = "centre"
    ATTENTION = "attention"


@dataclass(frozen=True, slots=True)
class ImageAsset:
    data: bytes
    width: int
    height: int
    color_space: str
    source_format: str
    mime_type: str

    @property
    def byte_size(self) -> int:
        return len(self.data)

    @property
    def pixel_count(self) -> int:
        return self.width * self.height


@dataclass(frozen=True, slots=True)
class ProcessingOptions:
    compression_level: CompressionLevel = CompressionLevel.LOSSY
    resize_mode: ResizeMode = ResizeMode.NONE
    resize_width: int | None = None
    resize_height: int | None = None
    convert_cmyk_to_rgb: bool = True
    keep_exif: bool = False
    target_format: str | None = None
    quality: int | None = None


@dataclass(frozen=True, slots=True)
class ResizeDirective:
    width: int
    height: int
    fit: Fit
    anchor: Anchor = Anchor.CENTRE
    without_enlargement: bool = False


@dataclass(frozen=True, slots=True)
class EncodeParams:
    """Encoder settings for one output format.

    Fields that do not apply to the format stay ``None``. ``max_effort`` asks
    the encoder for its slowest, smallest variant.
    """

    format: str
    quality: int | None = None
    lossless: bool | None = None
    compression_level: int | None = None
    speed: int | None = None
    max_effort: bool = False


@dataclass(frozen=True, slots=True)
class Background:
    r: int = 255
    g: int = 255
    b: int = 255
    alpha: float = 0.0

    def as_rgba(self) -> tuple[int, int, int, int]:
        # alpha is 0..1, Pillow wants 0..255
        return (self.r, self.g, self.b, int(round(self.alpha * 255)))


# Pipeline steps


@dataclass(frozen=True, slots=True)
class ResizeStep:
    width: int | None = None
    height: int | None = None
    fit: ResizeMode = ResizeMode.CONTAIN


@dataclass(frozen=True, slots=True)
class ConvertStep:
    format: str
    quality: int | None = None
    lossless: bool = False


@dataclass(frozen=True, slots=True)
class CompressStep:
    level: CompressionLevel | None = None
    quality: int | None = None


@dataclass(frozen=True, slots=True)
class RotateStep:
    angle_degrees: float
    background: Background = field(default_factory=Background)


@dataclass(frozen=True, slots=True)
class FlipStep:
    horizontal: bool = False
    vertical: bool = False


@dataclass(frozen=True, slots=True)
class MetadataPolicyStep:
    keep_exif: bool = False


@dataclass(frozen=True, slots=True)
class UnknownStep:
    """A step kind this build does not understand; skipped at run time."""

    type: str
    raw: dict[str, Any] = field(default_factory=dict)


PipelineStep = Union[
    ResizeStep,
    ConvertStep,
    CompressStep,
    RotateStep,
    FlipStep,
    MetadataPolicyStep,
    UnknownStep,
]


@dataclass(frozen=True, slots=True)
class PipelineState:
    """Accumulator threaded through the sequencer.

    ``image`` is whatever handle the codec hands back; the sequencer never
    looks inside it.
    """

    image: Any
    output_format: str | None
    dimensions: tuple[int, int]
    encode: EncodeParams | None = None
    keep_exif: bool = False


@dataclass(frozen=True, slots=True)
class EncodedImage:
    data: bytes
    format: str
    width: int
    height: int


@dataclass(frozen=True, slots=True)
class ProcessingResult:
    original_size: int
    processed_size: int
    width: int
    height: int
    format: str
    encoded_bytes: bytes
    suggested_filename: str

    @property
    def compression_ratio(self) -> str:
        if self.original_size <= 0:
            return "0.00%"
        return f"{self.processed_size / self.original_size * 100:.2f}%"
