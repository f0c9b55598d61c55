from __future__ import annotations

import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Protocol

from PIL import Image, ImageOps, UnidentifiedImageError

from optimizer.config import MAX_INPUT_PIXELS
from optimizer.errors import InvalidDataError, OversizeError, UnsupportedFormatError
from optimizer.pipeline.formats import canonical_format
from optimizer.pipeline.resize import attention_focus, cover_size, crop_box, fit_inside
from optimizer.pipeline.types import (
    Anchor,
    Background,
    EncodedImage,
    EncodeParams,
    Fit,
    ResizeDirective,
)

logger = logging.getLogger(__name__)

PIL_FORMATS: dict[str, str] = {
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "avif": "AVIF",
    "gif": "GIF",
}

FORMAT_KEYS: dict[str, str] = {value: key for key, value in PIL_FORMATS.items()}

_CARRIED_INFO = ("exif",)

_QUARTER_TURNS = {
    90: Image.Transpose.ROTATE_270,
    180: Image.Transpose.ROTATE_180,
    270: Image.Transpose.ROTATE_90,
}


@dataclass(frozen=True, slots=True)
class ImageHeader:
    format: str
    width: int
    height: int
    color_space: str


class ImageCodec(Protocol):
    """What the sequencer and finalizer need from an image backend."""

    def dimensions(self, image: Any) -> tuple[int, int]: ...

    def resize(self, image: Any, directive: ResizeDirective) -> Any: ...

    def rotate(self, image: Any, angle: float, background: Background) -> Any: ...

    def flip(self, image: Any, horizontal: bool, vertical: bool) -> Any: ...

    def encode(self, image: Any, params: EncodeParams, keep_exif: bool = False) -> EncodedImage: ...


def _color_space(mode: str) -> str:
    if mode == "CMYK":
        return "cmyk"
    if mode in {"L", "LA", "1", "I", "I;16", "F"}:
        return "b-w"
    return "srgb"


def _carry_info(source: Image.Image, target: Image.Image) -> Image.Image:
    for key in _CARRIED_INFO:
        if key in source.info:
            target.info[key] = source.info[key]
    return target


class PillowCodec:
    """Decode, transform and encode images with Pillow.

    Everything the engine needs from a codec lives here. Process-wide
    Pillow knobs are fixed when the codec is constructed instead of being
    flipped globally.
    """

    def __init__(
        self,
        max_input_pixels: int = MAX_INPUT_PIXELS,
        resample: Image.Resampling = Image.Resampling.LANCZOS,
        rotate_resample: Image.Resampling = Image.Resampling.BICUBIC,
        flatten_background: tuple[int, int, int] = (255, 255, 255),
    ) -> None:
        self.max_input_pixels = max_input_pixels
        self.resample = resample
        self.rotate_resample = rotate_resample
        self.flatten_background = flatten_background

    def identify(self, data: bytes) -> ImageHeader:
        """Read container format and size from the header without decoding pixels."""
        try:
            with Image.open(BytesIO(data)) as probe:
                pil_format = probe.format or ""
                width, height = probe.size
                mode = probe.mode
        except Image.DecompressionBombError as error:
            raise OversizeError("Image dimensions exceed the decoder limit", detail=str(error)) from error
        except UnidentifiedImageError as error:
            raise UnsupportedFormatError("Unsupported image format", detail=str(error)) from error
        except (OSError, SyntaxError, ValueError) as error:
            raise InvalidDataError("Invalid image data", detail=str(error)) from error
        return ImageHeader(
            format=FORMAT_KEYS.get(pil_format, pil_format.lower()),
            width=width,
            height=height,
            color_space=_color_space(mode),
        )

    def decode(self, data: bytes) -> Image.Image:
        with Image.open(BytesIO(data)) as raw:
            width, height = raw.size
            if width * height > self.max_input_pixels:
                raise OversizeError(
                    f"Image has {width * height} pixels, limit is {self.max_input_pixels}"
                )
            raw.load()
            return raw.copy()

    def dimensions(self, image: Image.Image) -> tuple[int, int]:
        return image.size

    def color_space(self, image: Image.Image) -> str:
        return _color_space(image.mode)

    def to_srgb(self, image: Image.Image) -> Image.Image:
        return _carry_info(image, image.convert("RGB"))

    def resize(self, image: Image.Image, directive: ResizeDirective) -> Image.Image:
        box = (directive.width, directive.height)
        if directive.fit is Fit.INSIDE:
            size = fit_inside(image.size, box, without_enlargement=directive.without_enlargement)
            if size == image.size:
                return image
            return _carry_info(image, image.resize(size, self.resample))

        scaled_size = cover_size(image.size, box)
        focus = (0.5, 0.5)
        if directive.anchor is Anchor.ATTENTION:
            focus = attention_focus(image)
            logger.debug("attention focus at %.3f,%.3f", *focus)
        scaled = image.resize(scaled_size, self.resample)
        return _carry_info(image, scaled.crop(crop_box(scaled_size, box, focus)))

    def rotate(self, image: Image.Image, angle: float, background: Background) -> Image.Image:
        """Rotate clockwise by ``angle`` degrees, growing the canvas to fit."""
        normalized = angle % 360
        if normalized == 0:
            return image
        if normalized in _QUARTER_TURNS:
            return _carry_info(image, image.transpose(_QUARTER_TURNS[int(normalized)]))

        fill = background.as_rgba()
        working = image if image.mode in {"RGB", "RGBA"} else image.convert("RGBA")
        if working.mode == "RGB" and fill[3] < 255:
            working = working.convert("RGBA")
        fillcolor = fill if working.mode == "RGBA" else fill[:3]
        rotated = working.rotate(-angle, resample=self.rotate_resample, expand=True, fillcolor=fillcolor)
        return _carry_info(image, rotated)

    def flip(self, image: Image.Image, horizontal: bool, vertical: bool) -> Image.Image:
        result = image
        if horizontal:
            result = ImageOps.mirror(result)
        if vertical:
            result = ImageOps.flip(result)
        return _carry_info(image, result)

    def encode(self, image: Image.Image, params: EncodeParams, keep_exif: bool = False) -> EncodedImage:
        key = canonical_format(params.format)
        pil_format = PIL_FORMATS.get(key, key.upper())
        prepared = self._prepare_mode(image, key)
        save_kwargs = self._save_kwargs(key, params)
        if keep_exif and image.info.get("exif") and key != "gif":
            save_kwargs["exif"] = image.info["exif"]

        buffer = BytesIO()
        prepared.save(buffer, format=pil_format, **save_kwargs)
        data = buffer.getvalue()

        with Image.open(BytesIO(data)) as written:
            width, height = written.size
        return EncodedImage(data=data, format=params.format, width=width, height=height)

    def _prepare_mode(self, image: Image.Image, key: str) -> Image.Image:
        mode = image.mode
        has_alpha = mode in {"RGBA", "LA", "PA"} or (mode == "P" and "transparency" in image.info)
        if key == "jpeg":
            if mode in {"RGB", "L", "CMYK"}:
                return image
            if not has_alpha:
                return image.convert("RGB")
            rgba = image.convert("RGBA")
            canvas = Image.new("RGB", rgba.size, self.flatten_background)
            canvas.paste(rgba, mask=rgba.getchannel("A"))
            return canvas
        if key == "png" and mode in {"RGB", "RGBA", "L", "LA", "P", "I;16"}:
            return image
        if key == "gif" and mode != "CMYK":
            return image
        if mode in {"RGB", "RGBA"} or key not in {"png", "webp", "avif", "gif"}:
            return image
        return image.convert("RGBA" if has_alpha else "RGB")

    def _save_kwargs(self, key: str, params: EncodeParams) -> dict[str, object]:
        if key == "jpeg":
            kwargs: dict[str, object] = {"quality": params.quality or 80}
            if params.max_effort:
                kwargs.update(optimize=True, progressive=True)
            return kwargs
        if key == "png":
            level = 9 if params.compression_level is None else params.compression_level
            # Pillow's zlib encoder already picks filters adaptively per row
            return {"compress_level": level}
        if key == "webp":
            if params.lossless:
                return {"quality": params.quality or 100, "lossless": True, "exact": True}
            return {"quality": params.quality or 80, "lossless": False}
        if key == "avif":
            kwargs = {"quality": params.quality or 50}
            if params.speed is not None:
                kwargs["speed"] = params.speed
            if params.lossless:
                kwargs["subsampling"] = "4:4:4"
            return kwargs
        return {}
