from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any

from optimizer.config import ImageConfig
from optimizer.errors import OptimizerError, OversizeError, ProcessingError, UnsupportedFormatError
from optimizer.pipeline.codec import PillowCodec
from optimizer.pipeline.finalizer import finalize
from optimizer.pipeline.formats import compression_params, format_encode_params, resolve_format
from optimizer.pipeline.options import normalize_options
from optimizer.pipeline.resize import select_resize
from optimizer.pipeline.sequencer import run_steps
from optimizer.pipeline.types import (
    EncodedImage,
    EncodeParams,
    ImageAsset,
    PipelineState,
    PipelineStep,
    ProcessingOptions,
    ProcessingResult,
)
from optimizer.pipeline.validator import parse_steps, validate_steps

logger = logging.getLogger(__name__)


def generate_filename(fmt: str) -> str:
    return f"{uuid.uuid4().hex[:16]}.{fmt}"


class ImagePipeline:
    """Runs one transformation per call; holds no per-run state.

    Safe to share between threads as long as the codec is.
    """

    def __init__(self, image_config: ImageConfig, codec: PillowCodec | None = None) -> None:
        self._config = image_config
        self._codec = codec or PillowCodec(max_input_pixels=image_config.max_input_pixels)

    @property
    def codec(self) -> PillowCodec:
        return self._codec

    def process(self, asset: ImageAsset, options: Mapping[str, Any] | None = None) -> ProcessingResult:
        """Single-shot run driven by a flat option set."""
        self._check_limits(asset)
        normalized = normalize_options(options, asset, self._config)
        logger.info(
            "processing %s %dx%d (%d bytes) options=%s",
            asset.source_format,
            asset.width,
            asset.height,
            asset.byte_size,
            normalized,
        )
        with self._processing("Failed to process the image"):
            encoded = self._process_once(asset, normalized)
        return self._result(asset, encoded)

    def run(self, asset: ImageAsset, steps: Sequence[Mapping[str, Any]]) -> ProcessingResult:
        """Pipeline run: validate every step, then apply them in order."""
        validate_steps(steps, self._config.formats)
        return self.run_parsed(asset, parse_steps(steps))

    def run_parsed(self, asset: ImageAsset, parsed: Sequence[PipelineStep]) -> ProcessingResult:
        """Apply already-typed steps; kinds unknown to this build are skipped."""
        self._check_limits(asset)
        logger.info(
            "running %d-step pipeline on %s %dx%d",
            len(parsed),
            asset.source_format,
            asset.width,
            asset.height,
        )
        with self._processing("Failed to process the image pipeline"):
            image = self._codec.decode(asset.data)
            state = PipelineState(
                image=image,
                output_format=asset.source_format,
                dimensions=self._codec.dimensions(image),
            )
            state = run_steps(state, parsed, self._codec, self._config)
            encoded = finalize(state, self._codec, asset.source_format)
        return self._result(asset, encoded)

    def _process_once(self, asset: ImageAsset, options: ProcessingOptions) -> EncodedImage:
        codec = self._codec
        image = codec.decode(asset.data)
        if options.convert_cmyk_to_rgb and codec.color_space(image) == "cmyk":
            image = codec.to_srgb(image)

        directive = select_resize(
            options.resize_mode,
            options.resize_width,
            options.resize_height,
            codec.dimensions(image),
        )
        if directive is not None:
            image = codec.resize(image, directive)

        fmt = resolve_format(options.target_format, asset.source_format, self._config.formats)
        params = (
            compression_params(options.compression_level, fmt, options.quality)
            or format_encode_params(fmt, options.quality)
            or EncodeParams(format=fmt)
        )
        state = PipelineState(
            image=image,
            output_format=fmt,
            dimensions=codec.dimensions(image),
            encode=params,
            keep_exif=options.keep_exif,
        )
        return finalize(state, codec, asset.source_format)

    def _check_limits(self, asset: ImageAsset) -> None:
        if asset.byte_size > self._config.max_file_size:
            raise OversizeError("Image file size exceeds the maximum allowed size")
        if asset.pixel_count > self._config.max_input_pixels:
            raise OversizeError("Image dimensions exceed the maximum allowed pixel count")
        if not self._config.is_supported(asset.source_format):
            raise UnsupportedFormatError(f"Unsupported image format: {asset.source_format}")

    @contextmanager
    def _processing(self, message: str) -> Iterator[None]:
        try:
            yield
        except OptimizerError:
            raise
        except Exception as error:
            logger.exception("%s", message)
            raise ProcessingError(message, detail=f"{type(error).__name__}: {error}") from error

    def _result(self, asset: ImageAsset, encoded: EncodedImage) -> ProcessingResult:
        result = ProcessingResult(
            original_size=asset.byte_size,
            processed_size=len(encoded.data),
            width=encoded.width,
            height=encoded.height,
            format=encoded.format,
            encoded_bytes=encoded.data,
            suggested_filename=generate_filename(encoded.format),
        )
        logger.info(
            "produced %s %dx%d %d -> %d bytes (%s)",
            result.format,
            result.width,
            result.height,
            result.original_size,
            result.processed_size,
            result.compression_ratio,
        )
        return result
