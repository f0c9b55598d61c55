from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import replace
from typing import Any

from optimizer.config import ImageConfig
from optimizer.pipeline.codec import ImageCodec
from optimizer.pipeline.formats import compression_params, format_encode_params
from optimizer.pipeline.resize import select_resize
from optimizer.pipeline.types import (
    CompressStep,
    ConvertStep,
    FlipStep,
    MetadataPolicyStep,
    PipelineState,
    PipelineStep,
    ResizeStep,
    RotateStep,
    UnknownStep,
)

logger = logging.getLogger(__name__)

StepHandler = Callable[[PipelineState, Any, ImageCodec, ImageConfig], PipelineState]


def _resize(state: PipelineState, step: ResizeStep, codec: ImageCodec, defaults: ImageConfig) -> PipelineState:
    directive = select_resize(step.fit, step.width, step.height, state.dimensions)
    image = state.image if directive is None else codec.resize(state.image, directive)
    # the only step that refreshes dimensions
    return replace(state, image=image, dimensions=codec.dimensions(image))


def _convert(state: PipelineState, step: ConvertStep, codec: ImageCodec, defaults: ImageConfig) -> PipelineState:
    params = format_encode_params(
        step.format,
        quality=step.quality or defaults.default_quality,
        lossless=step.lossless,
    )
    return replace(state, output_format=step.format, encode=params or state.encode)


def _compress(state: PipelineState, step: CompressStep, codec: ImageCodec, defaults: ImageConfig) -> PipelineState:
    if state.output_format is None:
        return state
    params = compression_params(
        step.level or defaults.default_compression,
        state.output_format,
        quality=step.quality or defaults.default_quality,
    )
    return replace(state, encode=params or state.encode)


def _rotate(state: PipelineState, step: RotateStep, codec: ImageCodec, defaults: ImageConfig) -> PipelineState:
    return replace(state, image=codec.rotate(state.image, step.angle_degrees, step.background))


def _flip(state: PipelineState, step: FlipStep, codec: ImageCodec, defaults: ImageConfig) -> PipelineState:
    if not step.horizontal and not step.vertical:
        return state
    return replace(state, image=codec.flip(state.image, step.horizontal, step.vertical))


def _metadata(state: PipelineState, step: MetadataPolicyStep, codec: ImageCodec, defaults: ImageConfig) -> PipelineState:
    return replace(state, keep_exif=step.keep_exif)


def _unknown(state: PipelineState, step: UnknownStep, codec: ImageCodec, defaults: ImageConfig) -> PipelineState:
    logger.warning("Unknown pipeline step type: %s (skipped)", step.type)
    return state


STEP_HANDLERS: dict[type, StepHandler] = {
    ResizeStep: _resize,
    ConvertStep: _convert,
    CompressStep: _compress,
    RotateStep: _rotate,
    FlipStep: _flip,
    MetadataPolicyStep: _metadata,
    UnknownStep: _unknown,
}


def apply_step(
    state: PipelineState,
    step: PipelineStep,
    codec: ImageCodec,
    defaults: ImageConfig,
) -> PipelineState:
    """Reduce one step into a new state. Never mutates ``state``."""
    handler = STEP_HANDLERS.get(type(step), _unknown)
    if handler is _unknown and not isinstance(step, UnknownStep):
        step = UnknownStep(type=type(step).__name__)
    return handler(state, step, codec, defaults)


def run_steps(
    state: PipelineState,
    steps: Iterable[PipelineStep],
    codec: ImageCodec,
    defaults: ImageConfig,
) -> PipelineState:
    for step in steps:
        state = apply_step(state, step, codec, defaults)
    return state
