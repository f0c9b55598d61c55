from __future__ import annotations

from optimizer.pipeline.codec import ImageCodec
from optimizer.pipeline.formats import format_encode_params
from optimizer.pipeline.types import EncodedImage, EncodeParams, PipelineState


def terminal_params(state: PipelineState, fallback_format: str) -> EncodeParams:
    """Encoder settings for the final write.

    Settings chosen by an earlier step win as long as they target the
    current output format; otherwise that format's defaults apply.
    """
    fmt = state.output_format or fallback_format
    if state.encode is not None and state.encode.format == fmt:
        return state.encode
    return format_encode_params(fmt) or EncodeParams(format=fmt)


def finalize(state: PipelineState, codec: ImageCodec, fallback_format: str) -> EncodedImage:
    """Encode the pipeline image to bytes.

    Width and height come from the encoded output, not from any requested
    box, so a ``contain`` that declined to enlarge reports the real size.
    """
    return codec.encode(state.image, terminal_params(state, fallback_format), keep_exif=state.keep_exif)
