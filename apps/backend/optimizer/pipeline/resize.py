from __future__ import annotations

import math

import numpy as np
from PIL import Image, ImageFilter

from optimizer.pipeline.types import Anchor, Fit, ResizeDirective, ResizeMode

SALIENCY_SAMPLE_EDGE = 256


def select_resize(
    mode: ResizeMode,
    width: int | None,
    height: int | None,
    source: tuple[int, int],
) -> ResizeDirective | None:
    """Map a resize mode onto a concrete directive for the codec.

    Returns ``None`` when nothing should happen: mode ``none`` or neither
    target dimension set. A missing dimension falls back to the source's.
    """
    if mode is ResizeMode.NONE or (not width and not height):
        return None

    target_width = width or source[0]
    target_height = height or source[1]

    if mode is ResizeMode.CONTAIN:
        return ResizeDirective(
            width=target_width,
            height=target_height,
            fit=Fit.INSIDE,
            without_enlargement=True,
        )
    if mode is ResizeMode.COVER:
        return ResizeDirective(width=target_width, height=target_height, fit=Fit.COVER)
    if mode is ResizeMode.SMART_CROP:
        return ResizeDirective(
            width=target_width,
            height=target_height,
            fit=Fit.COVER,
            anchor=Anchor.ATTENTION,
        )
    return None


def _round(value: float) -> int:
    return max(1, int(math.floor(value + 0.5)))


def fit_inside(
    source: tuple[int, int],
    box: tuple[int, int],
    without_enlargement: bool = False,
) -> tuple[int, int]:
    """Largest size with the source aspect ratio that fits in ``box``."""
    scale = min(box[0] / source[0], box[1] / source[1])
    if without_enlargement and scale >= 1.0:
        return source
    return (min(box[0], _round(source[0] * scale)), min(box[1], _round(source[1] * scale)))


def cover_size(source: tuple[int, int], box: tuple[int, int]) -> tuple[int, int]:
    """Smallest size with the source aspect ratio that fills ``box``."""
    scale = max(box[0] / source[0], box[1] / source[1])
    return (max(box[0], _round(source[0] * scale)), max(box[1], _round(source[1] * scale)))


def crop_box(
    scaled: tuple[int, int],
    box: tuple[int, int],
    focus: tuple[float, float] = (0.5, 0.5),
) -> tuple[int, int, int, int]:
    """Window of ``box`` size inside ``scaled``, centred on ``focus`` where possible.

    ``focus`` is a fractional (x, y) position in the scaled image.
    """
    max_left = scaled[0] - box[0]
    max_top = scaled[1] - box[1]
    left = int(round(focus[0] * scaled[0] - box[0] / 2))
    top = int(round(focus[1] * scaled[1] - box[1] / 2))
    left = min(max(left, 0), max_left)
    top = min(max(top, 0), max_top)
    return (left, top, left + box[0], top + box[1])


def attention_focus(image: Image.Image) -> tuple[float, float]:
    """Estimate the most interesting point of an image.

    Combines edge density and colour saturation into a saliency map and
    returns its weighted centroid as fractions of width and height. Flat
    images fall back to the geometric centre.
    """
    sample = image.convert("RGB")
    sample.thumbnail((SALIENCY_SAMPLE_EDGE, SALIENCY_SAMPLE_EDGE))

    edges = sample.convert("L").filter(ImageFilter.FIND_EDGES)
    edge_arr = np.asarray(edges, dtype=np.float32) / 255.0
    saturation = np.asarray(sample.convert("HSV"), dtype=np.float32)[..., 1] / 255.0

    saliency = edge_arr * 0.7 + saturation * 0.3
    # suppress the one-pixel frame FIND_EDGES leaves on the border
    saliency[0, :] = saliency[-1, :] = 0.0
    saliency[:, 0] = saliency[:, -1] = 0.0

    total = float(saliency.sum())
    if total <= 1e-6:
        return (0.5, 0.5)

    rows, cols = saliency.shape
    ys = (np.arange(rows, dtype=np.float32) + 0.5) / rows
    xs = (np.arange(cols, dtype=np.float32) + 0.5) / cols
    focus_x = float((saliency.sum(axis=0) * xs).sum() / total)
    focus_y = float((saliency.sum(axis=1) * ys).sum() / total)
    return (focus_x, focus_y)
