from __future__ import annotations

from io import BytesIO
from typing import Callable

import numpy as np
import pytest
from PIL import Image

from optimizer.config import ImageConfig
from optimizer.pipeline.codec import PillowCodec
from optimizer.pipeline.types import ImageAsset
from optimizer.services.loader import ImageLoader


def gradient_image(width: int, height: int) -> Image.Image:
    """Deterministic RGB gradient; every pixel differs from its neighbours."""
    xx, yy = np.meshgrid(np.linspace(0.0, 1.0, width), np.linspace(0.0, 1.0, height))
    channels = np.stack([xx, yy, (xx + yy) / 2.0], axis=-1)
    return Image.fromarray(np.round(channels * 255.0).astype(np.uint8))


def encode(image: Image.Image, fmt: str, **params: object) -> bytes:
    buffer = BytesIO()
    image.save(buffer, format=fmt, **params)
    return buffer.getvalue()


@pytest.fixture
def image_config() -> ImageConfig:
    return ImageConfig(
        default_compression="lossy",
        default_max_width=1200,
        default_quality=80,
        default_format="webp",
        max_file_size=10 * 1024 * 1024,
        max_input_pixels=50_000_000,
    )


@pytest.fixture
def codec() -> PillowCodec:
    return PillowCodec()


@pytest.fixture
def make_asset(image_config: ImageConfig) -> Callable[..., ImageAsset]:
    loader = ImageLoader(image_config)

    def _make(
        width: int = 64,
        height: int = 48,
        fmt: str = "PNG",
        mode: str = "RGB",
        **params: object,
    ) -> ImageAsset:
        frame = gradient_image(width, height)
        if mode != frame.mode:
            frame = frame.convert(mode)
        return loader.load_from_bytes(encode(frame, fmt, **params))

    return _make
