from __future__ import annotations

import asyncio
import base64

import httpx
import pytest
from PIL import Image

from conftest import encode, gradient_image
from optimizer.config import ImageConfig
from optimizer.errors import (
    DownloadError,
    InvalidDataError,
    OversizeError,
    ReadError,
    UnsupportedFormatError,
)
from optimizer.services.loader import ImageLoader

PNG = encode(gradient_image(64, 48), "PNG")


def test_load_from_bytes_reads_header(image_config: ImageConfig) -> None:
    asset = ImageLoader(image_config).load_from_bytes(PNG)

    assert (asset.width, asset.height) == (64, 48)
    assert asset.source_format == "png"
    assert asset.mime_type == "image/png"
    assert asset.color_space == "srgb"
    assert asset.byte_size == len(PNG)


def test_grayscale_color_space(image_config: ImageConfig) -> None:
    data = encode(Image.new("L", (8, 8), 120), "JPEG")
    asset = ImageLoader(image_config).load_from_bytes(data)

    assert asset.source_format == "jpeg"
    assert asset.color_space == "b-w"


def test_empty_data_is_invalid(image_config: ImageConfig) -> None:
    with pytest.raises(InvalidDataError):
        ImageLoader(image_config).load_from_bytes(b"")


def test_unsupported_containers(image_config: ImageConfig) -> None:
    loader = ImageLoader(image_config)

    with pytest.raises(UnsupportedFormatError):
        loader.load_from_bytes(encode(gradient_image(8, 8), "BMP"))
    with pytest.raises(UnsupportedFormatError):
        loader.load_from_bytes(b"just some text, not pixels")


def test_byte_and_pixel_ceilings(image_config: ImageConfig) -> None:
    small_files = ImageLoader(image_config.model_copy(update={"max_file_size": 100}))
    with pytest.raises(OversizeError):
        small_files.load_from_bytes(PNG)

    few_pixels = ImageLoader(image_config.model_copy(update={"max_input_pixels": 1000}))
    with pytest.raises(OversizeError):
        few_pixels.load_from_bytes(PNG)


def test_load_from_data_uri(image_config: ImageConfig) -> None:
    loader = ImageLoader(image_config)
    encoded = base64.b64encode(PNG).decode("ascii")

    assert loader.load_from_data_uri(f"data:image/png;base64,{encoded}").width == 64
    assert loader.load_from_data_uri(encoded).height == 48


def test_invalid_base64(image_config: ImageConfig) -> None:
    with pytest.raises(InvalidDataError, match="Invalid base64 image data"):
        ImageLoader(image_config).load_from_data_uri("data:image/png;base64,***")


def test_load_from_file(image_config: ImageConfig, tmp_path) -> None:
    path = tmp_path / "frame.png"
    path.write_bytes(PNG)
    loader = ImageLoader(image_config)

    assert loader.load_from_file(path).source_format == "png"
    with pytest.raises(ReadError):
        loader.load_from_file(tmp_path / "missing.png")


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_load_from_url(image_config: ImageConfig) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=PNG, headers={"content-type": "image/png"})

    async def scenario():
        async with _client(handler) as client:
            return await ImageLoader(image_config, client=client).load_from_url("https://example.test/a.png")

    asset = asyncio.run(scenario())

    assert (asset.width, asset.height) == (64, 48)
    assert seen[0].headers["accept"] == "image/*"


def test_http_error_status(image_config: ImageConfig) -> None:
    async def scenario():
        async with _client(lambda request: httpx.Response(404)) as client:
            await ImageLoader(image_config, client=client).load_from_url("https://example.test/missing")

    with pytest.raises(DownloadError, match="HTTP error: 404") as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.code == "INVALID_URL"
    assert excinfo.value.status_code == 400


def test_connection_failure(image_config: ImageConfig) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario():
        async with _client(handler) as client:
            await ImageLoader(image_config, client=client).load_from_url("https://example.test/a.png")

    with pytest.raises(DownloadError, match="No response received"):
        asyncio.run(scenario())


def test_download_is_capped(image_config: ImageConfig) -> None:
    config = image_config.model_copy(update={"max_file_size": 256})

    async def scenario():
        async with _client(lambda request: httpx.Response(200, content=b"\0" * 4096)) as client:
            await ImageLoader(config, client=client).load_from_url("https://example.test/big.png")

    with pytest.raises(OversizeError):
        asyncio.run(scenario())
