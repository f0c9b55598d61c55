from __future__ import annotations

import base64
import binascii
import logging
import re
from pathlib import Path

import httpx

from optimizer.config import ImageConfig
from optimizer.errors import (
    DownloadError,
    InvalidDataError,
    OptimizerError,
    OversizeError,
    ReadError,
    UnsupportedFormatError,
)
from optimizer.pipeline.codec import PillowCodec
from optimizer.pipeline.types import ImageAsset

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT_S = 15.0
MAX_REDIRECTS = 5
USER_AGENT = "Image-Optimizer-API/1.0"

_DATA_URI_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,")


class ImageLoader:
    """Obtains source bytes and turns them into an :class:`ImageAsset`.

    Size and container checks happen here, before the engine ever sees the
    bytes.
    """

    def __init__(
        self,
        image_config: ImageConfig,
        codec: PillowCodec | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = image_config
        self._codec = codec or PillowCodec(max_input_pixels=image_config.max_input_pixels)
        self._client = client

    async def load_from_url(self, url: str) -> ImageAsset:
        try:
            data = await self._download(url)
        except OptimizerError:
            raise
        except httpx.HTTPStatusError as error:
            logger.warning("download of %s failed: HTTP %s", url, error.response.status_code)
            raise DownloadError(
                f"Failed to download image from URL: HTTP error: {error.response.status_code}",
                detail=str(error),
            ) from error
        except (httpx.HTTPError, httpx.InvalidURL) as error:
            logger.warning("download of %s failed: %s", url, error)
            message = "No response received" if isinstance(error, httpx.RequestError) else str(error)
            raise DownloadError(
                f"Failed to download image from URL: {message}", detail=str(error)
            ) from error
        return self.load_from_bytes(data)

    def load_from_bytes(self, data: bytes) -> ImageAsset:
        if not data or not isinstance(data, (bytes, bytearray)):
            raise InvalidDataError("Invalid image data")
        data = bytes(data)
        if len(data) > self._config.max_file_size:
            raise OversizeError("Image file size exceeds the maximum allowed size")

        header = self._codec.identify(data)
        if not self._config.is_supported(header.format):
            raise UnsupportedFormatError(f"Unsupported image format: {header.format or 'unknown'}")
        if header.width * header.height > self._config.max_input_pixels:
            raise OversizeError("Image dimensions exceed the maximum allowed pixel count")

        return ImageAsset(
            data=data,
            width=header.width,
            height=header.height,
            color_space=header.color_space,
            source_format=header.format,
            mime_type=self._config.mime_type(header.format),
        )

    def load_from_file(self, path: str | Path) -> ImageAsset:
        file_path = Path(path)
        try:
            data = file_path.read_bytes()
        except OSError as error:
            raise ReadError(f"Failed to read image file: {error.strerror or error}") from error
        return self.load_from_bytes(data)

    def load_from_data_uri(self, value: str) -> ImageAsset:
        payload = _DATA_URI_PREFIX.sub("", value.strip(), count=1)
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as error:
            raise InvalidDataError("Invalid base64 image data") from error
        return self.load_from_bytes(data)

    async def _download(self, url: str) -> bytes:
        client = self._client or httpx.AsyncClient(
            timeout=DOWNLOAD_TIMEOUT_S,
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
        )
        try:
            async with client.stream(
                "GET",
                url,
                headers={"User-Agent": USER_AGENT, "Accept": "image/*"},
            ) as response:
                response.raise_for_status()
                chunks: list[bytes] = []
                total = 0
                async for chunk in response.aiter_bytes():
                    total += len(chunk)
                    if total > self._config.max_file_size:
                        raise OversizeError("Image file size exceeds the maximum allowed size")
                    chunks.append(chunk)
                return b"".join(chunks)
        finally:
            if self._client is None:
                await client.aclose()
