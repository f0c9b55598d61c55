from __future__ import annotations

import asyncio
import base64
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from optimizer.config import Settings
from optimizer.errors import ValidationError
from optimizer.pipeline.runner import ImagePipeline
from optimizer.pipeline.types import ImageAsset, ProcessingResult
from optimizer.services.loader import ImageLoader
from optimizer.services.storage import LocalStorage, StoredArtifact

INLINE_BASE64_LIMIT = 1024 * 1024


@dataclass(frozen=True, slots=True)
class Outcome:
    asset: ImageAsset
    result: ProcessingResult
    artifact: StoredArtifact
    data_uri: str | None

    @property
    def compression_ratio(self) -> str:
        return self.result.compression_ratio


def data_uri(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


class OptimizerService:
    """Joins loader, engine and storage for the HTTP layer.

    Decode and encode are CPU-bound, so runs go to worker threads and at
    most ``max_concurrent_runs`` execute at once.
    """

    def __init__(
        self,
        settings: Settings,
        loader: ImageLoader | None = None,
        pipeline: ImagePipeline | None = None,
        storage: LocalStorage | None = None,
        max_concurrent_runs: int | None = None,
    ) -> None:
        self.settings = settings
        self.pipeline = pipeline or ImagePipeline(settings.image)
        self.loader = loader or ImageLoader(settings.image, codec=self.pipeline.codec)
        self.storage = storage or LocalStorage(settings.storage)
        self._slots = asyncio.Semaphore(max_concurrent_runs or os.cpu_count() or 4)

    async def load(
        self,
        *,
        url: str | None = None,
        data: bytes | None = None,
        encoded: str | None = None,
    ) -> ImageAsset:
        if url:
            return await self.loader.load_from_url(url)
        if data:
            return self.loader.load_from_bytes(data)
        if encoded:
            return self.loader.load_from_data_uri(encoded)
        raise ValidationError(
            "Image input is required (url, file upload, or base64)", field="image"
        )

    async def optimize(self, asset: ImageAsset, options: Mapping[str, Any] | None) -> Outcome:
        async with self._slots:
            result = await asyncio.to_thread(self.pipeline.process, asset, options)
        return await self._store(asset, result)

    async def run_pipeline(self, asset: ImageAsset, steps: Sequence[Mapping[str, Any]]) -> Outcome:
        async with self._slots:
            result = await asyncio.to_thread(self.pipeline.run, asset, steps)
        return await self._store(asset, result)

    async def _store(self, asset: ImageAsset, result: ProcessingResult) -> Outcome:
        artifact = await asyncio.to_thread(
            self.storage.persist, result.encoded_bytes, result.suggested_filename
        )
        inline = None
        if result.processed_size < INLINE_BASE64_LIMIT:
            inline = data_uri(result.encoded_bytes, self.settings.image.mime_type(result.format))
        return Outcome(asset=asset, result=result, artifact=artifact, data_uri=inline)
