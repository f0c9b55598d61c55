from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Status(BaseModel):
    code: int
    message: str


class OptimizeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Status
    original_url: str | None = Field(default=None, alias="originalUrl")
    original_size: int = Field(alias="originalSize")
    processed_size: int = Field(alias="processedSize")
    format: str
    width: int
    height: int
    compression_ratio: str = Field(alias="compressionRatio")
    download_url: str = Field(alias="downloadUrl")
    base64: str | None = None


class PipelineSpec(BaseModel):
    steps: list[dict[str, Any]] = Field(default_factory=list)


class StorageStatsPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_count: int = Field(alias="fileCount")
    total_size: int = Field(alias="totalSize")
    total_size_mb: str = Field(alias="totalSizeMB")


class HealthResponse(BaseModel):
    status: str = "ok"
    storage: StorageStatsPayload
