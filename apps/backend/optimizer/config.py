from __future__ import annotations

import logging
import os
import sys
from copy import deepcopy
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from optimizer.pipeline.types import CompressionLevel

SUPPORTED_FORMATS: dict[str, str] = {
    "jpeg": "image/jpeg",
    "jpg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
    "avif": "image/avif",
    "gif": "image/gif",
}

MAX_FILE_SIZE = 10 * 1024 * 1024
MAX_INPUT_PIXELS = 50_000_000


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class ServerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str = Field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = Field(default_factory=lambda: int(os.getenv("PORT", "3000")), ge=1, le=65535)
    env: Literal["development", "production", "test"] = Field(
        default_factory=lambda: os.getenv("APP_ENV", "development")
    )
    api_key: str = Field(
        default_factory=lambda: os.getenv("API_KEY", "default-api-key-for-development")
    )
    skip_auth: bool = Field(default_factory=lambda: _env_bool("SKIP_AUTH"))

    @property
    def is_development(self) -> bool:
        return self.env == "development"


class StorageConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str = Field(default_factory=lambda: os.getenv("STORAGE_PATH", "./uploads"))
    retention_days: int = Field(
        default_factory=lambda: int(os.getenv("STORAGE_RETENTION_DAYS", "3")), ge=0
    )
    public_prefix: str = "/downloads"


class ImageConfig(BaseModel):
    model_config = ConfigDict(frozen=True, validate_default=True)

    default_compression: CompressionLevel = Field(
        default_factory=lambda: os.getenv("DEFAULT_COMPRESSION", "lossy")
    )
    default_max_width: int = Field(
        default_factory=lambda: int(os.getenv("DEFAULT_MAX_WIDTH", "1200")), ge=1
    )
    default_quality: int = Field(
        default_factory=lambda: int(os.getenv("DEFAULT_QUALITY", "80")), ge=1, le=100
    )
    default_format: str = Field(default_factory=lambda: os.getenv("DEFAULT_FORMAT", "webp"))
    max_file_size: int = Field(
        default_factory=lambda: int(os.getenv("MAX_FILE_SIZE", str(MAX_FILE_SIZE))), ge=1
    )
    max_input_pixels: int = Field(
        default_factory=lambda: int(os.getenv("MAX_INPUT_PIXELS", str(MAX_INPUT_PIXELS))), ge=1
    )
    formats: dict[str, str] = Field(default_factory=lambda: dict(SUPPORTED_FORMATS))

    @field_validator("default_compression", mode="before")
    @classmethod
    def _coerce_compression(cls, value: Any) -> CompressionLevel:
        return CompressionLevel.parse(value)

    @field_validator("default_format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        key = value.lstrip("+").lower()
        if key not in SUPPORTED_FORMATS:
            raise ValueError(f"unsupported default format: {value}")
        return key

    def mime_type(self, fmt: str) -> str:
        return self.formats.get(fmt, "application/octet-stream")

    def is_supported(self, fmt: str | None) -> bool:
        return fmt is not None and fmt in self.formats


class LoggingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "info"))


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    server: ServerConfig = Field(default_factory=ServerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    image: ImageConfig = Field(default_factory=ImageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_settings() -> Settings:
    """Build the process configuration from the environment.

    Called once at startup; the returned value is immutable and passed to
    every component that needs it.
    """
    return Settings()


def deep_merge(base: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    merged = deepcopy(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def merge_settings(current: Settings, patch: dict[str, Any]) -> Settings:
    merged_dict = deep_merge(current.model_dump(), patch)
    return Settings.model_validate(merged_dict)


def configure_logging(level: str = "info") -> None:
    root = logging.getLogger("optimizer")
    root.setLevel(level.upper())
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        root.addHandler(handler)
