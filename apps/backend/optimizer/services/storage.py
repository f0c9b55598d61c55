"""Local filesystem storage for processed images.

Artifacts are written under ``StorageConfig.path`` and served by the app
under ``StorageConfig.public_prefix``. Files older than the retention window
are removed by :meth:`LocalStorage.sweep_expired`, so a persisted path is
only a convenience; the bytes returned by the engine are authoritative.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path

from optimizer.config import StorageConfig

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True, slots=True)
class StoredArtifact:
    filename: str
    path: Path
    url: str


@dataclass(frozen=True, slots=True)
class StorageStats:
    file_count: int
    total_size: int

    @property
    def total_size_mb(self) -> str:
        return f"{self.total_size / (1024 * 1024):.2f}"


class LocalStorage:
    def __init__(self, config: StorageConfig) -> None:
        self._config = config
        self.root = Path(config.path)

    def init(self) -> int:
        """Create the storage directory if needed and run a first sweep."""
        if not self.root.exists():
            self.root.mkdir(parents=True, exist_ok=True)
            logger.info("created storage directory %s", self.root)
        return self.sweep_expired()

    def url_for(self, filename: str) -> str:
        return f"{self._config.public_prefix.rstrip('/')}/{filename}"

    def _resolve(self, filename: str) -> Path:
        name = Path(filename).name
        if not name or name != filename:
            raise ValueError(f"invalid storage filename: {filename!r}")
        return self.root / name

    def persist(self, data: bytes, filename: str) -> StoredArtifact:
        path = self._resolve(filename)
        self.root.mkdir(parents=True, exist_ok=True)
        # exclusive create: a name collision must never overwrite another run's output
        with open(path, "xb") as handle:
            handle.write(data)
        return StoredArtifact(filename=filename, path=path, url=self.url_for(filename))

    def delete(self, filename: str) -> bool:
        path = self._resolve(filename)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def sweep_expired(self, now: float | None = None) -> int:
        """Delete regular files older than the retention window.

        Per-file failures are logged and skipped.
        """
        if not self.root.is_dir():
            return 0
        now = time.time() if now is None else now
        cutoff = now - self._config.retention_days * SECONDS_PER_DAY
        deleted = 0
        for entry in os.scandir(self.root):
            try:
                if not entry.is_file():
                    continue
                if entry.stat().st_mtime < cutoff:
                    os.unlink(entry.path)
                    deleted += 1
            except OSError as error:
                logger.error("error sweeping %s: %s", entry.path, error)
        logger.info("cleaned %d old files from storage", deleted)
        return deleted

    def stats(self) -> StorageStats:
        file_count = 0
        total_size = 0
        if self.root.is_dir():
            for entry in os.scandir(self.root):
                try:
                    if entry.is_file():
                        file_count += 1
                        total_size += entry.stat().st_size
                except OSError as error:
                    logger.error("error reading stats for %s: %s", entry.path, error)
        return StorageStats(file_count=file_count, total_size=total_size)
