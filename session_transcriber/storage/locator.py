"""Resolve a media record to a readable local file.

Uploads have been stored under several key layouts over time. The
locator checks the local cache first, then each remote layout in
priority order, downloading the first hit into the cache. Paths handed
to a job are held until released, and sweep_cache() only evicts files
no job holds.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from collections import Counter
from typing import Any

from session_transcriber.media.planner import HUGE_OBJECT_BYTES, plan_byte_ranges
from session_transcriber.media.splitter import download_in_ranges
from session_transcriber.storage.media_client import MediaItem
from session_transcriber.utils.errors import FileMissingError, PipelineError

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = os.path.join("uploads", "audios")

# A cached copy this far off the recorded size is an interrupted download
SIZE_TOLERANCE_BYTES = 1024 * 1024

CACHE_MAX_AGE_SECONDS = 24 * 60 * 60
CACHE_MAX_BYTES = 50 * 1024 * 1024 * 1024


def _owner_relative_name(filename: str) -> str | None:
    """Filename without its leading owner token.

    Legacy uploads were named ``{owner}_{timestamp}_{random}_{name}``;
    names with fewer than four underscore-separated parts never used
    the owner-prefixed layouts.
    """
    parts = filename.split("_")
    if len(parts) < 4:
        return None
    return "_".join(parts[1:])


class KeyStrategy(ABC):
    """One historical naming convention for remote media keys."""

    @abstractmethod
    def resolve(self, owner_id: str, filename: str) -> str | None:
        """Return the key for this convention, or None if not applicable."""


class OwnerVideoKey(KeyStrategy):
    def resolve(self, owner_id: str, filename: str) -> str | None:
        return f"videos/user-{owner_id}/{filename}"


class LegacyFlatKey(KeyStrategy):
    def resolve(self, owner_id: str, filename: str) -> str | None:
        return f"audios/{filename}"


class LegacyOwnerDirKey(KeyStrategy):
    def resolve(self, owner_id: str, filename: str) -> str | None:
        rest = _owner_relative_name(filename)
        return f"audios/{owner_id}/{rest}" if rest else None


class LegacyOwnerPrefixKey(KeyStrategy):
    def resolve(self, owner_id: str, filename: str) -> str | None:
        rest = _owner_relative_name(filename)
        return f"audios/{owner_id}_{rest}" if rest else None


DEFAULT_KEY_STRATEGIES: tuple[KeyStrategy, ...] = (
    OwnerVideoKey(),
    LegacyFlatKey(),
    LegacyOwnerDirKey(),
    LegacyOwnerPrefixKey(),
)


class BlobLocator:
    """Find or fetch the local file for a media item.

    Args:
        storage: S3Client (or compatible) for remote lookups.
        cache_dir: Local cache directory. Defaults to MEDIA_CACHE_DIR.
        strategies: Remote key conventions, tried in order.
        huge_threshold: Objects above this size are fetched by byte range.
    """

    def __init__(
        self,
        storage: Any,
        cache_dir: str | None = None,
        strategies: tuple[KeyStrategy, ...] = DEFAULT_KEY_STRATEGIES,
        huge_threshold: int = HUGE_OBJECT_BYTES,
    ) -> None:
        self.storage = storage
        self.cache_dir = cache_dir or os.environ.get(
            "MEDIA_CACHE_DIR", DEFAULT_CACHE_DIR
        )
        self.strategies = strategies
        self.huge_threshold = huge_threshold
        self._held: Counter[str] = Counter()
        self._lock = threading.Lock()

    def cache_path(self, media: MediaItem) -> str:
        return os.path.join(self.cache_dir, os.path.basename(media.filename))

    def _hold(self, path: str) -> None:
        with self._lock:
            self._held[os.path.abspath(path)] += 1

    def release(self, path: str) -> None:
        """Allow sweep_cache() to evict a path returned by locate()."""
        key = os.path.abspath(path)
        with self._lock:
            self._held[key] -= 1
            if self._held[key] <= 0:
                del self._held[key]

    def candidate_keys(self, media: MediaItem) -> list[str]:
        """Remote keys to try, in priority order, without duplicates."""
        keys: list[str] = []
        if media.remote_key:
            keys.append(media.remote_key)
        for strategy in self.strategies:
            key = strategy.resolve(media.owner_id, media.filename)
            if key and key not in keys:
                keys.append(key)
        return keys

    def _usable_local(self, path: str, media: MediaItem) -> bool:
        if not os.path.isfile(path):
            return False
        if media.size_bytes:
            local_size = os.path.getsize(path)
            if abs(local_size - media.size_bytes) > SIZE_TOLERANCE_BYTES:
                logger.warning(
                    "Cached file %s is %d bytes, expected %d; re-fetching",
                    path,
                    local_size,
                    media.size_bytes,
                )
                os.remove(path)
                return False
        return True

    def _download(self, key: str, dest_path: str) -> str:
        size = self.storage.object_size(key)
        if size > self.huge_threshold:
            ranges = plan_byte_ranges(size, huge_threshold=self.huge_threshold)
            logger.info(
                "Downloading %s (%d bytes) in %d ranges", key, size, len(ranges)
            )
            return download_in_ranges(self.storage, key, dest_path, ranges)
        return self.storage.download_to_path(key, dest_path)

    def locate(self, media: MediaItem) -> str:
        """Return a readable local path for ``media``.

        May create a file in the cache directory. The path is held until
        the caller passes it to release().

        Raises:
            FileMissingError: If no local or remote copy exists.
        """
        cache_path = self.cache_path(media)
        # Held while downloading so a concurrent sweep skips the partial file
        self._hold(cache_path)
        try:
            path = self._find(media, cache_path)
        except Exception:
            self.release(cache_path)
            raise
        if path != cache_path:
            self._hold(path)
            self.release(cache_path)
        return path

    def _find(self, media: MediaItem, cache_path: str) -> str:
        if media.local_path and os.path.isfile(media.local_path):
            logger.info("Found media %s at %s", media.id, media.local_path)
            return media.local_path

        if self._usable_local(cache_path, media):
            logger.info("Found media %s in cache: %s", media.id, cache_path)
            return cache_path

        keys = self.candidate_keys(media)
        for key in keys:
            try:
                if not self.storage.exists(key):
                    continue
                logger.info("Found media %s at remote key %s", media.id, key)
                return self._download(key, cache_path)
            except PipelineError as exc:
                logger.warning(
                    "Remote key %s failed for media %s: %s", key, media.id, exc
                )

        raise FileMissingError(
            f"Media file '{media.filename}' not found locally or under "
            f"{len(keys)} remote keys",
            media_id=media.id,
            tried_keys=keys,
        )

    def sweep_cache(
        self,
        max_age_seconds: float = CACHE_MAX_AGE_SECONDS,
        max_bytes: int = CACHE_MAX_BYTES,
        now: float | None = None,
    ) -> int:
        """Evict cached downloads no job holds.

        Files older than ``max_age_seconds`` are deleted; then, while the
        cache still exceeds ``max_bytes``, the oldest remaining files go.

        Returns:
            Number of bytes freed.
        """
        if not os.path.isdir(self.cache_dir):
            return 0
        now = time.time() if now is None else now
        with self._lock:
            held = set(self._held)

        entries: list[tuple[float, int, str]] = []
        for entry in os.scandir(self.cache_dir):
            if not entry.is_file():
                continue
            try:
                stat = entry.stat()
            except FileNotFoundError:
                continue
            entries.append((stat.st_mtime, stat.st_size, entry.path))
        entries.sort()

        remaining = sum(size for _, size, _ in entries)
        freed = 0
        removed = 0
        for mtime, size, path in entries:
            if os.path.abspath(path) in held:
                continue
            if now - mtime <= max_age_seconds and remaining <= max_bytes:
                continue
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError:
                logger.warning("Failed to evict cached file %s", path, exc_info=True)
                continue
            remaining -= size
            freed += size
            removed += 1

        if removed:
            logger.info(
                "Cache sweep removed %d files, freed %.2f MB",
                removed,
                freed / (1024 * 1024),
            )
        return freed
