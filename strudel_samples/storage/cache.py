"""
A local sample cache backed by a JSON manifest, with a size cap enforced by
least-recently-used eviction.
"""

import asyncio
import logging
import shutil
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any

import aiofiles

from strudel_samples.exceptions import InvalidSamplePathError
from strudel_samples.models.config import SamplesConfig
from strudel_samples.models.manifest import (
    Manifest,
    ManifestEntry,
    PackRecord,
    utcnow,
)
from strudel_samples.models.stats import CacheStats, VerifyResult
from strudel_samples.storage.manifest_store import ManifestStore
from strudel_samples.utils.integrity import FileIntegrityChecker
from strudel_samples.utils.path import (
    create_dir,
    unlink_if_exists,
    url_basename,
    url_digest,
)

log = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024
# Evict down to this share of the cap so the next add does not evict again
EVICTION_TARGET_RATIO = 0.8
URL_SAMPLES_DIR = "by-url"
PACKS_DIR = "packs"


class ClearScope(str, Enum):
    """Which index `SampleCache.clear` empties."""

    SAMPLES = "samples"
    PACKS = "packs"
    ALL = "all"


class SampleCache:
    """
    Manages cached samples on disk and their manifest entries.

    Mutations are serialized by an asyncio lock, so a single instance can be
    shared by concurrent downloads. Separate instances or processes pointed at
    the same directory are not coordinated.
    """

    def __init__(self, config: SamplesConfig | None = None):
        """
        Initializes the cache. Call `initialize()` before any other operation.

        Args:
            config: Cache settings. Defaults are used when omitted.
        """
        self.config = config or SamplesConfig()
        self.cache_dir = self.config.resolved_cache_dir.resolve()
        self.max_size_mb = self.config.cache_size_mb
        self._store = ManifestStore(self.cache_dir)
        self._manifest: Manifest | None = None
        self._lock = asyncio.Lock()

    @property
    def manifest(self) -> Manifest:
        if self._manifest is None:
            raise RuntimeError("SampleCache.initialize() has not been called.")
        return self._manifest

    async def initialize(self) -> None:
        """Creates the cache directory if needed and loads the manifest."""
        log.debug("Initializing sample cache...")
        await asyncio.to_thread(create_dir, self.cache_dir)
        self._manifest = await self._store.load()
        log.info(f"Sample cache initialized: [dim]{self.cache_dir}[/dim]")
        log.debug(f"Cache size limit: {self.max_size_mb}MB")

    # -- paths ---------------------------------------------------------------

    def _key(self, sample_path: str | PurePosixPath) -> str:
        """Normalizes a relative sample path into its manifest key."""
        raw = str(sample_path).replace("\\", "/")
        key = PurePosixPath(raw)
        if key.is_absolute() or ".." in key.parts or not key.parts:
            raise InvalidSamplePathError(
                f"Sample path must be relative and inside the cache: '{sample_path}'"
            )
        return key.as_posix()

    def resolve_path(self, sample_path: str | PurePosixPath) -> Path:
        """Returns the absolute location of a relative sample path."""
        return self.cache_dir / self._key(sample_path)

    def relative_key(self, absolute_path: Path) -> str:
        """Converts an absolute path inside the cache back into a manifest key."""
        try:
            return absolute_path.resolve().relative_to(self.cache_dir).as_posix()
        except ValueError as e:
            raise InvalidSamplePathError(
                f"Path is outside the cache directory: '{absolute_path}'"
            ) from e

    # -- lookups -------------------------------------------------------------

    async def is_cached(self, sample_path: str) -> bool:
        """Checks the filesystem, not the manifest, for a cached sample."""
        return await asyncio.to_thread(self.resolve_path(sample_path).exists)

    async def get_cached_path(self, sample_path: str) -> Path | None:
        """Returns the absolute path of a cached sample, or None on a cache miss."""
        cached_path = self.resolve_path(sample_path)
        if await asyncio.to_thread(cached_path.exists):
            return cached_path
        return None

    def get_pack(self, url: str) -> PackRecord | None:
        return self.manifest.packs.get(url)

    # -- mutations -----------------------------------------------------------

    async def add_sample(self, sample_path: str, data: bytes) -> Path:
        """
        Writes a sample into the cache and records it in the manifest.

        Re-adding an existing path overwrites the file and refreshes its entry,
        keeping the original `cached_at`. Eviction runs afterwards, so the cache
        may drop older samples (or, if it alone exceeds the cap, this one).

        Returns:
            The absolute path of the cached sample.
        """
        key = self._key(sample_path)
        cached_path = self.cache_dir / key
        content_hash = FileIntegrityChecker.hash_bytes(data)

        async with self._lock:
            await asyncio.to_thread(create_dir, cached_path.parent)
            async with aiofiles.open(cached_path, "wb") as f:
                await f.write(data)

            now = utcnow()
            existing = self.manifest.samples.get(key)
            self.manifest.samples[key] = ManifestEntry(
                size_bytes=len(data),
                content_hash=content_hash,
                cached_at=existing.cached_at if existing else now,
                last_accessed=now,
            )
            await self._save()
            log.debug(f"Sample cached: {key} ({len(data)} bytes)")

            await self._evict_if_needed()

        return cached_path

    async def remove_sample(self, sample_path: str) -> bool:
        """
        Deletes a sample file and its manifest entry, including any URL entries
        that point at it.

        Returns:
            True if a manifest entry was removed, False if the sample was unknown.
        """
        key = self._key(sample_path)
        async with self._lock:
            return await self._remove_sample_unlocked(key)

    async def _remove_sample_unlocked(self, key: str) -> bool:
        await asyncio.to_thread(unlink_if_exists, self.cache_dir / key)
        entry = self.manifest.drop_sample(key)
        if entry is None:
            return False
        await self._save()
        log.debug(f"Sample removed from cache: {key}")
        return True

    async def update_access_time(self, sample_path: str) -> None:
        """Marks a sample as recently used. Unknown samples are ignored."""
        key = self._key(sample_path)
        async with self._lock:
            entry = self.manifest.samples.get(key)
            if entry is None:
                return
            entry.last_accessed = utcnow()
            await self._save()

    async def clear(self, scope: ClearScope = ClearScope.SAMPLES) -> int:
        """
        Removes cached content.

        Args:
            scope: SAMPLES removes every sample entry and file (pack records are
                kept). PACKS removes every pack archive, its extracted files and
                its record. ALL does both.

        Returns:
            The number of samples and packs removed.
        """
        scope = ClearScope(scope)
        log.info(f"Clearing sample cache ({scope.value})...")
        removed = 0
        async with self._lock:
            if scope in (ClearScope.SAMPLES, ClearScope.ALL):
                for key in list(self.manifest.samples):
                    if await self._remove_sample_unlocked(key):
                        removed += 1
            if scope in (ClearScope.PACKS, ClearScope.ALL):
                for url in list(self.manifest.packs):
                    if await self._remove_pack_unlocked(url):
                        removed += 1
            await self._save()
        log.info(f"Cleared {removed} entries from cache")
        return removed

    async def record_url(self, url: str, sample_path: str) -> bool:
        """
        Maps a source URL to a cached sample or pack path. The last write wins.

        Returns:
            False if the path is not a known sample or pack, in which case the
            URL index is left unchanged.
        """
        key = self._key(sample_path)
        async with self._lock:
            known_pack_paths = {record.path for record in self.manifest.packs.values()}
            if key not in self.manifest.samples and key not in known_pack_paths:
                log.warning(f"Not recording URL for uncached path '{key}': {url}")
                return False
            self.manifest.urls[url] = key
            await self._save()
        return True

    async def record_pack(self, url: str, record: PackRecord) -> None:
        """Stores a pack record and its URL mapping in a single manifest update."""
        self._key(record.path)
        async with self._lock:
            self.manifest.packs[url] = record
            self.manifest.urls[url] = record.path
            await self._save()

    async def remove_pack(self, url: str) -> bool:
        """Deletes a downloaded pack directory and its record."""
        async with self._lock:
            return await self._remove_pack_unlocked(url)

    async def _remove_pack_unlocked(self, url: str) -> bool:
        record = self.manifest.drop_pack(url)
        if record is None:
            return False
        pack_dir = (self.cache_dir / record.path).parent
        if pack_dir != self.cache_dir and pack_dir.is_dir():
            await asyncio.to_thread(shutil.rmtree, pack_dir)
        else:
            await asyncio.to_thread(unlink_if_exists, self.cache_dir / record.path)
        await self._save()
        log.debug(f"Pack removed from cache: {url}")
        return True

    # -- URL-keyed convenience -----------------------------------------------

    @staticmethod
    def url_destination(url: str) -> str:
        """
        Derives the cache path used for a URL-keyed sample.

        The URL's basename is kept for readability, prefixed with a digest of
        the full URL so two URLs sharing a basename never overwrite each other.
        """
        name = url_basename(url, fallback="sample")
        return f"{URL_SAMPLES_DIR}/{url_digest(url)}/{name}"

    async def get_by_url(self, url: str) -> Path | None:
        """Looks up a sample previously cached for a URL and marks it as used."""
        key = self.manifest.urls.get(url)
        if key is None:
            return None
        cached_path = await self.get_cached_path(key)
        if cached_path is not None and key in self.manifest.samples:
            await self.update_access_time(key)
        return cached_path

    async def set_by_url(self, url: str, data: bytes) -> Path:
        """Caches a payload under a URL-derived path and records the URL mapping."""
        key = self.url_destination(url)
        cached_path = await self.add_sample(key, data)
        await self.record_url(url, key)
        return cached_path

    # -- integrity -----------------------------------------------------------

    async def verify_sample(self, sample_path: str) -> bool:
        """Re-hashes a cached sample and compares it with the manifest."""
        key = self._key(sample_path)
        entry = self.manifest.samples.get(key)
        if entry is None:
            return False
        return await asyncio.to_thread(
            FileIntegrityChecker.check_file, self.cache_dir / key, entry.content_hash
        )

    async def verify_all(self) -> list[VerifyResult]:
        """Builds an integrity report covering every sample and pack archive."""
        targets: list[tuple[str, str, str | None]] = []
        for key, entry in self.manifest.samples.items():
            urls = self.manifest.urls_for(key)
            targets.append((key, entry.content_hash, urls[0] if urls else None))
        for url, record in self.manifest.packs.items():
            targets.append((record.path, record.content_hash, url))

        results = []
        for key, expected_hash, url in targets:
            results.append(await self._verify_one(key, expected_hash, url))
        return results

    async def _verify_one(
        self, key: str, expected_hash: str, url: str | None
    ) -> VerifyResult:
        file_path = self.cache_dir / key
        try:
            actual = await asyncio.to_thread(FileIntegrityChecker.hash_file, file_path)
        except FileNotFoundError:
            return VerifyResult(path=key, url=url, ok=False, error="file missing")
        except OSError as e:
            return VerifyResult(path=key, url=url, ok=False, error=str(e))
        if actual != expected_hash:
            return VerifyResult(path=key, url=url, ok=False, error="hash mismatch")
        return VerifyResult(path=key, url=url, ok=True)

    # -- statistics ----------------------------------------------------------

    def get_stats(self) -> CacheStats:
        """Summarizes cache usage. Usage may exceed 100% until eviction runs."""
        total_bytes = self.manifest.total_bytes()
        return CacheStats(
            count=len(self.manifest.samples),
            total_bytes=total_bytes,
            total_mb=round(total_bytes / BYTES_PER_MB, 2),
            usage_percent=total_bytes / self.config.max_bytes * 100,
            max_mb=self.max_size_mb,
            cache_dir=self.cache_dir,
        )

    def get_state(self) -> dict[str, Any]:
        return {
            "cache_dir": self.cache_dir,
            "max_mb": self.max_size_mb,
            "auto_download": self.config.auto_download,
        }

    # -- eviction ------------------------------------------------------------

    async def _evict_if_needed(self) -> list[str]:
        total_bytes = self.manifest.total_bytes()
        if total_bytes <= self.config.max_bytes:
            return []
        log.warning(
            f"Cache size ({total_bytes / BYTES_PER_MB:.2f}MB) exceeds limit "
            f"({self.max_size_mb}MB)"
        )
        return await self._evict_lru(total_bytes)

    async def _evict_lru(self, total_bytes: int) -> list[str]:
        """
        Removes least-recently-accessed samples until the total is at or below
        the eviction target. Must be called with the lock held.
        """
        log.info("Cleaning up cache using LRU strategy...")
        snapshot = sorted(
            (
                (key, entry.size_bytes, entry.last_accessed)
                for key, entry in self.manifest.samples.items()
            ),
            key=lambda item: item[2],
        )
        target_bytes = self.config.max_bytes * EVICTION_TARGET_RATIO

        evicted = []
        for key, size_bytes, _ in snapshot:
            if total_bytes <= target_bytes:
                break
            await self._remove_sample_unlocked(key)
            total_bytes -= size_bytes
            evicted.append(key)

        log.info(f"Removed {len(evicted)} samples from cache")
        return evicted

    async def _save(self) -> None:
        await self._store.save(self.manifest)
