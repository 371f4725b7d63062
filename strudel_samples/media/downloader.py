"""
Downloads samples and sample packs over HTTP into the sample cache, with
resumable streaming and SHA-256 verification.
"""

import asyncio
import hashlib
import logging
import re
import shutil
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any

import aiofiles
import aiohttp

from strudel_samples.exceptions import (
    ChecksumMismatchError,
    DownloadError,
    ExtractionError,
)
from strudel_samples.media.extractor import (
    archive_stem,
    extract_archive,
    is_supported_archive,
)
from strudel_samples.models.manifest import PackRecord, utcnow
from strudel_samples.models.stats import DownloadProgress, StreamResult
from strudel_samples.storage.cache import PACKS_DIR, SampleCache
from strudel_samples.utils.integrity import HASH_CHUNK_SIZE, FileIntegrityChecker
from strudel_samples.utils.path import (
    create_dir,
    unlink_if_exists,
    url_basename,
    url_digest,
)

log = logging.getLogger(__name__)

ProgressCallback = Callable[[DownloadProgress], None]

_CONTENT_RANGE_REGEX = re.compile(
    r"^bytes\s+(?:(?P<start>\d+)-(?P<end>\d+)|\*)/(?P<total>\d+|\*)$"
)

# Known packs that can be downloaded by name
DEFAULT_PACKS = [
    {
        "name": "strudel-default",
        "description": "Default Strudel sample pack",
        "url": "https://github.com/tidalcycles/Dirt-Samples/archive/refs/heads/master.zip",
        "size": "350MB",
        "samples": 1200,
    },
    {
        "name": "dirt-samples",
        "description": "Classic Dirt sample library",
        "url": "https://github.com/tidalcycles/Dirt-Samples/archive/refs/heads/master.tar.gz",
        "size": "350MB",
        "samples": 1200,
    },
]


def parse_content_range(
    header_value: str,
) -> tuple[int | None, int | None, int | None]:
    """
    Parses a `Content-Range` header value into (start, end, total).

    Unknown parts are returned as None, e.g. 'bytes */1234' -> (None, None, 1234).

    Raises:
        ValueError: If the header is malformed.
    """
    match = _CONTENT_RANGE_REGEX.match(header_value.strip())
    if not match:
        raise ValueError(f"invalid Content-Range format: {header_value!r}")
    start = int(match.group("start")) if match.group("start") else None
    end = int(match.group("end")) if match.group("end") else None
    total = None if match.group("total") == "*" else int(match.group("total"))
    if start is not None and end is not None and end < start:
        raise ValueError(f"invalid Content-Range bounds: {header_value!r}")
    return start, end, total


class SampleDownloader:
    """
    Fetches remote samples and packs into a `SampleCache`.

    There is no retry logic: a failed download raises, and any retry policy
    belongs to the caller. Downloads are plain coroutines, so cancelling the
    task (or passing `timeout`) stops them. A cancelled pack download leaves
    its partial file in place so the next call resumes from it.
    """

    CHUNK_SIZE = 131072  # 128 KB

    def __init__(
        self,
        cache: SampleCache,
        session: aiohttp.ClientSession | None = None,
        max_connections: int = 8,
    ):
        """
        Args:
            cache: The initialized cache downloads are stored in.
            session: An optional aiohttp session to reuse. When omitted one is
                created on first use and closed by `close()`.
            max_connections: Connection limit for the internally created session.
        """
        self.cache = cache
        self.config = cache.config
        self.auto_download = cache.config.auto_download
        self.max_connections = max_connections
        self._session = session
        self._owns_session = session is None
        self._session_lock = asyncio.Lock()

    async def __aenter__(self) -> "SampleDownloader":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        """Gets or creates the aiohttp session used for all downloads."""
        async with self._session_lock:
            if self._session and not self._session.closed:
                return self._session

            connector = aiohttp.TCPConnector(
                limit=self.max_connections * 2,
                limit_per_host=self.max_connections,
                ttl_dns_cache=600,
                keepalive_timeout=30,
            )
            timeout = aiohttp.ClientTimeout(
                total=None,
                sock_connect=15,
                sock_read=self.config.request_timeout or 90,
            )
            # Byte offsets for Range requests must refer to the stored bytes,
            # so transfer encodings are refused.
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=timeout,
                headers={"Accept-Encoding": "identity"},
            )
            self._owns_session = True
            log.debug(f"Created download session with limit={self.max_connections}")
        return self._session

    async def close(self) -> None:
        """Closes the session if this downloader created it."""
        async with self._session_lock:
            if self._owns_session and self._session and not self._session.closed:
                await self._session.close()
                self._session = None
                log.debug("Downloader session closed.")

    # -- single samples ------------------------------------------------------

    async def download_sample(
        self,
        url: str,
        destination: str,
        expected_hash: str | None = None,
        timeout: float | None = None,
    ) -> Path:
        """
        Downloads a single sample in one request and adds it to the cache.

        Args:
            url: The sample URL.
            destination: Path relative to the cache root.
            expected_hash: Optional SHA-256 hex digest the payload must match.
            timeout: Optional limit in seconds for the whole transfer.

        Returns:
            The absolute path of the cached sample.

        Raises:
            DownloadError: If the server does not answer 200 or the transfer fails.
            ChecksumMismatchError: If the payload does not match `expected_hash`.
        """
        log.debug(f"Downloading sample: {url}")
        self.cache.resolve_path(destination)
        temp_path = self.cache.cache_dir / f".download-{uuid.uuid4().hex}"

        try:
            async with asyncio.timeout(timeout):
                digest = await self._fetch_to_file(url, temp_path)

            if expected_hash and digest != expected_hash.lower():
                raise ChecksumMismatchError(expected_hash, digest, destination)

            async with aiofiles.open(temp_path, "rb") as f:
                data = await f.read()
            cached_path = await self.cache.add_sample(destination, data)
            await self.cache.record_url(url, destination)
            log.info(f"Sample downloaded: {destination}")
            return cached_path
        except (DownloadError, ChecksumMismatchError, OSError) as e:
            log.error(f"Failed to download sample: {e}")
            raise
        finally:
            await asyncio.to_thread(unlink_if_exists, temp_path)

    async def _fetch_to_file(self, url: str, path: Path) -> str:
        """Streams a full (non-resumed) response body to a file, returning its hash."""
        hasher = hashlib.sha256()
        session = await self._get_session()
        try:
            async with session.get(url, allow_redirects=True) as response:
                if response.status != 200:
                    raise DownloadError(
                        f"HTTP {response.status}: {response.reason} ({url})",
                        url=url,
                        status=response.status,
                    )
                async with aiofiles.open(path, "wb") as f:
                    async for chunk in response.content.iter_chunked(self.CHUNK_SIZE):
                        await f.write(chunk)
                        hasher.update(chunk)
        except aiohttp.ClientError as e:
            raise DownloadError(f"Download failed for {url}: {e}", url=url) from e
        return hasher.hexdigest()

    # -- packs ---------------------------------------------------------------

    @staticmethod
    def pack_name(url: str) -> str:
        """The directory and file name a pack URL is stored under."""
        return url_basename(url, fallback=f"pack-{url_digest(url, 8)}")

    def resolve_pack(self, target: str) -> str:
        """Maps a registry pack name to its URL. URLs are returned unchanged."""
        for pack in DEFAULT_PACKS:
            if pack["name"] == target:
                return pack["url"]
        return target

    async def download_pack(
        self,
        url: str,
        expected_hash: str | None = None,
        extract: bool = True,
        on_progress: ProgressCallback | None = None,
        timeout: float | None = None,
    ) -> Path:
        """
        Downloads a sample pack with resume support and optionally extracts it.

        The archive is stored at `packs/<name>/<name>` and extracted into
        `packs/<name>/<stem>/`, where <name> is the URL basename.

        Args:
            url: The pack URL, or the name of a pack from `DEFAULT_PACKS`.
            expected_hash: Optional SHA-256 hex digest of the whole archive.
            extract: Extract the archive if it has a supported extension.
            on_progress: Called with progress updates when the size is known.
            timeout: Optional limit in seconds. A timed-out download can be
                resumed by calling this method again.

        Returns:
            The absolute path of the downloaded archive.

        Raises:
            ExtractionError: If the archive cannot be unpacked. The verified
                archive stays recorded without `extractedTo`.
        """
        url = self.resolve_pack(url)
        log.info(f"Downloading sample pack: {url}")
        name = self.pack_name(url)
        rel_path = f"{PACKS_DIR}/{name}/{name}"
        destination = self.cache.resolve_path(rel_path)

        async with asyncio.timeout(timeout):
            result = await self.stream_to_file(
                url, destination, expected_hash=expected_hash, on_progress=on_progress
            )

        record = PackRecord(
            path=rel_path, content_hash=result.hash, downloaded_at=utcnow()
        )
        await self.cache.record_pack(url, record)

        if extract and is_supported_archive(destination):
            extract_dir = destination.parent / archive_stem(destination)
            log.info(f"Extracting '{name}' to [dim]{extract_dir}[/dim]")
            try:
                await asyncio.to_thread(extract_archive, destination, extract_dir)
            except ExtractionError:
                await asyncio.to_thread(shutil.rmtree, extract_dir, ignore_errors=True)
                log.error(f"Extraction of '{name}' failed, the archive is kept.")
                raise
            files = await asyncio.to_thread(FileIntegrityChecker.hash_tree, extract_dir)
            record = record.model_copy(
                update={
                    "extracted_to": self.cache.relative_key(extract_dir),
                    "files": files,
                }
            )
            await self.cache.record_pack(url, record)
            log.info(f"Extracted {len(files)} files from '{name}'")
        elif extract:
            log.debug(f"'{name}' is not a supported archive, skipping extraction.")

        log.info(f"[green]✓ Pack downloaded: {name}[/green]")
        return destination

    async def stream_to_file(
        self,
        url: str,
        destination: Path,
        expected_hash: str | None = None,
        resume: bool = True,
        on_progress: ProgressCallback | None = None,
    ) -> StreamResult:
        """
        Streams a URL to a file, resuming from whatever bytes already exist.

        The returned hash always covers the whole file, including bytes kept
        from an earlier partial download. If the server ignores the Range
        request the partial file is discarded and the transfer restarts from
        zero, so a full body is never appended to a partial one.

        Raises:
            DownloadError: On an unusable status code or a transport failure.
                The partial file is deleted.
            ChecksumMismatchError: If the final hash differs from
                `expected_hash`. The file is deleted.
            OSError: On local I/O failures. The partial file is deleted.
        """
        start = 0
        if resume and await asyncio.to_thread(destination.is_file):
            start = (await asyncio.to_thread(destination.stat)).st_size

        hasher = hashlib.sha256()
        if start > 0:
            await self._seed_hash(hasher, destination)
            log.debug(f"Resuming download of '{destination.name}' at byte {start}")

        headers = {"Range": f"bytes={start}-"} if start > 0 else {}
        await asyncio.to_thread(create_dir, destination.parent)
        session = await self._get_session()

        restart = False
        written = 0
        try:
            async with session.get(
                url, headers=headers, allow_redirects=True
            ) as response:
                if start > 0 and self._is_already_complete(response, start):
                    log.debug(f"'{destination.name}' is already fully downloaded.")
                elif response.status not in (200, 206):
                    raise DownloadError(
                        f"HTTP {response.status}: {response.reason} ({url})",
                        url=url,
                        status=response.status,
                    )
                elif start > 0 and not self._honors_range(response, start):
                    restart = True
                else:
                    written = await self._write_body(
                        response, destination, hasher, start, on_progress
                    )
        except DownloadError:
            await self._discard(destination)
            raise
        except aiohttp.ClientError as e:
            await self._discard(destination)
            raise DownloadError(f"Download failed for {url}: {e}", url=url) from e
        except OSError:
            await self._discard(destination)
            raise

        if restart:
            log.warning(
                f"[yellow]Server ignored the resume request for '{destination.name}',"
                " restarting from zero.[/yellow]"
            )
            await self._discard(destination)
            return await self.stream_to_file(
                url,
                destination,
                expected_hash=expected_hash,
                resume=False,
                on_progress=on_progress,
            )

        digest = hasher.hexdigest()
        if expected_hash and digest != expected_hash.lower():
            await self._discard(destination)
            raise ChecksumMismatchError(expected_hash, digest, str(destination))

        return StreamResult(
            path=destination, hash=digest, size=start + written, resumed=start > 0
        )

    @staticmethod
    def _honors_range(response: aiohttp.ClientResponse, start: int) -> bool:
        """Checks that a response continues exactly at the requested offset."""
        if response.status != 206:
            return False
        header = response.headers.get("Content-Range")
        if not header:
            log.debug("Partial response without Content-Range, cannot trust it.")
            return False
        try:
            range_start, _, _ = parse_content_range(header)
        except ValueError as e:
            log.debug(f"Ignoring partial response: {e}")
            return False
        return range_start == start

    @staticmethod
    def _is_already_complete(response: aiohttp.ClientResponse, start: int) -> bool:
        """A 416 reporting a total equal to our size means nothing is left to fetch."""
        if response.status != 416:
            return False
        header = response.headers.get("Content-Range")
        if not header:
            return False
        try:
            _, _, total = parse_content_range(header)
        except ValueError:
            return False
        return total == start

    async def _seed_hash(self, hasher: Any, path: Path) -> None:
        async with aiofiles.open(path, "rb") as f:
            while chunk := await f.read(HASH_CHUNK_SIZE):
                hasher.update(chunk)

    async def _write_body(
        self,
        response: aiohttp.ClientResponse,
        destination: Path,
        hasher: Any,
        start: int,
        on_progress: ProgressCallback | None,
    ) -> int:
        """Writes the response body, returning the number of new bytes."""
        content_length = response.content_length
        total = content_length + start if content_length is not None else None
        downloaded = start
        mode = "ab" if start > 0 else "wb"

        async with aiofiles.open(destination, mode) as f:
            async for chunk in response.content.iter_chunked(self.CHUNK_SIZE):
                await f.write(chunk)
                hasher.update(chunk)
                downloaded += len(chunk)
                if on_progress and total:
                    on_progress(DownloadProgress(downloaded, total))
        return downloaded - start

    async def _discard(self, path: Path) -> None:
        if await asyncio.to_thread(unlink_if_exists, path):
            log.debug(f"Removed partial download '{path.name}'")

    # -- registry ------------------------------------------------------------

    def list_available_packs(self) -> list[dict[str, Any]]:
        """Lists the built-in pack registry with each pack's installed state."""
        return [
            {
                **pack,
                "status": (
                    "installed" if self.is_pack_installed(pack["name"]) else "available"
                ),
            }
            for pack in DEFAULT_PACKS
        ]

    def is_pack_installed(self, target: str) -> bool:
        """Checks whether a pack (by registry name or URL) has been downloaded."""
        return self.resolve_pack(target) in self.cache.manifest.packs

    def get_state(self) -> dict[str, Any]:
        return {
            "auto_download": self.auto_download,
            "cache_dir": self.cache.cache_dir,
        }
