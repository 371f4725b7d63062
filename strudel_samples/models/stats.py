"""
Dataclasses for cache statistics, verification reports and download progress.
"""

from dataclasses import dataclass
from pathlib import Path


@dataclass
class CacheStats:
    """A snapshot of cache usage against the configured size cap."""

    count: int
    total_bytes: int
    total_mb: float
    usage_percent: float
    max_mb: float
    cache_dir: Path


@dataclass
class VerifyResult:
    """Outcome of re-hashing a single cached file during an integrity audit."""

    path: str
    ok: bool
    url: str | None = None
    error: str | None = None


@dataclass
class DownloadProgress:
    """Progress of a streamed download whose total length is known."""

    downloaded_bytes: int
    total_bytes: int

    @property
    def percent_complete(self) -> float:
        if self.total_bytes <= 0:
            return 100.0
        return self.downloaded_bytes / self.total_bytes * 100


@dataclass
class StreamResult:
    """The file produced by a (possibly resumed) streamed download."""

    path: Path
    hash: str
    size: int
    resumed: bool = False
