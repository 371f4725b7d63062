"""
Data Models Layer.

This package contains the Pydantic models and dataclasses that define the core
data structures: the cache manifest, configuration, and statistics.
"""

from .config import SamplesConfig
from .manifest import Manifest, ManifestEntry, PackRecord
from .stats import CacheStats, DownloadProgress, StreamResult, VerifyResult

__all__ = [
    "CacheStats",
    "DownloadProgress",
    "Manifest",
    "ManifestEntry",
    "PackRecord",
    "SamplesConfig",
    "StreamResult",
    "VerifyResult",
]
