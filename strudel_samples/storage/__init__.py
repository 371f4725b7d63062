"""
Storage Layer.

This package handles all data persistence: the configuration file, the cache
manifest, and the cached sample files themselves.
"""

from .cache import ClearScope, SampleCache
from .config_manager import ConfigManager
from .manifest_store import ManifestStore

__all__ = ["ClearScope", "ConfigManager", "ManifestStore", "SampleCache"]
