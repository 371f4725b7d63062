"""
Pydantic model for the sample cache configuration.
Provides validation for all settings read from the INI file.
"""

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator

DEFAULT_CACHE_SIZE_MB = 1000


def default_cache_dir() -> Path:
    """Resolves the XDG cache location used when no override is configured."""
    base_dir = Path(os.getenv("XDG_CACHE_HOME", "~/.cache"))
    return base_dir.expanduser() / "strudel-cli" / "samples"


class SamplesConfig(BaseModel):
    """A validated configuration model for the sample cache and downloader."""

    cache_size_mb: float = DEFAULT_CACHE_SIZE_MB
    cache_dir: str | None = None
    auto_download: bool = False
    request_timeout: float | None = None

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    @field_validator("cache_size_mb")
    @classmethod
    def validate_cache_size(cls, v: float) -> float:
        """Ensures the cache cap is a positive size."""
        if v <= 0:
            raise ValueError("Cache size must be greater than 0 MB.")
        return v

    @field_validator("cache_dir")
    @classmethod
    def validate_cache_dir(cls, v: str | None) -> str | None:
        return v or None

    @field_validator("request_timeout")
    @classmethod
    def validate_timeout(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError("Request timeout must be a positive number of seconds.")
        return v

    @property
    def resolved_cache_dir(self) -> Path:
        """The cache root, honoring the configured override."""
        if self.cache_dir:
            return Path(self.cache_dir).expanduser()
        return default_cache_dir()

    @property
    def max_bytes(self) -> float:
        return self.cache_size_mb * 1024 * 1024

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        return set(cls.model_fields)
