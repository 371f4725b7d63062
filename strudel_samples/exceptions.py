"""
Defines custom exceptions for the sample cache to allow for more specific error handling.

A cache miss is never an exception: lookups return None or False instead.
"""


class SampleCacheError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(SampleCacheError):
    """Raised for issues related to configuration loading or validation."""


class InvalidSamplePathError(SampleCacheError, ValueError):
    """Raised when a relative sample path resolves outside the cache directory."""


class ChecksumMismatchError(SampleCacheError):
    """Raised when downloaded or verified bytes disagree with the expected hash."""

    def __init__(self, expected: str, actual: str, path: str | None = None):
        self.expected = expected
        self.actual = actual
        self.path = path
        target = f" for '{path}'" if path else ""
        super().__init__(
            f"Checksum mismatch{target}: expected {expected}, got {actual}"
        )


class UnsupportedFormatError(SampleCacheError):
    """Raised when an archive has an extension that cannot be extracted."""


class ExtractionError(SampleCacheError):
    """Raised when a downloaded archive cannot be unpacked."""


class DownloadError(SampleCacheError):
    """
    Raised when the server answers with an unusable status or the transfer fails.
    """

    def __init__(self, message: str, url: str = "", status: int | None = None):
        self.url = url
        self.status = status
        super().__init__(message)
