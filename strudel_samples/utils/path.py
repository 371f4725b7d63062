"""
Utilities for handling file paths and URL-derived names.
"""

import hashlib
from pathlib import Path, PurePosixPath
from urllib.parse import unquote, urlparse

from pathvalidate import sanitize_filename


def create_dir(directory_path: Path) -> None:
    """Creates a directory if it does not already exist."""
    directory_path.mkdir(parents=True, exist_ok=True)


def unlink_if_exists(path: Path) -> bool:
    """Deletes a file, returning False if it was already gone."""
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False


def url_digest(url: str, length: int = 16) -> str:
    """A short, stable hex digest of a URL."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:length]


def url_basename(url: str, fallback: str) -> str:
    """
    Extracts a filesystem-safe file name from the last segment of a URL path.

    Query strings and fragments are ignored; percent-escapes are decoded.
    """
    basename = PurePosixPath(unquote(urlparse(url).path)).name
    return sanitize_filename(basename) or fallback
