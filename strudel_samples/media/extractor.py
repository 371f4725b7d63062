"""
Extracts downloaded sample pack archives into the cache.
"""

import logging
import tarfile
import zipfile
from pathlib import Path

from strudel_samples.exceptions import ExtractionError, UnsupportedFormatError

log = logging.getLogger(__name__)

# Longest suffixes first so ".tar.gz" wins over a bare ".gz"
_ARCHIVE_SUFFIXES = {
    ".tar.gz": "tar",
    ".tgz": "tar",
    ".zip": "zip",
}


def _match_suffix(name: str) -> str | None:
    lowered = name.lower()
    for suffix in _ARCHIVE_SUFFIXES:
        if lowered.endswith(suffix):
            return suffix
    return None


def is_supported_archive(path: str | Path) -> bool:
    """Returns True if the file name carries an extension we know how to extract."""
    return _match_suffix(Path(path).name) is not None


def archive_stem(path: str | Path) -> str:
    """Strips the archive extension, e.g. 'drums.tar.gz' -> 'drums'."""
    name = Path(path).name
    suffix = _match_suffix(name)
    if suffix is None:
        return Path(name).stem
    return name[: -len(suffix)] or name


def extract_archive(archive_path: Path, target_dir: Path) -> None:
    """
    Extracts an archive into a target directory, overwriting existing files.

    Args:
        archive_path: The .zip, .tar.gz or .tgz file to extract.
        target_dir: The directory to extract into. It is created if missing.

    Raises:
        UnsupportedFormatError: If the extension is not supported. Nothing is
            written in that case.
        ExtractionError: If the archive is malformed or a member would escape
            the target directory. Files extracted before the failure are kept.
    """
    suffix = _match_suffix(archive_path.name)
    if suffix is None:
        raise UnsupportedFormatError(
            f"Unsupported archive format: '{archive_path.name}'. "
            f"Supported: {', '.join(sorted(_ARCHIVE_SUFFIXES))}"
        )

    target_dir.mkdir(parents=True, exist_ok=True)
    kind = _ARCHIVE_SUFFIXES[suffix]
    log.debug(f"Extracting {kind} archive '{archive_path.name}' to '{target_dir}'")

    try:
        if kind == "zip":
            with zipfile.ZipFile(archive_path) as zf:
                zf.extractall(target_dir)
        else:
            with tarfile.open(archive_path, "r:gz") as tf:
                tf.extractall(target_dir, filter="data")
    except (zipfile.BadZipFile, tarfile.TarError) as e:
        raise ExtractionError(f"Cannot extract '{archive_path.name}': {e}") from e
