"""
Provides methods for hashing cached files and checking their integrity.
"""

import hashlib
import logging
from pathlib import Path

log = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 1048576  # 1 MB


class FileIntegrityChecker:
    """A collection of static methods for SHA-256 based integrity checks."""

    @staticmethod
    def hash_bytes(data: bytes) -> str:
        """Returns the lowercase hex SHA-256 digest of an in-memory payload."""
        return hashlib.sha256(data).hexdigest()

    @staticmethod
    def hash_file(filepath: Path) -> str:
        """
        Computes the SHA-256 digest of a file without loading it into memory.

        Args:
            filepath: Path to the file.

        Returns:
            The lowercase hex digest.

        Raises:
            OSError: If the file cannot be read.
        """
        hasher = hashlib.sha256()
        with open(filepath, "rb") as f:
            for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
                hasher.update(chunk)
        return hasher.hexdigest()

    @staticmethod
    def check_file(filepath: Path, expected_hash: str) -> bool:
        """
        Checks that a file exists and matches the expected SHA-256 digest.

        Returns:
            True if the digest matches, False if it differs or the file is missing.
        """
        try:
            actual = FileIntegrityChecker.hash_file(filepath)
        except FileNotFoundError:
            log.debug(f"Integrity check skipped, file is missing: '{filepath}'")
            return False
        if actual != expected_hash.lower():
            log.warning(
                f"Integrity check failed for '{filepath}': expected {expected_hash}, "
                f"got {actual}."
            )
            return False
        return True

    @staticmethod
    def hash_tree(root: Path) -> dict[str, str]:
        """Hashes every regular file below a directory, keyed by POSIX relative path."""
        return {
            path.relative_to(root).as_posix(): FileIntegrityChecker.hash_file(path)
            for path in sorted(root.rglob("*"))
            if path.is_file()
        }
