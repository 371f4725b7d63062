"""
Persists the cache manifest as a JSON file at the root of the cache directory.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from strudel_samples.models.manifest import (
    LEGACY_MANIFEST_VERSION,
    MANIFEST_VERSION,
    Manifest,
    utcnow,
)
from strudel_samples.utils.integrity import FileIntegrityChecker

log = logging.getLogger(__name__)

MANIFEST_FILENAME = "manifest.json"


class ManifestStore:
    """
    Loads, migrates and saves the manifest of a single cache directory.

    There is no cross-process locking: two processes writing the same cache
    directory can overwrite each other's manifest (last writer wins).
    """

    def __init__(self, cache_dir: Path):
        self.cache_dir = cache_dir
        self.manifest_path = cache_dir / MANIFEST_FILENAME

    async def load(self) -> Manifest:
        """Loads the manifest, creating or recovering it when necessary."""
        return await asyncio.to_thread(self._load_sync)

    async def save(self, manifest: Manifest) -> None:
        """Writes the full manifest to disk."""
        await asyncio.to_thread(self._save_sync, manifest)

    def _load_sync(self) -> Manifest:
        if not self.manifest_path.is_file():
            log.debug(f"No manifest at '{self.manifest_path}', creating a new one.")
            manifest = Manifest()
            self._save_sync(manifest)
            return manifest

        try:
            with open(self.manifest_path, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("manifest root is not an object")
            version = str(data.get("version", LEGACY_MANIFEST_VERSION))
            if version != MANIFEST_VERSION:
                manifest = self._migrate(data, version)
                self._save_sync(manifest)
                return manifest
            manifest = Manifest.model_validate(data)
            log.debug("Cache manifest loaded")
            return manifest
        except (ValidationError, ValueError) as e:
            log.warning(
                f"[yellow]Failed to load cache manifest, starting empty: {e}[/yellow]"
            )
            self._quarantine()
            return Manifest()

    def _save_sync(self, manifest: Manifest) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        tmp_path = self.manifest_path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(manifest.to_json_dict(), f, indent=2)
        os.replace(tmp_path, self.manifest_path)

    def _quarantine(self) -> None:
        """Keeps the unreadable manifest around for inspection instead of deleting it."""
        backup_path = self.manifest_path.with_suffix(".json.corrupt")
        try:
            os.replace(self.manifest_path, backup_path)
            log.info(
                f"[dim]The unreadable manifest has been renamed to "
                f"'{backup_path.name}'[/dim]"
            )
        except OSError as e:
            log.error(f"Could not move the unreadable manifest aside: {e}")

    def _migrate(self, data: dict[str, Any], version: str) -> Manifest:
        """
        Upgrades a manifest written by an older schema version.

        Version 1.0.0 entries carry only size and timestamps. Their hashes are
        recomputed from the files on disk and entries whose file is gone are
        dropped. Unknown versions are rejected so they go through the corrupt
        manifest path.
        """
        if version != LEGACY_MANIFEST_VERSION:
            raise ValueError(f"unknown manifest version '{version}'")

        log.info(
            f"[yellow]Migrating cache manifest from version {version} to "
            f"{MANIFEST_VERSION}...[/yellow]"
        )
        now = utcnow().isoformat()
        samples: dict[str, Any] = {}
        for rel_path, meta in _legacy_section(data, "samples").items():
            if meta is not None and not isinstance(meta, dict):
                raise ValueError(f"sample entry '{rel_path}' is not an object")
            file_path = self.cache_dir / rel_path
            if not file_path.is_file():
                log.debug(f"Dropping missing sample during migration: {rel_path}")
                continue
            meta = dict(meta or {})
            samples[rel_path] = {
                "size": meta.get("size", file_path.stat().st_size),
                "hash": meta.get("hash") or FileIntegrityChecker.hash_file(file_path),
                "cachedAt": meta.get("cachedAt", now),
                "lastAccessed": meta.get("lastAccessed", now),
            }

        packs = _legacy_section(data, "packs")
        known_paths = set(samples) | {
            record.get("path") for record in packs.values() if isinstance(record, dict)
        }
        migrated = {
            "version": MANIFEST_VERSION,
            "createdAt": data.get("createdAt", now),
            "samples": samples,
            "urls": {
                url: path
                for url, path in _legacy_section(data, "urls").items()
                if path in known_paths
            },
            "packs": packs,
        }
        manifest = Manifest.model_validate(migrated)
        log.info(f"[green]✓ Migrated {len(samples)} sample entries.[/green]")
        return manifest


def _legacy_section(data: dict[str, Any], key: str) -> dict[str, Any]:
    """Returns a top-level index of a legacy manifest, rejecting non-objects."""
    section = data.get(key) or {}
    if not isinstance(section, dict):
        raise ValueError(f"'{key}' is not an object")
    return section
