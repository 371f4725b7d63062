"""
Pydantic models describing the on-disk cache manifest.

The JSON representation uses the camelCase keys of the version 1.0.0 manifest
format; Python code works with the snake_case field names.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator

MANIFEST_VERSION = "2"
LEGACY_MANIFEST_VERSION = "1.0.0"


def utcnow() -> datetime:
    """Returns the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class _ManifestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)


class ManifestEntry(_ManifestModel):
    """A single cached sample, keyed by its path relative to the cache root."""

    size_bytes: int = Field(alias="size", ge=0)
    content_hash: str = Field(alias="hash")
    cached_at: datetime = Field(alias="cachedAt")
    last_accessed: datetime = Field(alias="lastAccessed")

    @field_validator("content_hash")
    @classmethod
    def normalize_hash(cls, v: str) -> str:
        return v.lower()


class PackRecord(_ManifestModel):
    """A downloaded sample pack archive, keyed by its source URL."""

    path: str
    content_hash: str = Field(alias="hash")
    downloaded_at: datetime = Field(alias="downloadedAt")
    extracted_to: str | None = Field(default=None, alias="extractedTo")
    files: dict[str, str] | None = None


class Manifest(_ManifestModel):
    """
    Aggregate root of the cache state.

    Every value in `urls` points either at a key of `samples` or at the `path`
    of a record in `packs`. The drop_* helpers keep that invariant by removing
    the dependent URL entries in the same in-memory update.
    """

    version: str = MANIFEST_VERSION
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    samples: dict[str, ManifestEntry] = Field(default_factory=dict)
    urls: dict[str, str] = Field(default_factory=dict)
    packs: dict[str, PackRecord] = Field(default_factory=dict)

    def to_json_dict(self) -> dict:
        """Serializes the manifest into its on-disk JSON shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def total_bytes(self) -> int:
        return sum(entry.size_bytes for entry in self.samples.values())

    def urls_for(self, path: str) -> list[str]:
        """Returns every source URL that maps to the given relative path."""
        return [url for url, target in self.urls.items() if target == path]

    def drop_sample(self, path: str) -> ManifestEntry | None:
        """Removes a sample entry together with the URL entries that reference it."""
        entry = self.samples.pop(path, None)
        if entry is not None:
            self._drop_urls_pointing_at(path)
        return entry

    def drop_pack(self, url: str) -> PackRecord | None:
        """Removes a pack record together with the URL entries that reference it."""
        record = self.packs.pop(url, None)
        if record is not None:
            self._drop_urls_pointing_at(record.path)
        return record

    def _drop_urls_pointing_at(self, path: str) -> None:
        for url in self.urls_for(path):
            del self.urls[url]
