"""Tests for sample and pack downloads against a local HTTP server."""

import hashlib

import pytest

from strudel_samples.exceptions import (
    ChecksumMismatchError,
    DownloadError,
    ExtractionError,
)
from strudel_samples.media.downloader import (
    DEFAULT_PACKS,
    SampleDownloader,
    parse_content_range,
)
from tests.helpers import PAYLOAD, SLOW_PREFIX, make_tar_gz, make_zip

PAYLOAD_HASH = hashlib.sha256(PAYLOAD).hexdigest()

PACK_FILES = {
    "kick/bd.wav": b"boom" * 50,
    "snare/sn.wav": b"tssh" * 40,
}


def leftover_temp_files(cache):
    return list(cache.cache_dir.glob(".download-*"))


class TestParseContentRange:
    """Test Content-Range header parsing."""

    def test_full_range(self):
        assert parse_content_range("bytes 0-99/100") == (0, 99, 100)

    def test_unsatisfied_range(self):
        assert parse_content_range("bytes */1234") == (None, None, 1234)

    def test_unknown_total(self):
        assert parse_content_range("bytes 5-9/*") == (5, 9, None)

    @pytest.mark.parametrize("value", ["items 0-1/2", "bytes 9-5/10", "bytes x-y/z"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_content_range(value)


class TestDownloadSample:
    """Test single-request sample downloads."""

    async def test_download_sample(self, downloader, cache, sample_server):
        """Test that the sample is cached and its URL recorded."""
        sample_server.files["bd.wav"] = PAYLOAD
        url = sample_server.url("/files/bd.wav")

        path = await downloader.download_sample(
            url, "drums/bd.wav", expected_hash=PAYLOAD_HASH.upper()
        )

        assert path.read_bytes() == PAYLOAD
        assert cache.manifest.samples["drums/bd.wav"].content_hash == PAYLOAD_HASH
        assert cache.manifest.urls[url] == "drums/bd.wav"
        assert await cache.get_by_url(url) == path
        assert leftover_temp_files(cache) == []

    async def test_checksum_mismatch_caches_nothing(
        self, downloader, cache, sample_server
    ):
        """Test that a bad payload never reaches the cache."""
        sample_server.files["bd.wav"] = PAYLOAD
        url = sample_server.url("/files/bd.wav")

        with pytest.raises(ChecksumMismatchError) as exc_info:
            await downloader.download_sample(url, "bd.wav", expected_hash="0" * 64)

        assert exc_info.value.actual == PAYLOAD_HASH
        assert "expected" in str(exc_info.value)
        assert not await cache.is_cached("bd.wav")
        assert cache.manifest.urls == {}
        assert leftover_temp_files(cache) == []

    async def test_http_error(self, downloader, cache, sample_server):
        """Test that a non-200 answer raises DownloadError with the status."""
        with pytest.raises(DownloadError) as exc_info:
            await downloader.download_sample(
                sample_server.url("/files/missing.wav"), "missing.wav"
            )

        assert exc_info.value.status == 404
        assert cache.manifest.samples == {}
        assert leftover_temp_files(cache) == []


class TestStreamToFile:
    """Test resumable streaming."""

    async def test_fresh_download(self, downloader, sample_server, tmp_path):
        sample_server.files["pack.bin"] = PAYLOAD
        destination = tmp_path / "out" / "pack.bin"

        result = await downloader.stream_to_file(
            sample_server.url("/files/pack.bin"), destination
        )

        assert destination.read_bytes() == PAYLOAD
        assert result.hash == PAYLOAD_HASH
        assert result.size == len(PAYLOAD)
        assert result.resumed is False
        assert sample_server.range_headers == [None]

    async def test_resume_from_every_offset(
        self, downloader, sample_server, tmp_path
    ):
        """Test that resuming after any prefix yields the hash of the whole file."""
        sample_server.files["pack.bin"] = PAYLOAD
        url = sample_server.url("/files/pack.bin")
        destination = tmp_path / "pack.bin"

        for offset in range(len(PAYLOAD)):
            destination.write_bytes(PAYLOAD[:offset])

            result = await downloader.stream_to_file(url, destination)

            assert result.hash == PAYLOAD_HASH, f"offset {offset}"
            assert destination.read_bytes() == PAYLOAD, f"offset {offset}"
            assert result.resumed is (offset > 0)

    async def test_resume_sends_range_header(
        self, downloader, sample_server, tmp_path
    ):
        sample_server.files["pack.bin"] = PAYLOAD
        destination = tmp_path / "pack.bin"
        destination.write_bytes(PAYLOAD[:40])

        await downloader.stream_to_file(
            sample_server.url("/files/pack.bin"), destination
        )

        assert sample_server.range_headers == ["bytes=40-"]

    async def test_complete_file_is_not_refetched(
        self, downloader, sample_server, tmp_path
    ):
        """Test that a 416 matching our size counts as an already finished download."""
        sample_server.files["pack.bin"] = PAYLOAD
        destination = tmp_path / "pack.bin"
        destination.write_bytes(PAYLOAD)

        result = await downloader.stream_to_file(
            sample_server.url("/files/pack.bin"), destination
        )

        assert result.hash == PAYLOAD_HASH
        assert result.size == len(PAYLOAD)
        assert destination.read_bytes() == PAYLOAD

    async def test_range_ignored_restarts_from_zero(
        self, downloader, sample_server, tmp_path
    ):
        """Test that a 200 answer to a Range request never gets appended."""
        sample_server.files["pack.bin"] = PAYLOAD
        destination = tmp_path / "pack.bin"
        destination.write_bytes(PAYLOAD[:100])

        result = await downloader.stream_to_file(
            sample_server.url("/norange/pack.bin"), destination
        )

        assert destination.read_bytes() == PAYLOAD
        assert result.hash == PAYLOAD_HASH
        assert result.resumed is False
        assert sample_server.range_headers == ["bytes=100-", None]

    async def test_resume_disabled(self, downloader, sample_server, tmp_path):
        sample_server.files["pack.bin"] = PAYLOAD
        destination = tmp_path / "pack.bin"
        destination.write_bytes(b"garbage")

        result = await downloader.stream_to_file(
            sample_server.url("/files/pack.bin"), destination, resume=False
        )

        assert destination.read_bytes() == PAYLOAD
        assert result.hash == PAYLOAD_HASH

    async def test_checksum_mismatch_deletes_file(
        self, downloader, sample_server, tmp_path
    ):
        sample_server.files["pack.bin"] = PAYLOAD
        destination = tmp_path / "pack.bin"

        with pytest.raises(ChecksumMismatchError):
            await downloader.stream_to_file(
                sample_server.url("/files/pack.bin"),
                destination,
                expected_hash="f" * 64,
            )

        assert not destination.exists()

    async def test_http_error_deletes_partial(
        self, downloader, sample_server, tmp_path
    ):
        destination = tmp_path / "pack.bin"
        destination.write_bytes(b"partial")

        with pytest.raises(DownloadError) as exc_info:
            await downloader.stream_to_file(
                sample_server.url("/files/missing.bin"), destination
            )

        assert exc_info.value.status == 404
        assert not destination.exists()

    async def test_connection_drop_deletes_partial(
        self, downloader, sample_server, tmp_path
    ):
        """Test that a body cut short by the server is never left on disk."""
        sample_server.files["pack.bin"] = PAYLOAD
        destination = tmp_path / "pack.bin"

        with pytest.raises(DownloadError):
            await downloader.stream_to_file(
                sample_server.url("/drop/pack.bin"), destination
            )

        assert not destination.exists()

    async def test_shifted_partial_response_restarts_from_zero(
        self, downloader, sample_server, tmp_path
    ):
        """Test that a 206 starting at the wrong offset is never appended."""
        sample_server.files["pack.bin"] = PAYLOAD
        destination = tmp_path / "pack.bin"
        destination.write_bytes(PAYLOAD[:40])

        result = await downloader.stream_to_file(
            sample_server.url("/shifted/pack.bin"), destination
        )

        assert destination.read_bytes() == PAYLOAD
        assert result.hash == PAYLOAD_HASH
        assert result.resumed is False
        assert sample_server.range_headers == ["bytes=40-", None]

    async def test_unsatisfiable_range_with_other_total_fails(
        self, downloader, sample_server, tmp_path
    ):
        """Test that a 416 reporting a different size discards the local file."""
        sample_server.files["pack.bin"] = PAYLOAD
        destination = tmp_path / "pack.bin"
        destination.write_bytes(PAYLOAD + b"stale")

        with pytest.raises(DownloadError) as exc_info:
            await downloader.stream_to_file(
                sample_server.url("/files/pack.bin"), destination
            )

        assert exc_info.value.status == 416
        assert not destination.exists()
        assert sample_server.range_headers == [f"bytes={len(PAYLOAD) + 5}-"]

    async def test_progress_reports_whole_file(
        self, downloader, sample_server, tmp_path
    ):
        """Test that progress totals include bytes kept from a partial download."""
        sample_server.files["pack.bin"] = PAYLOAD
        destination = tmp_path / "pack.bin"
        destination.write_bytes(PAYLOAD[:50])
        updates = []

        await downloader.stream_to_file(
            sample_server.url("/files/pack.bin"),
            destination,
            on_progress=updates.append,
        )

        assert updates
        assert all(update.total_bytes == len(PAYLOAD) for update in updates)
        assert updates[0].downloaded_bytes > 50
        assert updates[-1].downloaded_bytes == len(PAYLOAD)
        assert updates[-1].percent_complete == 100.0


class TestDownloadPack:
    """Test pack downloads, extraction and the pack registry."""

    async def test_zip_pack_is_extracted_and_indexed(
        self, downloader, cache, sample_server
    ):
        archive = make_zip(PACK_FILES)
        sample_server.files["drums.zip"] = archive
        url = sample_server.url("/files/drums.zip")

        path = await downloader.download_pack(
            url, expected_hash=hashlib.sha256(archive).hexdigest()
        )

        assert path == cache.cache_dir / "packs" / "drums.zip" / "drums.zip"
        assert path.read_bytes() == archive
        record = cache.get_pack(url)
        assert record.path == "packs/drums.zip/drums.zip"
        assert record.content_hash == hashlib.sha256(archive).hexdigest()
        assert record.extracted_to == "packs/drums.zip/drums"
        assert record.files == {
            name: hashlib.sha256(data).hexdigest()
            for name, data in PACK_FILES.items()
        }
        assert cache.manifest.urls[url] == record.path
        extracted = cache.cache_dir / record.extracted_to
        assert (extracted / "kick" / "bd.wav").read_bytes() == PACK_FILES["kick/bd.wav"]

    async def test_tar_gz_pack(self, downloader, cache, sample_server):
        sample_server.files["kit.tar.gz"] = make_tar_gz(PACK_FILES)
        url = sample_server.url("/files/kit.tar.gz")

        await downloader.download_pack(url)

        record = cache.get_pack(url)
        assert record.extracted_to == "packs/kit.tar.gz/kit"
        assert set(record.files) == set(PACK_FILES)

    async def test_no_extract(self, downloader, cache, sample_server):
        sample_server.files["drums.zip"] = make_zip(PACK_FILES)
        url = sample_server.url("/files/drums.zip")

        await downloader.download_pack(url, extract=False)

        record = cache.get_pack(url)
        assert record.extracted_to is None
        assert record.files is None
        assert not (cache.cache_dir / "packs" / "drums.zip" / "drums").exists()

    async def test_unsupported_extension_is_kept_unextracted(
        self, downloader, cache, sample_server
    ):
        sample_server.files["kit.bin"] = PAYLOAD
        url = sample_server.url("/files/kit.bin")

        path = await downloader.download_pack(url)

        assert path.read_bytes() == PAYLOAD
        assert cache.get_pack(url).extracted_to is None

    async def test_checksum_mismatch_records_nothing(
        self, downloader, cache, sample_server
    ):
        sample_server.files["drums.zip"] = make_zip(PACK_FILES)
        url = sample_server.url("/files/drums.zip")

        with pytest.raises(ChecksumMismatchError):
            await downloader.download_pack(url, expected_hash="0" * 64)

        assert cache.get_pack(url) is None
        assert url not in cache.manifest.urls
        assert not (cache.cache_dir / "packs" / "drums.zip" / "drums.zip").exists()

    async def test_corrupt_archive_keeps_verified_record(
        self, downloader, cache, sample_server
    ):
        """Test that a failed extraction raises and leaves no half-extracted tree."""
        sample_server.files["drums.zip"] = PAYLOAD
        url = sample_server.url("/files/drums.zip")

        with pytest.raises(ExtractionError):
            await downloader.download_pack(url)

        record = cache.get_pack(url)
        assert record.content_hash == PAYLOAD_HASH
        assert record.extracted_to is None
        pack_dir = cache.cache_dir / "packs" / "drums.zip"
        assert (pack_dir / "drums.zip").read_bytes() == PAYLOAD
        assert not (pack_dir / "drums").exists()

    async def test_timeout_keeps_partial_for_resume(
        self, downloader, cache, sample_server
    ):
        """Test that a timed-out pack download resumes on the next call."""
        archive = make_zip(PACK_FILES)
        assert len(archive) > SLOW_PREFIX
        sample_server.files["drums.zip"] = archive
        partial = cache.cache_dir / "packs" / "drums.zip" / "drums.zip"

        with pytest.raises(TimeoutError):
            await downloader.download_pack(
                sample_server.url("/slow/drums.zip"), timeout=0.5
            )

        assert partial.read_bytes() == archive[:SLOW_PREFIX]
        assert cache.manifest.packs == {}

        url = sample_server.url("/files/drums.zip")
        path = await downloader.download_pack(url)

        assert path.read_bytes() == archive
        assert sample_server.range_headers == [f"bytes={SLOW_PREFIX}-"]
        assert cache.get_pack(url).content_hash == hashlib.sha256(archive).hexdigest()


class TestPackRegistry:
    """Test the built-in pack list."""

    async def test_resolve_pack(self, cache):
        downloader = SampleDownloader(cache)
        dirt = next(pack for pack in DEFAULT_PACKS if pack["name"] == "dirt-samples")

        assert downloader.resolve_pack("dirt-samples") == dirt["url"]
        assert downloader.resolve_pack("https://x/y.zip") == "https://x/y.zip"

    def test_pack_name(self):
        assert SampleDownloader.pack_name("https://x/a/kit.tar.gz?dl=1") == "kit.tar.gz"
        assert SampleDownloader.pack_name("https://x/").startswith("pack-")

    async def test_installed_state(self, downloader, cache, sample_server):
        sample_server.files["drums.zip"] = make_zip(PACK_FILES)
        url = sample_server.url("/files/drums.zip")

        assert not downloader.is_pack_installed(url)
        await downloader.download_pack(url)
        assert downloader.is_pack_installed(url)

        statuses = {p["name"]: p["status"] for p in downloader.list_available_packs()}
        assert statuses == {pack["name"]: "available" for pack in DEFAULT_PACKS}

    async def test_state(self, cache):
        downloader = SampleDownloader(cache)
        assert downloader.get_state() == {
            "auto_download": False,
            "cache_dir": cache.cache_dir,
        }
