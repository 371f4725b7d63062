"""Shared fixtures: a temporary cache and a local HTTP server for downloads."""

import asyncio
import itertools
from datetime import datetime, timedelta, timezone

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from strudel_samples.media.downloader import SampleDownloader
from strudel_samples.models.config import SamplesConfig
from strudel_samples.storage.cache import SampleCache
from tests.helpers import SLOW_PREFIX


class SampleServer:
    """
    A local HTTP server publishing in-memory files.

    /files/<name>   honors `Range: bytes=N-` with 206/416 responses
    /norange/<name> always answers 200 with the full body
    /slow/<name>    sends the first SLOW_PREFIX bytes, then stalls
    /drop/<name>    sends the first SLOW_PREFIX bytes, then drops the connection
    /shifted/<name> answers ranged requests with a 206 that starts at byte 0
    """

    def __init__(self):
        self.files: dict[str, bytes] = {}
        self.range_headers: list[str | None] = []
        self.release = asyncio.Event()
        app = web.Application()
        app.router.add_get("/files/{name}", self.serve)
        app.router.add_get("/norange/{name}", self.serve_full)
        app.router.add_get("/slow/{name}", self.serve_slow)
        app.router.add_get("/drop/{name}", self.serve_dropped)
        app.router.add_get("/shifted/{name}", self.serve_shifted)
        self.server = TestServer(app)

    def url(self, path: str) -> str:
        return str(self.server.make_url(path))

    def _lookup(self, request: web.Request) -> bytes:
        name = request.match_info["name"]
        if name not in self.files:
            raise web.HTTPNotFound()
        return self.files[name]

    async def serve(self, request: web.Request) -> web.Response:
        data = self._lookup(request)
        self.range_headers.append(request.headers.get("Range"))
        if "Range" not in request.headers:
            return web.Response(body=data, content_type="application/octet-stream")

        start = request.http_range.start or 0
        if start >= len(data):
            return web.Response(
                status=416, headers={"Content-Range": f"bytes */{len(data)}"}
            )
        return web.Response(
            status=206,
            body=data[start:],
            content_type="application/octet-stream",
            headers={"Content-Range": f"bytes {start}-{len(data) - 1}/{len(data)}"},
        )

    async def serve_full(self, request: web.Request) -> web.Response:
        data = self._lookup(request)
        self.range_headers.append(request.headers.get("Range"))
        return web.Response(body=data, content_type="application/octet-stream")

    async def serve_slow(self, request: web.Request) -> web.StreamResponse:
        data = self._lookup(request)
        response = web.StreamResponse()
        response.content_type = "application/octet-stream"
        response.content_length = len(data)
        await response.prepare(request)
        await response.write(data[:SLOW_PREFIX])
        await self.release.wait()
        return response

    async def serve_dropped(self, request: web.Request) -> web.StreamResponse:
        data = self._lookup(request)
        response = web.StreamResponse()
        response.content_type = "application/octet-stream"
        response.content_length = len(data)
        await response.prepare(request)
        await response.write(data[:SLOW_PREFIX])
        request.transport.close()
        return response

    async def serve_shifted(self, request: web.Request) -> web.Response:
        data = self._lookup(request)
        self.range_headers.append(request.headers.get("Range"))
        if "Range" not in request.headers:
            return web.Response(body=data, content_type="application/octet-stream")
        return web.Response(
            status=206,
            body=data,
            content_type="application/octet-stream",
            headers={"Content-Range": f"bytes 0-{len(data) - 1}/{len(data)}"},
        )

    async def start(self) -> None:
        await self.server.start_server()

    async def close(self) -> None:
        self.release.set()
        await self.server.close()


@pytest.fixture
def samples_config(tmp_path):
    """A 1 MB cache inside the test's temporary directory."""
    return SamplesConfig(cache_dir=str(tmp_path / "cache"), cache_size_mb=1)


@pytest.fixture
async def cache(samples_config):
    """An initialized sample cache."""
    sample_cache = SampleCache(samples_config)
    await sample_cache.initialize()
    return sample_cache


@pytest.fixture
async def sample_server():
    """A running local HTTP server."""
    server = SampleServer()
    await server.start()
    yield server
    await server.close()


@pytest.fixture
async def downloader(cache):
    """A downloader bound to the test cache, with its session closed afterwards."""
    async with SampleDownloader(cache) as sample_downloader:
        yield sample_downloader


@pytest.fixture
def fake_clock(monkeypatch):
    """Makes every cache timestamp one second later than the previous one."""
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    ticks = itertools.count()
    monkeypatch.setattr(
        "strudel_samples.storage.cache.utcnow",
        lambda: base + timedelta(seconds=next(ticks)),
    )
