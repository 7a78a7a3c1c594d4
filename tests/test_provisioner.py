"""
Tests for platform detection and binary provisioning.
"""

import io
import os
import time
import zipfile

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from local_backend.binary import BinaryProvisioner, select_asset
from local_backend.binary import provisioner as provisioner_module
from local_backend.config import BinaryConfig
from local_backend.errors import (
    AssetNotFound,
    DownloadFailed,
    ExtractionFailed,
    UnsupportedPlatform,
)
from local_backend.utils import OSFamily, detect_platform

LINUX = detect_platform("Linux", "x86_64")
NEWEST = "precompiled-2025-02-01-aaa"
OLDER = "precompiled-2025-01-01-bbb"


def make_zip(member: str = "convex-local-backend", payload: bytes = b"#!/bin/sh\necho ok\n") -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr(member, payload)
    return buf.getvalue()


class ReleaseServer:
    def __init__(self):
        self.index_status = 200
        self.archive = make_zip()
        self.index_hits = 0
        self.downloads = 0
        self.auth_header = None

    async def releases(self, request: web.Request) -> web.Response:
        self.index_hits += 1
        self.auth_header = request.headers.get("Authorization")
        if self.index_status != 200:
            return web.Response(status=self.index_status)

        def asset(name):
            url = str(request.url.with_path(f"/download/{name}").with_query(None))
            return {"name": name, "browser_download_url": url}

        return web.json_response([
            {"tag_name": NEWEST, "assets": [asset("convex-local-backend-aarch64-apple-darwin.zip")]},
            {"tag_name": OLDER, "assets": [asset("convex-local-backend-x86_64-unknown-linux-gnu.zip")]},
        ])

    async def download(self, request: web.Request) -> web.Response:
        self.downloads += 1
        return web.Response(body=self.archive)


@pytest_asyncio.fixture
async def release_server():
    releases = ReleaseServer()
    app = web.Application()
    app.router.add_get("/releases", releases.releases)
    app.router.add_get("/download/{name}", releases.download)
    server = TestServer(app, host="127.0.0.1")
    await server.start_server()
    releases.url = str(server.make_url("/releases"))
    yield releases
    await server.close()


def make_provisioner(tmp_path, url="http://127.0.0.1:9/releases", **kwargs) -> BinaryProvisioner:
    config = BinaryConfig(
        cache_dir=tmp_path / "cache",
        release_index_url=url,
        index_attempts=1,
        **kwargs,
    )
    return BinaryProvisioner(config, platform_info=LINUX)


class TestPlatform:
    @pytest.mark.parametrize(
        "system,machine,target",
        [
            ("Linux", "x86_64", "convex-local-backend-x86_64-unknown-linux-gnu"),
            ("Linux", "aarch64", "convex-local-backend-aarch64-unknown-linux-gnu"),
            ("Darwin", "arm64", "convex-local-backend-aarch64-apple-darwin"),
            ("Windows", "AMD64", "convex-local-backend-x86_64-pc-windows-msvc"),
        ],
    )
    def test_targets(self, system, machine, target):
        assert detect_platform(system, machine).target == target

    def test_windows_suffix(self):
        info = detect_platform("Windows", "AMD64")
        assert info.os_family is OSFamily.WINDOWS
        assert info.exe_suffix == ".exe"
        assert LINUX.exe_suffix == ""

    def test_unsupported(self):
        with pytest.raises(UnsupportedPlatform):
            detect_platform("FreeBSD", "amd64")


class TestSelectAsset:
    RELEASES = [
        {"tag_name": "v2", "assets": [{"name": "other.zip", "browser_download_url": "u0"}]},
        {"tag_name": "v1", "assets": [{"name": "t-x.zip", "browser_download_url": "u1"}]},
        {"tag_name": "v0", "assets": [{"name": "t-x.zip", "browser_download_url": "u2"}]},
    ]

    def test_first_matching_release(self):
        asset = select_asset(self.RELEASES, "t-x")
        assert (asset.version, asset.url) == ("v1", "u1")

    def test_pinned_version(self):
        assert select_asset(self.RELEASES, "t-x", version="v0").url == "u2"

    def test_not_found(self):
        with pytest.raises(AssetNotFound):
            select_asset(self.RELEASES, "missing")
        with pytest.raises(AssetNotFound):
            select_asset(self.RELEASES, "t-x", version="v2")


class TestCache:
    @pytest.mark.asyncio
    async def test_fresh_cache_needs_no_network(self, tmp_path, monkeypatch):
        provisioner = make_provisioner(tmp_path)
        cached = provisioner.cache_dir / f"convex-local-backend-{OLDER}"
        cached.parent.mkdir(parents=True)
        cached.write_text("binary")
        hour_ago = time.time() - 3600
        os.utime(cached, (hour_ago, hour_ago))

        def no_network(*args, **kwargs):
            raise AssertionError("network access attempted")

        monkeypatch.setattr(provisioner_module.aiohttp, "ClientSession", no_network)

        assert await provisioner.resolve_binary() == cached

    def test_newest_binary_wins_and_archives_ignored(self, tmp_path):
        provisioner = make_provisioner(tmp_path)
        provisioner.cache_dir.mkdir(parents=True)
        old = provisioner.cache_dir / f"convex-local-backend-{OLDER}"
        new = provisioner.cache_dir / f"convex-local-backend-{NEWEST}"
        archive = provisioner.cache_dir / "convex-local-backend-x86_64-unknown-linux-gnu.zip"
        for i, path in enumerate([old, new, archive]):
            path.write_text("x")
            stamp = time.time() - 300 + i * 100
            os.utime(path, (stamp, stamp))

        assert provisioner.find_cached_binary() == new

    def test_expired_cache_is_ignored(self, tmp_path):
        provisioner = make_provisioner(tmp_path, cache_ttl=60)
        provisioner.cache_dir.mkdir(parents=True)
        cached = provisioner.cache_dir / f"convex-local-backend-{OLDER}"
        cached.write_text("x")
        stamp = time.time() - 3600
        os.utime(cached, (stamp, stamp))

        assert provisioner.find_cached_binary() is None

    def test_pinned_version_only_matches_its_file(self, tmp_path):
        provisioner = make_provisioner(tmp_path, version=OLDER)
        provisioner.cache_dir.mkdir(parents=True)
        (provisioner.cache_dir / f"convex-local-backend-{NEWEST}").write_text("x")

        assert provisioner.find_cached_binary() is None


class TestDownload:
    @pytest.mark.asyncio
    async def test_download_and_extract(self, tmp_path, release_server):
        provisioner = make_provisioner(tmp_path, url=release_server.url)

        path = await provisioner.resolve_binary()

        assert path.name == f"convex-local-backend-{OLDER}"
        assert path.read_bytes() == b"#!/bin/sh\necho ok\n"
        assert os.access(path, os.X_OK)
        assert not list(provisioner.cache_dir.glob("*.zip"))
        assert release_server.downloads == 1

    @pytest.mark.asyncio
    async def test_existing_version_is_touched_not_downloaded(self, tmp_path, release_server):
        provisioner = make_provisioner(tmp_path, url=release_server.url, cache_ttl=0)
        provisioner.cache_dir.mkdir(parents=True)
        existing = provisioner.cache_dir / f"convex-local-backend-{OLDER}"
        existing.write_text("x")
        old = time.time() - 30 * 24 * 3600
        os.utime(existing, (old, old))

        assert await provisioner.resolve_binary() == existing
        assert release_server.index_hits == 1
        assert release_server.downloads == 0
        assert existing.stat().st_mtime > old + 24 * 3600

    @pytest.mark.asyncio
    async def test_github_token_sent(self, tmp_path, release_server):
        provisioner = make_provisioner(tmp_path, url=release_server.url, github_token="tok")
        await provisioner.resolve_binary()
        assert release_server.auth_header == "Bearer tok"

    @pytest.mark.asyncio
    async def test_no_matching_asset(self, tmp_path, release_server):
        provisioner = BinaryProvisioner(
            BinaryConfig(cache_dir=tmp_path / "cache", release_index_url=release_server.url),
            platform_info=detect_platform("Windows", "AMD64"),
        )
        with pytest.raises(AssetNotFound):
            await provisioner.resolve_binary()

    @pytest.mark.asyncio
    async def test_index_error(self, tmp_path, release_server):
        release_server.index_status = 403
        provisioner = make_provisioner(tmp_path, url=release_server.url)
        with pytest.raises(DownloadFailed):
            await provisioner.resolve_binary()

    @pytest.mark.asyncio
    async def test_unreachable_index(self, tmp_path):
        provisioner = make_provisioner(tmp_path, url="http://127.0.0.1:9/releases")
        with pytest.raises(DownloadFailed):
            await provisioner.resolve_binary()

    @pytest.mark.asyncio
    async def test_corrupt_archive(self, tmp_path, release_server):
        release_server.archive = b"not a zip"
        provisioner = make_provisioner(tmp_path, url=release_server.url)

        with pytest.raises(ExtractionFailed):
            await provisioner.resolve_binary()
        assert not list(provisioner.cache_dir.iterdir())

    @pytest.mark.asyncio
    async def test_archive_without_executable(self, tmp_path, release_server):
        release_server.archive = make_zip(member="README.md")
        provisioner = make_provisioner(tmp_path, url=release_server.url)

        with pytest.raises(ExtractionFailed):
            await provisioner.resolve_binary()
