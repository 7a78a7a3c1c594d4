"""
Backend binary acquisition and caching.

Provides:
- Platform target resolution for release assets
- Cache lookup with a freshness window (no network on a fresh hit)
- Release index lookup, download and zip extraction
- Optional pinning to a release tag
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp

from local_backend.config import BinaryConfig
from local_backend.errors import AssetNotFound, DownloadFailed, ExtractionFailed
from local_backend.utils.async_helpers import async_retry
from local_backend.utils.environment import ASSET_PREFIX, PlatformInfo, detect_platform

logger = logging.getLogger(__name__)

USER_AGENT = "local-backend-orchestrator"
CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class ReleaseAsset:
    """A downloadable archive for one release."""
    version: str
    name: str
    url: str


def select_asset(
    releases: List[Dict[str, Any]],
    target: str,
    version: Optional[str] = None,
) -> ReleaseAsset:
    """
    Pick the first release (index order, newest first) with an asset for
    ``target``. With ``version`` set, only that release tag is considered.

    Raises:
        AssetNotFound: if no release carries a matching asset
    """
    for release in releases:
        tag = release.get("tag_name", "")
        if version and tag != version:
            continue
        for asset in release.get("assets") or []:
            if target in asset.get("name", ""):
                return ReleaseAsset(
                    version=tag,
                    name=asset["name"],
                    url=asset["browser_download_url"],
                )

    where = f"release {version}" if version else "any release"
    raise AssetNotFound(f"No backend binary asset in {where} matches '{target}'")


class BinaryProvisioner:
    """
    Resolves a runnable backend binary for this machine.

    Example:
        provisioner = BinaryProvisioner(BinaryConfig())
        binary_path = await provisioner.resolve_binary()
    """

    def __init__(
        self,
        config: Optional[BinaryConfig] = None,
        platform_info: Optional[PlatformInfo] = None,
    ):
        self.config = config or BinaryConfig()
        self.platform = platform_info or detect_platform()

    @property
    def cache_dir(self) -> Path:
        return Path(self.config.cache_dir)

    def binary_name(self, version: str) -> str:
        return f"{ASSET_PREFIX}-{version}{self.platform.exe_suffix}"

    def find_cached_binary(self) -> Optional[Path]:
        """Return the newest cached binary if it is within the TTL."""
        if not self.cache_dir.is_dir():
            return None

        if self.config.version:
            candidates = [self.cache_dir / self.binary_name(self.config.version)]
        else:
            suffix = self.platform.exe_suffix
            candidates = [
                p for p in self.cache_dir.iterdir()
                if p.name.startswith(f"{ASSET_PREFIX}-")
                and p.name.endswith(suffix)
                and p.suffix not in (".zip", ".partial")
            ]

        newest: Optional[Path] = None
        newest_mtime = 0.0
        for path in candidates:
            try:
                mtime = path.stat().st_mtime
            except OSError:
                continue
            if path.is_file() and mtime > newest_mtime:
                newest, newest_mtime = path, mtime

        if newest is None:
            return None
        if time.time() - newest_mtime < self.config.cache_ttl:
            return newest
        return None

    async def resolve_binary(self) -> Path:
        """
        Return the path to an executable backend binary.

        Raises:
            AssetNotFound: no release carries an asset for this platform
            DownloadFailed: the release index or archive could not be fetched
            ExtractionFailed: the archive could not be unpacked
        """
        self.cache_dir.mkdir(parents=True, exist_ok=True)

        if self.config.cache_ttl > 0:
            cached = self.find_cached_binary()
            if cached is not None:
                logger.debug(f"Using cached backend binary {cached}")
                return cached

        timeout = aiohttp.ClientTimeout(total=self.config.download_timeout)
        async with aiohttp.ClientSession(timeout=timeout, headers=self._headers()) as session:
            releases = await self._fetch_releases(session)
            asset = select_asset(releases, self.platform.target, self.config.version)

            binary_path = self.cache_dir / self.binary_name(asset.version)
            if binary_path.exists():
                # Refresh mtime so the TTL restarts
                os.utime(binary_path, None)
                logger.debug(f"Backend binary {asset.version} already cached")
                return binary_path

            archive_path = self.cache_dir / asset.name
            logger.info(f"Downloading backend {asset.version}...")
            await self._download(session, asset.url, archive_path)
            logger.info(f"Downloaded: {asset.name}")

        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._extract, archive_path, binary_path)
        finally:
            archive_path.unlink(missing_ok=True)

        logger.info(f"Binary ready at: {binary_path}")
        return binary_path

    def _headers(self) -> Dict[str, str]:
        headers = {"User-Agent": USER_AGENT}
        if self.config.github_token:
            headers["Authorization"] = f"Bearer {self.config.github_token}"
        return headers

    async def _fetch_releases(self, session: aiohttp.ClientSession) -> List[Dict[str, Any]]:
        fetch = async_retry(
            attempts=self.config.index_attempts,
            delay=1.0,
            exceptions=(aiohttp.ClientConnectionError, asyncio.TimeoutError),
        )(self._fetch_releases_once)

        try:
            return await fetch(session)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DownloadFailed(f"Failed to fetch releases: {e}") from e

    async def _fetch_releases_once(self, session: aiohttp.ClientSession) -> List[Dict[str, Any]]:
        async with session.get(self.config.release_index_url) as resp:
            if resp.status != 200:
                raise DownloadFailed(f"Failed to fetch releases: {resp.status}")
            releases = await resp.json(content_type=None)

        if not isinstance(releases, list):
            raise DownloadFailed("Release index did not return a list")
        return releases

    async def _download(self, session: aiohttp.ClientSession, url: str, dest: Path) -> None:
        try:
            async with session.get(url, allow_redirects=True) as resp:
                if resp.status != 200:
                    raise DownloadFailed(f"Failed to download {url}: {resp.status} {resp.reason}")
                with open(dest, "wb") as f:
                    async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                        f.write(chunk)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            dest.unlink(missing_ok=True)
            raise DownloadFailed(f"Failed to download {url}: {e}") from e

    def _extract(self, archive_path: Path, binary_path: Path) -> None:
        """Unpack the executable from the archive into ``binary_path``."""
        member_name = f"{ASSET_PREFIX}{self.platform.exe_suffix}"
        partial = binary_path.with_name(binary_path.name + ".partial")

        try:
            with zipfile.ZipFile(archive_path) as archive:
                member = next(
                    (m for m in archive.namelist() if Path(m).name == member_name),
                    None,
                )
                if member is None:
                    raise ExtractionFailed(f"{archive_path.name} does not contain {member_name}")
                with archive.open(member) as src, open(partial, "wb") as dst:
                    shutil.copyfileobj(src, dst)
            os.replace(partial, binary_path)
        except (zipfile.BadZipFile, OSError) as e:
            partial.unlink(missing_ok=True)
            raise ExtractionFailed(f"Failed to extract {archive_path}: {e}") from e

        if not self.platform.is_windows:
            binary_path.chmod(0o755)
