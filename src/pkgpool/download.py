"""HTTP downloads for manifests and package sources."""

import asyncio
import logging
from collections.abc import AsyncIterator
from pathlib import Path

import httpx

from .exceptions import DownloadError
from .protocols import DownloaderProtocol

logger = logging.getLogger(__name__)

USER_AGENT = "pkgpool"


class HttpDownloader:
    """Downloader backed by httpx."""

    def __init__(self, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None):
        """Initialize downloader.

        Args:
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests pass httpx.MockTransport)
        """
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
            transport=self.transport,
        )

    async def download(self, url: str) -> bytes:
        """Download `url` fully into memory.

        Raises:
            DownloadError: On transport failure or non-2xx status
        """
        logger.debug(f"Downloading {url}")
        try:
            async with self._client() as client:
                response = await client.get(url)
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as e:
            raise DownloadError(f"failed to download {url}: {e}", context={"url": url}) from e

    async def stream(self, url: str) -> AsyncIterator[bytes]:
        """Download `url` as a stream of chunks.

        Raises:
            DownloadError: On transport failure or non-2xx status
        """
        logger.debug(f"Streaming {url}")
        try:
            async with self._client() as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    async for chunk in response.aiter_bytes():
                        yield chunk
        except httpx.HTTPError as e:
            raise DownloadError(f"failed to download {url}: {e}", context={"url": url}) from e


def download_file_name(url: str) -> str:
    """File name for a downloaded source: the URL's last path segment, or "download"."""
    try:
        path = httpx.URL(url).path
    except httpx.InvalidURL as e:
        raise DownloadError(f"invalid source URL {url}: {e}", context={"url": url}) from e
    segment = path.rstrip("/").rsplit("/", 1)[-1]
    return segment or "download"


async def download_to(downloader: DownloaderProtocol, url: str, target_dir: Path) -> Path:
    """Stream `url` into `target_dir` under its download file name.

    Args:
        downloader: Source of the streamed chunks
        url: Source URL
        target_dir: Existing directory to write into

    Returns:
        Path of the written file
    """
    target = target_dir / download_file_name(url)
    f = await asyncio.to_thread(open, target, "wb")
    try:
        async for chunk in downloader.stream(url):
            await asyncio.to_thread(f.write, chunk)
    finally:
        await asyncio.to_thread(f.close)
    logger.debug(f"Downloaded {url} to {target}")
    return target
