"""
Streaming reader for remote files.

Opens a GET against an arbitrary URL and exposes the declared size,
content type and an async byte stream, without reading the body up front.
"""
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import httpx

from r2relay.exceptions import RemoteFetchError

logger = logging.getLogger(__name__)

# Chunk size requested from httpx while streaming the body
STREAM_CHUNK_SIZE = 1024 * 1024


@dataclass
class RemoteFile:
    """An open remote response."""
    url: str
    total_size: Optional[int]
    content_type: Optional[str]
    stream: AsyncIterator[bytes]


def declared_size(headers: httpx.Headers) -> Optional[int]:
    """
    Body size announced by the remote server.

    Returns None when there is no usable Content-Length, or when the body
    is content-encoded (the length then counts encoded bytes, not the
    bytes we store).
    """
    encoding = headers.get("content-encoding", "identity").strip().lower()
    if encoding not in ("", "identity"):
        return None
    raw = headers.get("content-length")
    if raw is None or not raw.strip().isdigit():
        return None
    return int(raw.strip())


class RemoteSource:
    """Opens streaming reads from remote URLs with a shared httpx client."""

    def __init__(self, client: httpx.AsyncClient, chunk_size: int = STREAM_CHUNK_SIZE):
        self._client = client
        self.chunk_size = chunk_size

    @asynccontextmanager
    async def open(self, url: str) -> AsyncIterator[RemoteFile]:
        """
        Open `url` for streaming.

        Transport errors while connecting or while the body is read inside
        the `async with` block are raised as RemoteFetchError.

        Raises:
            RemoteFetchError: Unreachable URL or non-2xx status
        """
        try:
            async with self._client.stream(
                "GET",
                url,
                headers={"Accept-Encoding": "identity"},
                follow_redirects=True,
            ) as response:
                if not response.is_success:
                    logger.warning(f"Remote fetch of {url} returned HTTP {response.status_code}")
                    raise RemoteFetchError(
                        f"Cannot fetch remote URL (HTTP {response.status_code})",
                        status_code=response.status_code,
                    )

                yield RemoteFile(
                    url=str(response.url),
                    total_size=declared_size(response.headers),
                    content_type=response.headers.get("content-type"),
                    stream=response.aiter_bytes(self.chunk_size),
                )
        except httpx.InvalidURL as e:
            raise RemoteFetchError(f"Invalid remote URL: {e}") from e
        except httpx.UnsupportedProtocol as e:
            raise RemoteFetchError(f"Unsupported remote URL: {e}") from e
        except httpx.HTTPError as e:
            logger.warning(f"Remote fetch of {url} failed: {e}")
            raise RemoteFetchError(f"Cannot fetch remote URL: {e}") from e
