"""
Media Relay (CORS bypass)

Streams remote media back to the caller chunk by chunk. The object is never
held in memory as a whole. A client Range header is passed upstream so
players can seek.
"""

import asyncio
import logging
import mimetypes
import time
from typing import AsyncIterator, Dict, Optional

import aiohttp
from fastapi.responses import JSONResponse, Response, StreamingResponse

from core.errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "video/mp4"
CHUNK_SIZE = 64 * 1024


def filename_for(content_type: str) -> str:
    ext = mimetypes.guess_extension(content_type.split(";")[0].strip()) or ".mp4"
    return f"media-{int(time.time() * 1000)}{ext}"


class MediaRelay:

    def __init__(self, connect_timeout: float = 30, read_timeout: float = 300, chunk_size: int = CHUNK_SIZE):
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.chunk_size = chunk_size

    async def relay(self, remote_url: str, range_header: Optional[str] = None) -> Response:
        """
        Open `remote_url` and return a streaming response for it.

        Upstream non-2xx is answered with the same status and the upstream
        body in `details`. A failure before any header is sent raises
        TransportError (500); a failure mid-stream drops the connection.
        """
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=self.connect_timeout, sock_read=self.read_timeout)
        session = aiohttp.ClientSession(timeout=timeout)
        request_headers = {"Range": range_header} if range_header else {}

        try:
            upstream = await session.get(remote_url, headers=request_headers)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            await session.close()
            logger.error(f"Relay fetch failed for {remote_url}: {e}")
            raise TransportError(f"Error fetching media: {e or type(e).__name__}", status_code=500) from e

        if not 200 <= upstream.status < 300:
            try:
                body = await upstream.text(errors="replace")
            finally:
                upstream.release()
                await session.close()
            logger.error(f"Failed to fetch media: {upstream.status} {upstream.reason}")
            return JSONResponse(
                status_code=upstream.status,
                content={"error": f"Failed to download: {upstream.reason}", "details": body},
            )

        content_type = upstream.headers.get("Content-Type") or DEFAULT_CONTENT_TYPE
        headers: Dict[str, str] = {
            "Content-Disposition": f'inline; filename="{filename_for(content_type)}"',
            "Accept-Ranges": "bytes",
        }
        content_length = upstream.headers.get("Content-Length")
        if content_length:
            headers["Content-Length"] = content_length
        content_range = upstream.headers.get("Content-Range")
        if content_range:
            headers["Content-Range"] = content_range

        logger.info(f"Media headers received: type={content_type} length={content_length}")

        async def body_iter() -> AsyncIterator[bytes]:
            sent = 0
            try:
                async for chunk in upstream.content.iter_chunked(self.chunk_size):
                    sent += len(chunk)
                    yield chunk
                logger.info(f"Media stream finished to client ({sent} bytes)")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                # Headers are already out; all that is left is to drop the connection
                logger.error(f"Error during media stream after {sent} bytes: {e}")
                raise
            finally:
                upstream.release()
                await session.close()

        return StreamingResponse(
            body_iter(),
            status_code=upstream.status,
            media_type=content_type,
            headers=headers,
        )
