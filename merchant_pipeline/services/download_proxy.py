import asyncio
import logging
from typing import Optional, Tuple
from urllib.parse import urlparse

import httpx
from fastapi import HTTPException, status

logger = logging.getLogger(__name__)


class DownloadProxy:
    """Fetches a stored document on behalf of the dashboard so it can be saved as an attachment."""

    def __init__(self, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport

    async def fetch(self, url: str) -> Tuple[bytes, str]:
        if not url:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="URL is required")
        if urlparse(url).scheme not in ("http", "https"):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only http(s) URLs can be downloaded")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport, follow_redirects=True) as client:
                # Deadline covers the whole fetch, not each read
                response = await asyncio.wait_for(client.get(url), self.timeout)
        except (httpx.TimeoutException, asyncio.TimeoutError):
            logger.error(f"Download timed out after {self.timeout}s: {urlparse(url).netloc}")
            raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail="Timed out fetching file")
        except httpx.HTTPError as e:
            logger.error(f"Error downloading file: {str(e)}")
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to download file")

        if response.status_code >= 400:
            logger.error(f"Failed to fetch file: {response.status_code} from {urlparse(url).netloc}")
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to download file")

        return response.content, response.headers.get("content-type") or "application/octet-stream"


def attachment_header(filename: Optional[str]) -> str:
    safe = (filename or "download").replace('"', "").replace("\r", "").replace("\n", "")
    return f'attachment; filename="{safe or "download"}"'
