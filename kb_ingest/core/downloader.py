import httpx
import asyncio
import logging
from typing import Optional

from kb_ingest.errors import DownloadError

logger = logging.getLogger(__name__)


class Downloader:
    """
    Fetches source documents over HTTP. Transport errors and 5xx responses are
    retried with exponential backoff; other non-success statuses fail at once.
    """
    def __init__(
        self,
        user_agent: str,
        request_timeout: int,
        max_retries: int,
        client: Optional[httpx.AsyncClient] = None,
        backoff_base: float = 1.0,
    ):
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.client = client or httpx.AsyncClient(
            headers={"User-Agent": user_agent},
            timeout=request_timeout,
            follow_redirects=True,
        )

    async def fetch(self, url: str, job_id: str) -> bytes:
        """Returns the response body of `url` or raises DownloadError."""
        last_error = "unknown error"
        for attempt in range(self.max_retries + 1): # +1 for initial attempt
            try:
                response = await self.client.get(url)
                response.raise_for_status()
                logger.info(f"Job {job_id}: Successfully downloaded {url} ({len(response.content)} bytes, attempt {attempt + 1})")
                return response.content
            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                last_error = f"HTTP {status_code}"
                logger.warning(f"Job {job_id}: HTTP error downloading {url}: {status_code} (Attempt {attempt + 1})")
                if status_code < 500:
                    break
            except httpx.RequestError as e:
                last_error = str(e) or e.__class__.__name__
                logger.warning(f"Job {job_id}: Request error downloading {url}: {last_error} (Attempt {attempt + 1})")
            if attempt < self.max_retries: # Only sleep if more retries are coming
                await asyncio.sleep(self.backoff_base * 2 ** attempt)
        raise DownloadError(f"Failed to download file from {url}: {last_error}")

    async def aclose(self):
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
