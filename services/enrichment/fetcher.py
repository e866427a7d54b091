"""Download image bytes from a signed URL."""

from __future__ import annotations

from typing import Optional

import httpx

from utils.errors import NotFound, Unavailable


class BlobFetcher:
    """Fetch raw bytes over HTTP with a bounded timeout.

    Args:
        client: Optional shared `httpx.AsyncClient`; one is created otherwise.
        timeout_seconds: Per-request timeout.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout_seconds: float = 30.0) -> None:
        self.timeout_seconds = timeout_seconds
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True)

    async def fetch(self, url: str) -> bytes:
        """Return the body at `url`.

        Raises:
            NotFound: On HTTP 404.
            Unavailable: On any other failure, including timeouts.
        """
        try:
            response = await self.client.get(url, timeout=self.timeout_seconds)
        except httpx.TimeoutException as exc:
            raise Unavailable("Fetching image bytes timed out") from exc
        except httpx.HTTPError as exc:
            raise Unavailable(f"Fetching image bytes failed: {exc}") from exc

        if response.status_code == 404:
            raise NotFound("Image bytes not found at signed URL")
        if response.is_error:
            raise Unavailable(f"Fetching image bytes failed with HTTP {response.status_code}")
        if not response.content:
            raise Unavailable("Fetched image is empty")
        return response.content

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
