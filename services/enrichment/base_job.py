"""Download-then-merge flow shared by the enrichment jobs."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, Optional, TypeVar

from models.image_metadata import JobKind
from models.image_record import ImageRecord
from utils.errors import EnrichmentFailed, NotFound, Unavailable, VendorError

T = TypeVar("T")


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class EnrichmentJob:
    """Base class for one enrichment kind.

    Subclasses implement `process(image_bytes)` and return a patch holding
    only the fields they own. `run` resolves the blob URL, downloads the
    bytes, calls `process` and merges the patch into the stored bag.

    Args:
        record_store: Store exposing `merge_metadata(id, patch)`.
        url_cache: Signed-URL cache used to reach the blob.
        fetcher: Downloads bytes from a URL.
        timeout_seconds: Upper bound for each external call.
        url_ttl_seconds: TTL requested when the URL has to be signed. A cached
            URL is reused only while it outlives the download timeout.
    """

    kind: JobKind

    def __init__(
        self,
        record_store,
        url_cache,
        fetcher,
        timeout_seconds: float = 30.0,
        url_ttl_seconds: Optional[int] = None,
    ) -> None:
        self.record_store = record_store
        self.url_cache = url_cache
        self.fetcher = fetcher
        self.timeout_seconds = timeout_seconds
        self.url_ttl_seconds = url_ttl_seconds

    async def process(self, image_bytes: bytes) -> Dict[str, Any]:
        raise NotImplementedError

    async def run(self, record: ImageRecord) -> ImageRecord:
        """Enrich `record` and return it with the merged metadata.

        Raises:
            EnrichmentFailed: If the blob cannot be fetched or the processor fails.
            NotFound: If the record was deleted before the merge.
            CorruptMetadata: If the stored bag cannot be decoded.
        """
        try:
            # The URL must outlive the download that uses it
            url = await self.url_cache.resolve(
                record.blob_ref,
                ttl_seconds=self.url_ttl_seconds,
                min_remaining_seconds=self.timeout_seconds,
            )
            image_bytes = await self.bounded(self.fetcher.fetch(url), "image download")
            patch = await self.process(image_bytes)
        except (NotFound, Unavailable, VendorError) as exc:
            raise EnrichmentFailed(self.kind.value, record.id, exc) from exc

        return await self.bounded(self.record_store.merge_metadata(record.id, patch), "metadata merge")

    async def bounded(self, awaitable: Awaitable[T], what: str, timeout: Optional[float] = None) -> T:
        """Await with the job timeout; a timeout is reported as Unavailable."""
        try:
            return await asyncio.wait_for(awaitable, timeout or self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise Unavailable(f"{what} timed out") from exc
