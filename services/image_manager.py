"""Facade over the list cache, URL cache, and enrichment jobs shared by the API."""

from __future__ import annotations

import time
from typing import Dict, Iterable, List, Optional, Tuple, Union

from models.image_metadata import JobKind
from models.image_record import ImageRecord, PageWindow
from services.image_service import ImageService, UploadFileData
from services.list_cache import ListCache


class ImageManager:
    """Keep a coherent view of "images + their derived state" for API readers.

    Deletes are optimistic; uploads and finished enrichment jobs invalidate
    the cached pages so the next read is authoritative. Display URLs are
    resolved per object name, independent of which page a record sits on.
    """

    def __init__(
        self,
        service: ImageService,
        dispatcher,
        url_cache,
        page_size: int = 10,
        stale_after_seconds: float = 300.0,
        clock=time.monotonic,
        max_cached_pages: int = 64,
    ) -> None:
        self.service = service
        self.dispatcher = dispatcher
        self.url_cache = url_cache
        self.page_size = page_size
        self.list_cache = ListCache(
            self._fetch_page,
            stale_after_seconds=stale_after_seconds,
            clock=clock,
            max_entries=max_cached_pages,
        )

    async def _fetch_page(self, key: Tuple[int, int]) -> PageWindow:
        page, size = key
        return await self.service.page(page, size)

    async def list_page(self, page: int = 1, size: Optional[int] = None) -> PageWindow:
        return await self.list_cache.get((page, self.page_size if size is None else size))

    async def refresh(self, page: int = 1, size: Optional[int] = None) -> PageWindow:
        return await self.list_cache.refetch((page, self.page_size if size is None else size))

    async def upload(self, owner_id: str, files: Iterable[UploadFileData]) -> List[ImageRecord]:
        try:
            return await self.service.upload(owner_id, files)
        finally:
            # Earlier files of a failed batch were still stored
            self.list_cache.invalidate()

    async def delete(self, record_id: int) -> ImageRecord:
        return await self.list_cache.delete(record_id, lambda: self.service.delete(record_id))

    async def run_job(self, kind: Union[JobKind, str], record_id: int) -> ImageRecord:
        updated = await self.dispatcher.run(kind, record_id)
        self.list_cache.invalidate()
        return updated

    async def run_ocr(self, record_id: int) -> ImageRecord:
        return await self.run_job(JobKind.OCR, record_id)

    async def run_feature_extraction(self, record_id: int) -> ImageRecord:
        return await self.run_job(JobKind.FEATURES, record_id)

    async def display_urls(self, records: Iterable[ImageRecord]) -> Dict[int, str]:
        """Map record id to a signed URL; records whose URL failed are missing."""
        records = list(records)
        urls = await self.url_cache.resolve_all(r.blob_ref for r in records)
        return {r.id: urls[r.blob_ref] for r in records if r.blob_ref in urls}
