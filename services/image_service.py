"""Upload, delete, and read image records across the blob and record stores.

Upload writes the blob first and the record second. The two writes are not
transactional: when the record insert fails the blob stays behind, gets
logged here, and is removed later by `services.orphan_sweeper`.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Iterable, List, Optional

from models.image_record import ImageRecord, PageWindow
from services.pagination import PaginationController
from utils.errors import DeleteFailed, NotFound
from utils.media_validation import normalize_content_type, object_extension, validate_image_upload


@dataclass
class UploadFileData:
    """One file of an upload batch."""

    filename: str
    content_type: Optional[str]
    data: bytes


class ImageService:
    """Coordinate the record store and blob store for user actions.

    Args:
        record_store: Durable store of image records (`dal.image_dal.ImageDAL`).
        blob_store: Durable store of image bytes.
        url_cache: Optional signed-URL cache; entries are dropped on delete.
    """

    def __init__(self, record_store, blob_store, url_cache=None) -> None:
        self.records = record_store
        self.blobs = blob_store
        self.url_cache = url_cache
        self.pagination = PaginationController(record_store)

    async def upload(self, owner_id: str, files: Iterable[UploadFileData]) -> List[ImageRecord]:
        """Store each file in order and return the created records.

        Stops at the first failing file; records created before it remain.

        Raises:
            ValueError: If a file is empty or not an image.
            Unavailable / Conflict: If a store write fails.
        """
        files = list(files)
        for f in files:
            validate_image_upload(f.filename, f.content_type, f.data)

        created: List[ImageRecord] = []
        for f in files:
            object_name = f"{uuid.uuid4()}.{object_extension(f.filename, f.content_type)}"
            content_type = normalize_content_type(f.content_type) or None
            await self.blobs.put(object_name, f.data, content_type)

            metadata = {"originalName": f.filename, "size": len(f.data), "type": content_type or ""}
            try:
                record = await self.records.insert(owner_id, object_name, metadata)
            except Exception:
                logging.error("Record insert failed after blob write; orphaned blob %s", object_name)
                raise
            created.append(record)

        logging.info("Uploaded %s image(s) for %s", len(created), owner_id)
        return created

    async def get(self, record_id: int) -> ImageRecord:
        return await self.records.get(record_id)

    async def page(self, number: int, size: int) -> PageWindow:
        return await self.pagination.page(number, size)

    async def delete(self, record_id: int) -> ImageRecord:
        """Remove both the blob and the record of `record_id`.

        Both removals are attempted even if one fails. A blob that is already
        gone does not count as a failure.

        Raises:
            NotFound: If the record does not exist.
            DeleteFailed: If either removal failed.
        """
        record = await self.records.get(record_id)

        blob_result, record_result = await asyncio.gather(
            self.blobs.remove(record.blob_ref),
            self.records.delete(record_id),
            return_exceptions=True,
        )
        for result in (blob_result, record_result):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result

        blob_error = blob_result if isinstance(blob_result, Exception) else None
        record_error = record_result if isinstance(record_result, Exception) else None
        if isinstance(blob_error, NotFound):
            logging.warning("Blob %s was already missing while deleting image %s", record.blob_ref, record_id)
            blob_error = None

        if self.url_cache is not None:
            self.url_cache.invalidate(record.blob_ref)

        if blob_error is not None or record_error is not None:
            logging.error("Delete of image %s incomplete: blob=%s record=%s", record_id, blob_error, record_error)
            raise DeleteFailed(record_id, blob_error=blob_error, record_error=record_error)
        return record
