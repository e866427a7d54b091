from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Optional

from models.image_metadata import ImageMetadata
from services.metadata_codec import decode


@dataclass
class ImageRecord:
    """In-memory representation of a row in the images table.

    Attributes:
        id: Primary key assigned by the record store.
        owner_id: Identity of the uploading user.
        blob_ref: Object name of the image bytes in the blob store.
        metadata: Raw JSON text of the metadata bag (None when never written).
        created_at: ISO-8601 UTC timestamp of insertion.
        updated_at: ISO-8601 UTC timestamp of the last metadata merge.
    """

    id: int
    owner_id: str
    blob_ref: str
    metadata: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def parsed_metadata(self) -> ImageMetadata:
        """Return the typed metadata view.

        Raises:
            CorruptMetadata: If the stored bag cannot be decoded.
        """
        return ImageMetadata.from_bag(decode(self.metadata))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "blob_ref": self.blob_ref,
            "metadata": self.metadata,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class PageWindow:
    """One page of records plus the totals needed to render pagination."""

    page: int
    page_size: int
    total_count: int
    records: List[ImageRecord] = field(default_factory=list)

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size) if self.page_size > 0 else 0

    def without(self, record_id: int) -> "PageWindow":
        """Return a copy with `record_id` removed from the visible rows."""
        return PageWindow(
            page=self.page,
            page_size=self.page_size,
            total_count=self.total_count,
            records=[r for r in self.records if r.id != record_id],
        )

    def ids(self) -> List[int]:
        return [r.id for r in self.records]
