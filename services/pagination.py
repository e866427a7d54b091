"""Deterministic page windowing over the record store."""

from __future__ import annotations

import math

from models.image_record import PageWindow
from utils.errors import OutOfRange


class PaginationController:
    """Clamp page requests and fetch the matching window, newest first.

    The store only ever sees a valid offset; clamping happens here.
    """

    def __init__(self, record_store) -> None:
        self._store = record_store

    async def page(self, number: int, size: int) -> PageWindow:
        """Return page `number` of `size` rows.

        Raises:
            OutOfRange: If `size` is not positive, or the store is empty and a
                page other than 1 was requested.
        """
        if size < 1:
            raise OutOfRange(f"Page size must be at least 1, got {size}")

        total = await self._store.count()
        total_pages = math.ceil(total / size)

        if total_pages == 0:
            if number != 1:
                raise OutOfRange(f"Page {number} requested but there are no images")
            return PageWindow(page=1, page_size=size, total_count=0, records=[])

        number = min(max(number, 1), total_pages)
        records, total = await self._store.list(offset=(number - 1) * size, limit=size)
        return PageWindow(page=number, page_size=size, total_count=total, records=records)
