"""Remove blobs that no image record references."""

import asyncio
import logging
import time


class OrphanBlobSweeper:
    """Delete blob objects left behind by uploads whose record insert failed."""

    def __init__(self, record_store, blob_store, grace_seconds: int = 3_600, clock=time.time) -> None:
        """
        Args:
            record_store: Store exposing `blob_refs()`.
            blob_store: Store exposing `list_objects()` and `remove(name)`.
            grace_seconds: Objects younger than this are skipped so in-flight uploads survive.
        """
        self.records = record_store
        self.blobs = blob_store
        self.grace_seconds = grace_seconds
        self._clock = clock

    async def sweep(self) -> int:
        """Remove unreferenced objects older than the grace window and return the count removed."""
        cutoff = self._clock() - self.grace_seconds
        objects = await self.blobs.list_objects()
        referenced = await self.records.blob_refs()

        removed = 0
        for obj in objects:
            # Young objects may belong to an upload whose record is still being written
            if obj.name in referenced or obj.modified_at >= cutoff:
                continue
            try:
                await self.blobs.remove(obj.name)
            except Exception as exc:
                logging.warning("Could not remove orphaned blob %s: %s", obj.name, exc)
                continue
            removed += 1
        if removed:
            logging.info("Removed %s orphaned blob(s)", removed)
        return removed

    async def run_periodic(self, interval_seconds: int = 3_600) -> None:
        """
        Repeatedly sweep at the given interval until cancelled.

        Args:
            interval_seconds: Seconds to sleep between sweeps.
        """
        while True:
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # Keep the loop alive; the next tick retries
                logging.error("Orphan sweep failed: %s", exc)
            await asyncio.sleep(interval_seconds)
