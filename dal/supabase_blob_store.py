"""Blob store backed by a Supabase Storage bucket.

The Supabase Python client is synchronous, so each call runs in a worker
thread to keep the event loop free.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, List, Optional

from supabase import Client, create_client

from dal.blob_store import BlobObject, validate_object_name
from utils.errors import NotFound, Unavailable

# Bucket listings are paged; the storage API returns 100 entries by default
LIST_PAGE_SIZE = 100


def _translate(name: str, exc: Exception) -> Exception:
    text = str(exc).lower()
    if "not found" in text or "404" in text:
        return NotFound(f"Blob {name} not found")
    return Unavailable(f"Storage call for {name} failed: {exc}")


def _timestamp(value: Any) -> float:
    if not value:
        return 0.0
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


class SupabaseBlobStore:
    """Store blobs in one Supabase bucket.

    Args:
        url: Supabase project URL.
        key: API key allowed to read and write the bucket.
        bucket: Bucket name.
        client: Optional pre-built client (used by tests).
    """

    def __init__(self, url: Optional[str], key: Optional[str], bucket: str = "images", client: Optional[Client] = None) -> None:
        if client is None:
            if not url or not key:
                raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must be set for the supabase storage backend")
            client = create_client(url, key)
        self.client = client
        self.bucket = bucket

    def _bucket(self):
        return self.client.storage.from_(self.bucket)

    async def put(self, name: str, data: bytes, content_type: Optional[str] = None) -> None:
        validate_object_name(name)
        options = {"content-type": content_type} if content_type else None
        try:
            await asyncio.to_thread(self._bucket().upload, name, data, options)
        except Exception as exc:
            raise Unavailable(f"Upload of {name} failed: {exc}") from exc

    async def get(self, name: str) -> bytes:
        try:
            return await asyncio.to_thread(self._bucket().download, name)
        except Exception as exc:
            raise _translate(name, exc) from exc

    async def remove(self, name: str) -> None:
        try:
            removed = await asyncio.to_thread(self._bucket().remove, [name])
        except Exception as exc:
            raise _translate(name, exc) from exc
        # Storage reports the removed objects; an empty list means nothing matched
        if isinstance(removed, list) and not removed:
            raise NotFound(f"Blob {name} not found")

    async def sign_url(self, name: str, ttl_seconds: int) -> str:
        try:
            data = await asyncio.to_thread(self._bucket().create_signed_url, name, int(ttl_seconds))
        except Exception as exc:
            raise _translate(name, exc) from exc
        url = (data or {}).get("signedURL") or (data or {}).get("signedUrl")
        if not url:
            raise Unavailable(f"Storage returned no signed URL for {name}")
        return url

    def public_url(self, name: str) -> Optional[str]:
        return self._bucket().get_public_url(name)

    async def list_objects(self) -> List[BlobObject]:
        """Return every object in the bucket, reading it `LIST_PAGE_SIZE` entries at a time."""
        bucket = self._bucket()
        objects = []
        offset = 0
        while True:
            options = {"limit": LIST_PAGE_SIZE, "offset": offset, "sortBy": {"column": "name", "order": "asc"}}
            try:
                entries = await asyncio.to_thread(bucket.list, None, options)
            except Exception as exc:
                raise Unavailable(f"Listing bucket {self.bucket} failed: {exc}") from exc
            entries = entries or []
            for entry in entries:
                name = entry.get("name")
                if not name:
                    continue
                modified = _timestamp(entry.get("updated_at") or entry.get("created_at"))
                objects.append(BlobObject(name=name, modified_at=modified))
            if len(entries) < LIST_PAGE_SIZE:
                break
            offset += len(entries)
        logging.debug("Listed %s objects in bucket %s", len(objects), self.bucket)
        return objects
