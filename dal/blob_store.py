"""Local-disk blob store with time-limited signed URLs.

Objects live as flat files under one directory. Signed URLs point at the
service's own `/blobs/{name}` route and carry an expiry plus an HMAC-SHA256
signature over `name:expires`; the route checks both before serving bytes.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import math
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote, urlencode

import aiofiles
import aiofiles.os

from utils.errors import NotFound, Unavailable


@dataclass
class BlobObject:
    """A stored object as reported by `list_objects()`."""

    name: str
    modified_at: float


def validate_object_name(name: str) -> str:
    """Reject names that could escape the storage directory."""
    if not name or "/" in name or "\\" in name or name in (".", "..") or name.startswith("."):
        raise ValueError(f"Invalid object name: {name!r}")
    return name


class LocalBlobStore:
    """Store blobs on disk under `base_dir` and sign URLs with a shared secret.

    Args:
        base_dir: Directory that holds the objects; created if missing.
        signing_secret: HMAC key for URL signatures.
        base_url: Public base URL of this service, used to build signed URLs.
        clock: Returns the current unix time; injectable for tests.
    """

    def __init__(self, base_dir: Path | str, signing_secret: str, base_url: str, clock=time.time) -> None:
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._secret = signing_secret.encode("utf-8")
        self.base_url = base_url.rstrip("/")
        self._clock = clock

    def _path(self, name: str) -> Path:
        return self.base_dir / validate_object_name(name)

    async def put(self, name: str, data: bytes, content_type: Optional[str] = None) -> None:
        """Write `data` under `name`, replacing any existing object."""
        path = self._path(name)
        try:
            async with aiofiles.open(path, "wb") as f:
                await f.write(data)
        except OSError as exc:
            raise Unavailable(f"Failed to write blob {name}: {exc}") from exc

    async def get(self, name: str) -> bytes:
        path = self._path(name)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError as exc:
            raise NotFound(f"Blob {name} not found") from exc
        except OSError as exc:
            raise Unavailable(f"Failed to read blob {name}: {exc}") from exc

    async def remove(self, name: str) -> None:
        path = self._path(name)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError as exc:
            raise NotFound(f"Blob {name} not found") from exc
        except OSError as exc:
            raise Unavailable(f"Failed to remove blob {name}: {exc}") from exc

    async def exists(self, name: str) -> bool:
        return await aiofiles.os.path.isfile(self._path(name))

    async def sign_url(self, name: str, ttl_seconds: int) -> str:
        """Return a URL for `name` that stops verifying after `ttl_seconds`.

        Raises:
            NotFound: If the object does not exist.
        """
        if not await self.exists(name):
            raise NotFound(f"Blob {name} not found")
        expires = math.ceil(self._clock()) + int(ttl_seconds)
        query = urlencode({"expires": expires, "signature": self._signature(name, expires)})
        return f"{self.base_url}/blobs/{quote(name)}?{query}"

    def public_url(self, name: str) -> Optional[str]:
        # Local objects are only reachable through signed URLs
        return None

    def verify(self, name: str, expires: int, signature: str) -> bool:
        """Return True if `signature` is valid for `name` and has not expired."""
        if int(self._clock()) >= int(expires):
            return False
        expected = self._signature(name, int(expires))
        return hmac.compare_digest(expected, signature or "")

    async def list_objects(self) -> List[BlobObject]:
        def _scan() -> List[BlobObject]:
            return [
                BlobObject(name=p.name, modified_at=p.stat().st_mtime)
                for p in self.base_dir.iterdir()
                if p.is_file() and not p.name.startswith(".")
            ]

        try:
            return await asyncio.to_thread(_scan)
        except OSError as exc:
            raise Unavailable(f"Failed to list blobs: {exc}") from exc

    def _signature(self, name: str, expires: int) -> str:
        message = f"{name}:{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()
