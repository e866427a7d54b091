"""Cache of signed blob URLs keyed by object name."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from utils.errors import Unavailable
from utils.keyed_locks import KeyedLocks


@dataclass(frozen=True)
class SignedUrlCacheEntry:
    url: str
    expires_at: float


class SignedUrlCache:
    """Serve signed URLs until they expire, re-signing on miss or expiry.

    An entry is never served at or after its `expires_at`; failed signing is
    not remembered, so the next lookup simply tries again. Expired entries
    are dropped when looked up and whenever a new URL is signed.

    Args:
        blob_store: Any object with an async `sign_url(name, ttl_seconds)`.
        default_ttl_seconds: TTL used when `resolve` is called without one.
        timeout_seconds: Upper bound for one signing call.
        clock: Returns the current unix time; injectable for tests.
    """

    def __init__(self, blob_store, default_ttl_seconds: int = 3600, timeout_seconds: float = 30.0, clock=time.time) -> None:
        self._store = blob_store
        self.default_ttl_seconds = default_ttl_seconds
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._entries: Dict[str, SignedUrlCacheEntry] = {}
        self._locks = KeyedLocks()

    def __len__(self) -> int:
        return len(self._entries)

    def peek(self, object_name: str, min_remaining_seconds: float = 0) -> Optional[SignedUrlCacheEntry]:
        """Return the entry for `object_name` if it stays valid long enough.

        Args:
            object_name: Blob object name.
            min_remaining_seconds: The entry must remain valid at least this
                long from now to be returned.

        Returns:
            The entry, or None on miss, expiry, or too little lifetime left.
        """
        entry = self._entries.get(object_name)
        if entry is None:
            return None
        now = self._clock()
        if now >= entry.expires_at:
            del self._entries[object_name]
            return None
        if now + min_remaining_seconds >= entry.expires_at:
            return None
        return entry

    async def resolve(
        self,
        object_name: str,
        ttl_seconds: Optional[int] = None,
        min_remaining_seconds: float = 0,
    ) -> str:
        """Return a signed URL for `object_name`.

        Args:
            object_name: Blob object name.
            ttl_seconds: Lifetime of a newly signed URL; defaults to
                `default_ttl_seconds`.
            min_remaining_seconds: A cached URL expiring sooner than this is
                re-signed instead of returned.

        Raises:
            NotFound: If the blob store does not know the object.
            Unavailable: If signing fails or times out.
        """
        entry = self.peek(object_name, min_remaining_seconds)
        if entry is not None:
            return entry.url

        async with self._locks.hold(object_name):
            # Another task may have signed while we waited
            entry = self.peek(object_name, min_remaining_seconds)
            if entry is not None:
                return entry.url

            ttl = max(int(ttl_seconds or self.default_ttl_seconds), math.ceil(min_remaining_seconds) + 1)
            issued_at = self._clock()
            try:
                url = await asyncio.wait_for(self._store.sign_url(object_name, ttl), self.timeout_seconds)
            except asyncio.TimeoutError as exc:
                raise Unavailable(f"Signing URL for {object_name} timed out") from exc

            self._prune(issued_at)
            self._entries[object_name] = SignedUrlCacheEntry(url=url, expires_at=issued_at + ttl)
            return url

    async def resolve_all(self, object_names: Iterable[str]) -> Dict[str, str]:
        """Resolve each name independently; failed names are left out of the result."""
        names = list(dict.fromkeys(object_names))
        results = await asyncio.gather(*(self.resolve(n) for n in names), return_exceptions=True)

        urls: Dict[str, str] = {}
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logging.warning("Could not sign URL for %s: %s", name, result)
                continue
            if isinstance(result, BaseException):
                raise result
            urls[name] = result
        return urls

    def invalidate(self, object_name: str) -> None:
        self._entries.pop(object_name, None)

    def clear(self) -> None:
        self._entries.clear()

    def _prune(self, now: float) -> None:
        expired = [name for name, entry in self._entries.items() if now >= entry.expires_at]
        for name in expired:
            del self._entries[name]
