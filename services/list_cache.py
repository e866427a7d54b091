"""Client-side cache of paginated image lists with optimistic deletes.

Each page key owns a `CacheEntry` that moves through explicit states:

    IDLE -> FETCHING -> READY
    READY -> PATCHED -> RECONCILING -> (refetch) -> READY     on success
    READY -> PATCHED -> READY                                 on failure

Mutations are driven by events passed to `ListCache.dispatch`. An entry keeps
the last authoritative window (`base`) next to the visible one (`value`);
the visible window is `base` minus every pending deletion. A failed
mutation therefore restores `base` verbatim once nothing else is pending.
An entry invalidated since its last read settles to RECONCILING instead of
READY, whichever mutation settles last.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, Hashable, Optional, TypeVar, Union

from models.image_record import PageWindow
from utils.errors import DeleteFailed
from utils.keyed_locks import KeyedLocks

T = TypeVar("T")


class CacheState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    READY = "ready"
    PATCHED = "patched"
    RECONCILING = "reconciling"


@dataclass(frozen=True)
class MutationIssued:
    mutation_id: str
    record_id: int


@dataclass(frozen=True)
class MutationSucceeded:
    mutation_id: str


@dataclass(frozen=True)
class MutationFailed:
    mutation_id: str
    error: Optional[BaseException] = None


CacheEvent = Union[MutationIssued, MutationSucceeded, MutationFailed]


@dataclass
class CacheEntry:
    key: Hashable
    state: CacheState = CacheState.IDLE
    base: Optional[PageWindow] = None
    value: Optional[PageWindow] = None
    fetched_at: Optional[float] = None
    generation: int = 0
    fetched_generation: int = 0
    patches: Dict[str, int] = field(default_factory=dict)

    @property
    def invalidated(self) -> bool:
        """True once the entry was invalidated after its last authoritative read."""
        return self.generation != self.fetched_generation

    def apply_patches(self) -> None:
        """Recompute the visible window from `base` and the pending patches."""
        if self.base is None:
            self.value = None
            return
        view = self.base
        for record_id in self.patches.values():
            view = view.without(record_id)
        self.value = view


def _partially_applied(error: Optional[BaseException]) -> bool:
    """A delete whose record is gone even though the call failed."""
    return isinstance(error, DeleteFailed) and error.record_error is None


class ListCache:
    """Cache page windows and apply optimistic deletes.

    Args:
        fetcher: `async fetcher(key) -> PageWindow` reading the authoritative list.
        stale_after_seconds: How long a READY entry is served without refetching.
        clock: Monotonic clock; injectable for tests.
        max_entries: Upper bound on cached keys; the least recently read
            settled entries are dropped first.
    """

    def __init__(
        self,
        fetcher: Callable[[Hashable], Awaitable[PageWindow]],
        stale_after_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = 64,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._fetcher = fetcher
        self.stale_after_seconds = stale_after_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[Hashable, CacheEntry]" = OrderedDict()
        self._locks = KeyedLocks()
        self._pending: "OrderedDict[str, int]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def entry(self, key: Hashable) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def peek(self, key: Hashable) -> Optional[PageWindow]:
        """Return the currently visible window for `key` without fetching."""
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def is_fresh(self, entry: CacheEntry) -> bool:
        if entry.state != CacheState.READY or entry.fetched_at is None or entry.invalidated:
            return False
        return self._clock() - entry.fetched_at < self.stale_after_seconds

    async def get(self, key: Hashable) -> PageWindow:
        """Return the window for `key`, fetching only when missing or stale.

        A PATCHED entry is served as-is until its mutation settles.
        """
        entry = self._entry_for(key)
        if entry.state == CacheState.PATCHED or self.is_fresh(entry):
            return entry.value
        return await self._fetch(entry)

    async def refetch(self, key: Hashable) -> PageWindow:
        """Force an authoritative read of `key`."""
        self.invalidate(key)
        entry = self._entry_for(key)
        return await self._fetch(entry, force=True)

    def _entry_for(self, key: Hashable) -> CacheEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = CacheEntry(key=key)
            self._evict()
        else:
            self._entries.move_to_end(key)
        return entry

    def _evict(self) -> None:
        excess = len(self._entries) - self.max_entries
        if excess <= 0:
            return
        for key in list(self._entries):
            if excess <= 0:
                break
            entry = self._entries[key]
            if entry.state in (CacheState.PATCHED, CacheState.FETCHING) or self._locks.is_held(key):
                continue
            del self._entries[key]
            excess -= 1

    async def _fetch(self, entry: CacheEntry, force: bool = False) -> PageWindow:
        async with self._locks.hold(entry.key):
            # A concurrent reader may have fetched while we waited
            if not force and (entry.state == CacheState.PATCHED or self.is_fresh(entry)):
                return entry.value

            previous_state = entry.state
            generation = entry.generation
            entry.state = CacheState.FETCHING
            try:
                window = await self._fetcher(entry.key)
            except BaseException:
                entry.state = previous_state if entry.base is not None else CacheState.IDLE
                raise

            entry.base = window
            entry.fetched_at = self._clock()
            entry.fetched_generation = generation
            ids = set(window.ids())
            entry.patches = {mid: rid for mid, rid in self._pending.items() if rid in ids}
            entry.apply_patches()
            if entry.patches:
                entry.state = CacheState.PATCHED
            elif entry.invalidated:
                # Invalidated while the read was in flight; the result may predate the change
                entry.state = CacheState.RECONCILING
            else:
                entry.state = CacheState.READY
            return entry.value

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        """Mark one entry, or every entry, as needing an authoritative refetch."""
        if key is None:
            entries = list(self._entries.values())
        else:
            entries = [self._entries[key]] if key in self._entries else []
        for entry in entries:
            entry.generation += 1
            if entry.state == CacheState.READY:
                entry.state = CacheState.RECONCILING

    def dispatch(self, event: CacheEvent) -> None:
        """Apply one mutation event to every affected entry."""
        if isinstance(event, MutationIssued):
            self._pending[event.mutation_id] = event.record_id
            for entry in self._entries.values():
                if entry.base is not None and event.record_id in entry.base.ids():
                    entry.patches[event.mutation_id] = event.record_id
                    entry.apply_patches()
                    if entry.state != CacheState.FETCHING:
                        entry.state = CacheState.PATCHED

        elif isinstance(event, MutationSucceeded):
            record_id = self._pending.pop(event.mutation_id, None)
            # Deleting shifts every later page, so all of them are stale
            self.invalidate()
            for entry in self._entries.values():
                if entry.patches.pop(event.mutation_id, None) is not None and entry.base is not None:
                    # Durably gone: keep it hidden until the refetch lands
                    entry.base = entry.base.without(record_id)
                    entry.apply_patches()
                self._settle(entry)

        elif isinstance(event, MutationFailed):
            self._pending.pop(event.mutation_id, None)
            if _partially_applied(event.error):
                self.invalidate()
            for entry in self._entries.values():
                if entry.patches.pop(event.mutation_id, None) is not None:
                    entry.apply_patches()
                    self._settle(entry)

        else:
            raise TypeError(f"Unknown cache event: {event!r}")

    @staticmethod
    def _settle(entry: CacheEntry) -> None:
        if entry.state == CacheState.PATCHED and not entry.patches:
            entry.state = CacheState.RECONCILING if entry.invalidated else CacheState.READY

    async def delete(self, record_id: int, perform: Callable[[], Awaitable[T]]) -> T:
        """Hide `record_id` immediately, run `perform`, then reconcile or roll back.

        The visible window is restored verbatim on failure. When the failure
        still removed the record (`DeleteFailed` with only a blob error) every
        entry is also invalidated so the next read drops the row. The
        exception raised by `perform` is re-raised after the rollback.
        """
        mutation_id = uuid.uuid4().hex
        self.dispatch(MutationIssued(mutation_id, record_id))
        try:
            result = await perform()
        except BaseException as exc:
            logging.warning("Delete of image %s failed, rolling back: %s", record_id, exc)
            self.dispatch(MutationFailed(mutation_id, exc))
            raise
        self.dispatch(MutationSucceeded(mutation_id))
        return result
