"""Dispatch enrichment jobs with per-record, per-kind mutual exclusion."""

from __future__ import annotations

import logging
from typing import Mapping, Set, Tuple, Union

from models.image_metadata import JobKind
from models.image_record import ImageRecord
from utils.errors import Conflict, EnrichmentFailed


class EnrichmentDispatcher:
    """Run one job per (record, kind) at a time.

    A second request for a pair that is already running is rejected with
    `Conflict` rather than queued. Different kinds, or different records,
    run concurrently. Nothing is retried; a retry is a new request.
    """

    def __init__(self, record_store, jobs: Mapping[JobKind, object]) -> None:
        self._store = record_store
        self._jobs = dict(jobs)
        self._in_flight: Set[Tuple[int, JobKind]] = set()

    def is_running(self, record_id: int, kind: Union[JobKind, str]) -> bool:
        return (record_id, JobKind(kind)) in self._in_flight

    async def run(self, kind: Union[JobKind, str], record_id: int) -> ImageRecord:
        """Run `kind` against `record_id` and return the updated record.

        Raises:
            ValueError: If `kind` is not a configured job kind.
            Conflict: If the same job is already running for this record.
            NotFound: If the record does not exist.
            EnrichmentFailed: If the job itself failed.
        """
        kind = JobKind(kind)
        job = self._jobs.get(kind)
        if job is None:
            raise ValueError(f"No job configured for kind {kind.value!r}")

        key = (record_id, kind)
        # Check and claim without an await in between so two tasks cannot both pass
        if key in self._in_flight:
            raise Conflict(f"{kind.value} is already running for image {record_id}")
        self._in_flight.add(key)

        try:
            record = await self._store.get(record_id)
            logging.info("Running %s for image %s", kind.value, record_id)
            updated = await job.run(record)
        except EnrichmentFailed as exc:
            logging.error("%s", exc)
            raise
        finally:
            self._in_flight.discard(key)

        logging.info("Finished %s for image %s", kind.value, record_id)
        return updated
