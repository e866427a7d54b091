"""Typed failures raised by the image store, blob store, and enrichment jobs.

Every error carries a human readable message so the HTTP layer can surface it
to the user without inspecting internals.
"""

from __future__ import annotations

from typing import Optional


class ImageServiceError(Exception):
    """Base class for all domain errors in this service."""


class NotFound(ImageServiceError):
    """A record or blob object does not exist."""


class Unavailable(ImageServiceError):
    """A store or external service is down, timed out, or unreachable."""


class Conflict(ImageServiceError):
    """A job of the same kind is already running for the same record."""


class CorruptMetadata(ImageServiceError):
    """Existing metadata bytes are present but cannot be decoded as a JSON object."""


class VendorError(ImageServiceError):
    """An OCR vendor or feature model rejected the input or returned an error payload."""


class OutOfRange(ImageServiceError):
    """A page request cannot be satisfied."""


class EnrichmentFailed(ImageServiceError):
    """An enrichment job could not complete.

    Attributes:
        kind: Job kind value (e.g. "ocr").
        record_id: Id of the record the job ran against.
        cause: The underlying exception.
    """

    def __init__(self, kind: str, record_id: int, cause: BaseException) -> None:
        self.kind = kind
        self.record_id = record_id
        self.cause = cause
        super().__init__(f"{kind} failed for image {record_id}: {cause}")


class DeleteFailed(ImageServiceError):
    """Deleting a record left at least one of its two parts behind."""

    def __init__(
        self,
        record_id: int,
        blob_error: Optional[BaseException] = None,
        record_error: Optional[BaseException] = None,
    ) -> None:
        self.record_id = record_id
        self.blob_error = blob_error
        self.record_error = record_error
        parts = []
        if blob_error is not None:
            parts.append(f"blob: {blob_error}")
        if record_error is not None:
            parts.append(f"record: {record_error}")
        super().__init__(f"Delete of image {record_id} incomplete ({'; '.join(parts)})")
