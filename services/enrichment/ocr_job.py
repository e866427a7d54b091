"""OCR enrichment: detect text and store it in the metadata bag."""

from __future__ import annotations

import base64
import logging
from typing import Any, Dict, Optional, Sequence

from models.image_metadata import JobKind, OcrResult
from services.enrichment.base_job import EnrichmentJob, utc_timestamp
from utils.errors import Unavailable, VendorError


class OcrJob(EnrichmentJob):
    """Run the OCR vendor over an image.

    Writes `ocrText`, `ocrTimestamp`, `ocrConfidence` and `ocrLanguage`
    together. An image without text still completes, with `ocrText` = "".
    """

    kind = JobKind.OCR

    def __init__(self, record_store, url_cache, fetcher, vendor, language_hints: Sequence[str] = ("ko", "en"),
                 timeout_seconds: float = 30.0, url_ttl_seconds: Optional[int] = None) -> None:
        super().__init__(record_store, url_cache, fetcher, timeout_seconds, url_ttl_seconds)
        self.vendor = vendor
        self.language_hints = list(language_hints)

    async def process(self, image_bytes: bytes) -> Dict[str, Any]:
        # The vendor takes base64 content rather than raw bytes
        image_b64 = base64.b64encode(image_bytes).decode("ascii")
        try:
            detection = await self.bounded(self.vendor.detect_text(image_b64, self.language_hints), "OCR request")
            result = OcrResult(
                text=detection.text or "",
                timestamp=utc_timestamp(),
                confidence=detection.confidence,
                language=detection.language_code,
            )
        except (Unavailable, VendorError):
            raise
        except Exception as exc:
            logging.exception("OCR vendor failed")
            raise VendorError(f"OCR vendor failed: {exc}") from exc
        return result.to_patch()
