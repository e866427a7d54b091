"""Feature extraction enrichment: model vector plus color statistics."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from models.image_metadata import ImageFeatures, JobKind
from services.enrichment.base_job import EnrichmentJob, utc_timestamp
from utils.errors import Unavailable, VendorError


class FeatureExtractionJob(EnrichmentJob):
    """Run the feature model over an image and store `features` + `featureTimestamp`.

    Args:
        model: A `FeatureModelHandle`; the job never loads a model on its own.
        load_timeout_seconds: Upper bound for the first, one-time model load.
    """

    kind = JobKind.FEATURES

    def __init__(self, record_store, url_cache, fetcher, model, timeout_seconds: float = 30.0,
                 url_ttl_seconds: Optional[int] = 60, load_timeout_seconds: float = 600.0) -> None:
        super().__init__(record_store, url_cache, fetcher, timeout_seconds, url_ttl_seconds)
        self.model = model
        self.load_timeout_seconds = load_timeout_seconds

    async def process(self, image_bytes: bytes) -> Dict[str, Any]:
        try:
            await self.bounded(self.model.get(), "feature model load", timeout=self.load_timeout_seconds)
            raw = await self.bounded(self.model.infer(image_bytes), "feature inference")
        except (Unavailable, VendorError):
            raise
        except ValueError as exc:
            raise VendorError(f"Feature model rejected the image: {exc}") from exc
        except Exception as exc:
            logging.exception("Feature model failed")
            raise VendorError(f"Feature model failed: {exc}") from exc

        timestamp = utc_timestamp()
        features = ImageFeatures(
            mobile_net_features=list(raw.get("mobileNetFeatures") or []),
            mean=list(raw.get("mean") or []),
            std=list(raw.get("std") or []),
            histogram=list(raw.get("histogram") or []),
            extracted_at=timestamp,
        )
        try:
            features.validate_shape()
        except ValueError as exc:
            raise VendorError(f"Feature model returned an unexpected shape: {exc}") from exc

        return {"features": features.to_dict(), "featureTimestamp": timestamp}
