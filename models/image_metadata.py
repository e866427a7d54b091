"""Typed view over the open JSON metadata bag stored with each image.

The bag stays an open JSON document on disk. Downstream consumers read the
camelCase keys below directly, so they must not change. Keys this module does
not recognize are carried in `ImageMetadata.extra` and written back verbatim.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

UPLOAD_FIELDS = ("originalName", "size", "type")
OCR_FIELDS = ("ocrText", "ocrTimestamp", "ocrConfidence", "ocrLanguage")
FEATURE_FIELDS = ("features", "featureTimestamp")

FEATURE_VECTOR_LENGTH = 1001
CHANNEL_COUNT = 3
HISTOGRAM_BINS = 256


class JobKind(str, Enum):
    """The two enrichment job kinds."""

    OCR = "ocr"
    FEATURES = "features"


class EnrichmentState(str, Enum):
    """Derived from the two independent completion predicates."""

    UNPROCESSED = "unprocessed"
    OCR_DONE = "ocr_done"
    FEATURES_DONE = "features_done"
    BOTH = "both"

    @classmethod
    def from_flags(cls, ocr_done: bool, features_done: bool) -> "EnrichmentState":
        if ocr_done and features_done:
            return cls.BOTH
        if ocr_done:
            return cls.OCR_DONE
        if features_done:
            return cls.FEATURES_DONE
        return cls.UNPROCESSED


def is_ocr_complete(bag: Mapping[str, Any]) -> bool:
    """OCR ran iff both keys exist; an empty `ocrText` means no text was found."""
    return "ocrText" in bag and "ocrTimestamp" in bag


def is_features_complete(bag: Mapping[str, Any]) -> bool:
    return "features" in bag and "featureTimestamp" in bag


@dataclass
class UploadInfo:
    original_name: Optional[str] = None
    size: Optional[int] = None
    type: Optional[str] = None


@dataclass
class OcrResult:
    text: str
    timestamp: str
    confidence: Optional[float] = None
    language: Optional[str] = None

    def to_patch(self) -> Dict[str, Any]:
        """Return the full OCR field group; the group is always written together."""
        return {
            "ocrText": self.text,
            "ocrTimestamp": self.timestamp,
            "ocrConfidence": self.confidence,
            "ocrLanguage": self.language,
        }


@dataclass
class ImageFeatures:
    """Visual features produced by the feature extraction job."""

    mobile_net_features: List[float]
    mean: List[float]
    std: List[float]
    histogram: List[float]
    extracted_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KEYS = ("mobileNetFeatures", "mean", "std", "histogram", "extractedAt")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ImageFeatures":
        return cls(
            mobile_net_features=list(data.get("mobileNetFeatures") or []),
            mean=list(data.get("mean") or []),
            std=list(data.get("std") or []),
            histogram=list(data.get("histogram") or []),
            extracted_at=data.get("extractedAt"),
            extra={k: v for k, v in data.items() if k not in cls._KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(self.extra)
        out.update(
            {
                "mobileNetFeatures": list(self.mobile_net_features),
                "mean": list(self.mean),
                "std": list(self.std),
                "histogram": list(self.histogram),
            }
        )
        if self.extracted_at is not None:
            out["extractedAt"] = self.extracted_at
        return out

    def validate_shape(self) -> None:
        """Raise ValueError unless every component has its fixed length."""
        expected = {
            "mobileNetFeatures": (self.mobile_net_features, FEATURE_VECTOR_LENGTH),
            "mean": (self.mean, CHANNEL_COUNT),
            "std": (self.std, CHANNEL_COUNT),
            "histogram": (self.histogram, HISTOGRAM_BINS),
        }
        for name, (values, length) in expected.items():
            if len(values) != length:
                raise ValueError(f"{name} has {len(values)} entries, expected {length}")


@dataclass
class ImageMetadata:
    """Typed view of a metadata bag plus the unrecognized remainder."""

    upload: UploadInfo = field(default_factory=UploadInfo)
    ocr: Optional[OcrResult] = None
    features: Optional[ImageFeatures] = None
    feature_timestamp: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def enrichment_state(self) -> EnrichmentState:
        return EnrichmentState.from_flags(self.ocr is not None, self.features is not None)

    @classmethod
    def from_bag(cls, bag: Mapping[str, Any]) -> "ImageMetadata":
        extra = dict(bag)

        upload = UploadInfo(
            original_name=extra.pop("originalName", None),
            size=extra.pop("size", None),
            type=extra.pop("type", None),
        )

        # Incomplete groups stay in `extra` so they are written back untouched
        ocr = None
        if is_ocr_complete(bag):
            ocr = OcrResult(
                text=extra.pop("ocrText"),
                timestamp=extra.pop("ocrTimestamp"),
                confidence=extra.pop("ocrConfidence", None),
                language=extra.pop("ocrLanguage", None),
            )

        features = None
        feature_timestamp = None
        if is_features_complete(bag) and isinstance(bag["features"], Mapping):
            features = ImageFeatures.from_dict(extra.pop("features"))
            feature_timestamp = extra.pop("featureTimestamp")

        return cls(
            upload=upload,
            ocr=ocr,
            features=features,
            feature_timestamp=feature_timestamp,
            extra=extra,
        )

    def to_bag(self) -> Dict[str, Any]:
        bag: Dict[str, Any] = dict(self.extra)
        if self.upload.original_name is not None:
            bag["originalName"] = self.upload.original_name
        if self.upload.size is not None:
            bag["size"] = self.upload.size
        if self.upload.type is not None:
            bag["type"] = self.upload.type
        if self.ocr is not None:
            bag.update(self.ocr.to_patch())
        if self.features is not None:
            bag["features"] = self.features.to_dict()
            bag["featureTimestamp"] = self.feature_timestamp
        return bag
