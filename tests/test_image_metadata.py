import pytest

from models.image_metadata import (
    EnrichmentState,
    ImageFeatures,
    ImageMetadata,
    is_features_complete,
    is_ocr_complete,
)


def _features(**overrides):
    data = {
        "mobileNetFeatures": [0.0] * 1001,
        "mean": [0.1, 0.2, 0.3],
        "std": [0.01, 0.02, 0.03],
        "histogram": [0.0] * 256,
        "extractedAt": "2024-01-01T00:00:00+00:00",
    }
    data.update(overrides)
    return data


def test_ocr_complete_requires_both_keys():
    assert not is_ocr_complete({"ocrText": "hi"})
    assert not is_ocr_complete({"ocrTimestamp": "t"})
    assert is_ocr_complete({"ocrText": "", "ocrTimestamp": "t"})


def test_features_complete_requires_both_keys():
    assert not is_features_complete({"features": _features()})
    assert is_features_complete({"features": _features(), "featureTimestamp": "t"})


@pytest.mark.parametrize(
    "ocr, features, expected",
    [
        (False, False, EnrichmentState.UNPROCESSED),
        (True, False, EnrichmentState.OCR_DONE),
        (False, True, EnrichmentState.FEATURES_DONE),
        (True, True, EnrichmentState.BOTH),
    ],
)
def test_enrichment_state_from_flags(ocr, features, expected):
    assert EnrichmentState.from_flags(ocr, features) is expected


def test_from_bag_splits_groups_and_keeps_unknown_keys():
    bag = {
        "originalName": "a.png",
        "size": 10,
        "type": "image/png",
        "ocrText": "",
        "ocrTimestamp": "t1",
        "ocrConfidence": 0.0,
        "ocrLanguage": "unknown",
        "features": _features(),
        "featureTimestamp": "t2",
        "ocr": "legacy text",
        "ocrDetails": {"words": 3},
    }
    meta = ImageMetadata.from_bag(bag)

    assert meta.upload.original_name == "a.png"
    assert meta.ocr is not None and meta.ocr.text == ""
    assert meta.features is not None and len(meta.features.mobile_net_features) == 1001
    assert meta.enrichment_state is EnrichmentState.BOTH
    assert meta.extra == {"ocr": "legacy text", "ocrDetails": {"words": 3}}
    assert meta.to_bag() == bag


def test_incomplete_ocr_group_stays_in_extra():
    meta = ImageMetadata.from_bag({"ocrText": "partial"})
    assert meta.ocr is None
    assert meta.extra == {"ocrText": "partial"}
    assert meta.enrichment_state is EnrichmentState.UNPROCESSED


def test_feature_shape_validation():
    ImageFeatures.from_dict(_features()).validate_shape()
    with pytest.raises(ValueError):
        ImageFeatures.from_dict(_features(mean=[0.1, 0.2])).validate_shape()
    with pytest.raises(ValueError):
        ImageFeatures.from_dict(_features(histogram=[0.0] * 255)).validate_shape()
