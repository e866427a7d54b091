"""Per-channel statistics and intensity histogram for an image.

The image is decoded with Pillow, resized bilinearly to the model input size
and scaled to [0, 1] before any statistic is computed, so the numbers line up
with what the feature model sees.
"""

from __future__ import annotations

import io
from typing import Dict, List, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from models.image_metadata import HISTOGRAM_BINS

MODEL_INPUT_SIZE: Tuple[int, int] = (224, 224)


def load_normalized(image_bytes: bytes, size: Tuple[int, int] = MODEL_INPUT_SIZE) -> np.ndarray:
    """Decode `image_bytes` into an HxWx3 float32 array in [0, 1].

    Raises:
        ValueError: If the bytes are not a supported image.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as src:
            rgb = src.convert("RGB").resize(size, Image.BILINEAR)
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError("Bytes are not a supported image format") from exc
    return np.asarray(rgb, dtype=np.float32) / 255.0


def channel_mean(pixels: np.ndarray) -> List[float]:
    return pixels.mean(axis=(0, 1)).astype(float).tolist()


def channel_std(pixels: np.ndarray) -> List[float]:
    # Population standard deviation (sqrt of the per-channel variance)
    return pixels.std(axis=(0, 1)).astype(float).tolist()


def normalized_histogram(pixels: np.ndarray, bins: int = HISTOGRAM_BINS) -> List[float]:
    """Histogram of floor(v * 255) over every channel value, divided by its peak."""
    levels = np.clip(np.floor(pixels * 255), 0, bins - 1).astype(np.int64)
    counts = np.bincount(levels.ravel(), minlength=bins).astype(np.float64)
    peak = counts.max()
    if peak > 0:
        counts /= peak
    return counts.tolist()


def compute_color_statistics(image_bytes: bytes) -> Dict[str, List[float]]:
    """Return `mean`, `std`, and `histogram` for the image."""
    pixels = load_normalized(image_bytes)
    return {
        "mean": channel_mean(pixels),
        "std": channel_std(pixels),
        "histogram": normalized_histogram(pixels),
    }
