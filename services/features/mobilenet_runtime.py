"""MobileNet feature runtime built on Hugging Face transformers.

torch and transformers are heavy and only needed when feature extraction
actually runs, so they are imported when the model is loaded. Install them
with the `model` extra.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from PIL import Image

from services.features.color_stats import MODEL_INPUT_SIZE, compute_color_statistics


@dataclass
class LoadedModel:
    """A loaded classifier and its matching image processor."""

    processor: Any
    model: Any
    device: str
    source: str


class MobileNetRuntime:
    """Load a MobileNet classifier once and run stateless inference.

    The default checkpoint (`google/mobilenet_v1_1.0_224`) has 1001 output
    classes including background; the softmax over those classes is the
    feature vector stored with the image.
    """

    def __init__(self, device: Optional[str] = None) -> None:
        self.device = device

    def load(self, model_uri: str) -> LoadedModel:
        import torch
        from transformers import AutoImageProcessor, AutoModelForImageClassification

        device = self.device or ("cuda" if torch.cuda.is_available() else "cpu")
        logging.info("Loading feature model from %s on %s", model_uri, device)
        processor = AutoImageProcessor.from_pretrained(model_uri)
        model = AutoModelForImageClassification.from_pretrained(model_uri).to(device)
        model.eval()
        return LoadedModel(processor=processor, model=model, device=device, source=model_uri)

    def infer(self, loaded: LoadedModel, image_bytes: bytes) -> Dict[str, List[float]]:
        import torch

        with Image.open(io.BytesIO(image_bytes)) as src:
            image = src.convert("RGB").resize(MODEL_INPUT_SIZE, Image.BILINEAR)

        inputs = loaded.processor(images=image, return_tensors="pt").to(loaded.device)
        with torch.no_grad():
            logits = loaded.model(**inputs).logits
        vector = torch.softmax(logits, dim=-1)[0].cpu().numpy().astype(float).tolist()

        result: Dict[str, List[float]] = {"mobileNetFeatures": vector}
        result.update(compute_color_statistics(image_bytes))
        return result

    def dispose(self, loaded: LoadedModel) -> None:
        import torch

        loaded.model.to("cpu")
        del loaded.model
        if torch.cuda.is_available():
            torch.cuda.empty_cache()
