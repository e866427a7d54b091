"""Result type shared by the OCR vendors."""

from dataclasses import dataclass


@dataclass
class OcrDetection:
    """Text detected in one image.

    Attributes:
        text: Full detected text; empty when the image has none.
        confidence: Vendor confidence in [0, 1]; 0 when not reported.
        language_code: Detected locale, or "unknown".
    """

    text: str
    confidence: float = 0.0
    language_code: str = "unknown"
