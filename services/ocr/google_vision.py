"""Text detection through the Google Cloud Vision REST API."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence

import httpx

from services.ocr.ocr_detection import OcrDetection
from utils.errors import Unavailable, VendorError

VISION_ENDPOINT = "https://vision.googleapis.com/v1/images:annotate"


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return f"HTTP {response.status_code}"


def parse_annotation(result: Dict[str, Any]) -> OcrDetection:
    """Build an OcrDetection from one entry of the `responses` array.

    Raises:
        VendorError: If the entry does not have the documented shape.
    """
    try:
        full = result.get("fullTextAnnotation") or {}
        pages = full.get("pages") or []
        annotations = result.get("textAnnotations") or []
        return OcrDetection(
            text=str(full.get("text") or ""),
            confidence=float((pages[0].get("confidence") if pages else None) or 0.0),
            language_code=(annotations[0].get("locale") if annotations else None) or "unknown",
        )
    except (AttributeError, TypeError, ValueError, KeyError, IndexError) as exc:
        raise VendorError(f"Vision API returned a malformed annotation: {exc}") from exc


class GoogleVisionOCR:
    """OCR vendor calling `images:annotate` with TEXT_DETECTION.

    Args:
        api_key: Google Cloud API key with Vision enabled.
        client: Optional shared `httpx.AsyncClient`; one is created otherwise.
        timeout_seconds: Request timeout.
    """

    def __init__(self, api_key: Optional[str], client: Optional[httpx.AsyncClient] = None, timeout_seconds: float = 30.0) -> None:
        if not api_key:
            raise ValueError("GOOGLE_VISION_API_KEY must be set for the google OCR provider.")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def detect_text(self, image_b64: str, language_hints: Sequence[str] = ("ko", "en")) -> OcrDetection:
        """Detect text in base64-encoded image content.

        Raises:
            VendorError: On a non-2xx response or an error payload.
            Unavailable: On network failure or timeout.
        """
        body = {
            "requests": [
                {
                    "image": {"content": image_b64},
                    "features": [{"type": "TEXT_DETECTION"}],
                    "imageContext": {"languageHints": list(language_hints)},
                }
            ]
        }
        try:
            response = await self.client.post(
                VISION_ENDPOINT,
                params={"key": self.api_key},
                json=body,
                timeout=self.timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            raise Unavailable("Vision API request timed out") from exc
        except httpx.HTTPError as exc:
            raise Unavailable(f"Vision API request failed: {exc}") from exc

        if response.is_error:
            message = _error_message(response)
            logging.error("Vision API returned %s: %s", response.status_code, message)
            raise VendorError(f"OCR request failed: {message}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise VendorError("Vision API returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise VendorError("Vision API returned an unexpected body")

        responses = payload.get("responses") or [{}]
        if not isinstance(responses, list) or not isinstance(responses[0], dict):
            raise VendorError("Vision API returned an unexpected body")
        result = responses[0]
        error = result.get("error")
        if error:
            message = error.get("message", "unknown error") if isinstance(error, dict) else error
            raise VendorError(f"OCR request failed: {message}")
        return parse_annotation(result)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
