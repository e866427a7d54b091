"""Text detection using OpenAI's Responses API with a forced tool call."""

import json
import logging
from typing import Any, Dict, List, Sequence

import openai
from openai import AsyncOpenAI

from services.ocr.ocr_detection import OcrDetection
from services.ocr.ocr_prompts import build_system_prompt, build_user_prompt
from services.ocr.ocr_schema import FUNCTION_DEFINITION, FUNCTION_NAME
from services.ocr.response_parser import parse_function_call
from utils.errors import Unavailable, VendorError


def to_image_data_url(image_b64: str, mime_type: str = "image/jpeg") -> str:
    """Wrap base64 image content in a data URL suitable for vision input."""
    return f"data:{mime_type};base64,{image_b64}"


def build_inputs(system_prompt: str, user_prompt: str, image_url: str) -> List[Dict[str, Any]]:
    """Build the Responses API input array: system, instructions, then the image."""
    return [
        {
            "type": "message",
            "role": "system",
            "content": [{"type": "input_text", "text": system_prompt}],
        },
        {"type": "message", "role": "user", "content": [{"type": "input_text", "text": user_prompt}]},
        {"type": "message", "role": "user", "content": [{"type": "input_image", "image_url": image_url}]},
    ]


class OpenAIVisionOCR:
    """OCR vendor backed by a vision-capable OpenAI model."""

    def __init__(self, client: AsyncOpenAI, model: str = "gpt-5-mini") -> None:
        """Initialize the detector with a shared OpenAI async client."""
        if client is None:
            raise ValueError("OpenAI client must be provided.")
        self.client = client
        self.model = model
        self.system_prompt = build_system_prompt()

    async def detect_text(self, image_b64: str, language_hints: Sequence[str] = ("ko", "en")) -> OcrDetection:
        inputs = build_inputs(
            self.system_prompt,
            build_user_prompt(language_hints),
            to_image_data_url(image_b64),
        )
        response = await self._create_response(inputs)
        try:
            args = parse_function_call(response, tool_name=FUNCTION_NAME)
        except (RuntimeError, json.JSONDecodeError) as exc:
            logging.error("Error parsing OpenAI response: %s", exc)
            raise VendorError(f"OCR model returned no usable result: {exc}") from exc

        return OcrDetection(
            text=args.get("text") or "",
            confidence=float(args.get("confidence") or 0.0),
            language_code=args.get("language_code") or "unknown",
        )

    async def _create_response(self, inputs: List[Dict[str, Any]]) -> Any:
        """Send the multimodal request to the OpenAI Responses API."""
        try:
            return await self.client.responses.create(
                model=self.model,
                input=inputs,
                tools=[FUNCTION_DEFINITION],
                tool_choice={"type": "function", "name": FUNCTION_NAME},
            )
        except openai.APIConnectionError as exc:
            logging.error("OpenAI Responses API unreachable: %s", exc)
            raise Unavailable(f"OCR model unreachable: {exc}") from exc
        except openai.APIStatusError as exc:
            logging.error("Error during OpenAI Responses API call: %s", exc)
            raise VendorError(f"OCR request failed: {exc.message}") from exc

    async def aclose(self) -> None:
        await self.client.close()
