"""Tool schema for text detection through the Responses API."""

from typing import Any, Dict

FUNCTION_NAME = "report_detected_text"

FUNCTION_DEFINITION: Dict[str, Any] = {
    "type": "function",
    "name": FUNCTION_NAME,
    "description": (
        "Return every piece of text visible in the image, your confidence, and the dominant language."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "text": {
                "type": "string",
                "description": "All text in reading order, lines separated by newlines. Empty if none.",
            },
            "confidence": {
                "type": "number",
                "description": "Confidence between 0 and 1 that the transcription is accurate.",
            },
            "language_code": {
                "type": "string",
                "description": "BCP-47 code of the dominant language, or 'unknown'.",
            },
        },
        "required": ["text", "confidence", "language_code"],
        "additionalProperties": False,
    },
    "strict": True,
}
