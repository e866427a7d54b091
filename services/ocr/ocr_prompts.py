"""Prompt builders for model-based text detection."""

from typing import Sequence


def build_system_prompt() -> str:
    """Return the system prompt for the text detector."""
    return (
        "You are a meticulous OCR engine. "
        "Transcribe text exactly as it appears, without translating, correcting, or summarizing. "
        "Never invent text that is not visible."
    )


def build_user_prompt(language_hints: Sequence[str]) -> str:
    """Return the user prompt, mentioning the expected languages when known."""
    if language_hints:
        hint_text = f" The text is most likely in one of: {', '.join(language_hints)}."
    else:
        hint_text = ""
    return (
        "Extract all text from the following image and report it with the provided tool."
        f"{hint_text} If the image contains no text, report an empty string."
    )
