"""Validation helpers for uploaded images."""

from pathlib import PurePath
from typing import Optional

ALLOWED_IMAGE_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/gif",
    "image/bmp",
    "image/tiff",
}

_EXT_BY_TYPE = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/bmp": "bmp",
    "image/tiff": "tiff",
}


def normalize_content_type(content_type: Optional[str]) -> str:
    return (content_type or "").lower().split(";", 1)[0].strip()


def validate_image_upload(filename: Optional[str], content_type: Optional[str], data: bytes) -> None:
    """Raise ValueError unless the upload is a non-empty image.

    The content type is checked against the allowed set; when it is missing
    the file extension must at least look like an image.
    """
    if not data:
        raise ValueError(f"Uploaded file {filename or '<unnamed>'} is empty.")
    ctype = normalize_content_type(content_type)
    if ctype:
        if ctype not in ALLOWED_IMAGE_TYPES:
            raise ValueError(f"Unsupported image content type: {content_type}")
    elif file_extension(filename) not in set(_EXT_BY_TYPE.values()) | {"jpeg", "tif"}:
        raise ValueError("Unsupported or missing image content type.")


def file_extension(filename: Optional[str]) -> str:
    return PurePath(filename or "").suffix.lstrip(".").lower()


def object_extension(filename: Optional[str], content_type: Optional[str]) -> str:
    """Pick the object name extension: the original file's, else one from the MIME type."""
    ext = file_extension(filename)
    if ext and ext.isalnum() and len(ext) <= 5:
        return ext
    return _EXT_BY_TYPE.get(normalize_content_type(content_type), "jpg")


def media_type_for(object_name: str) -> str:
    """Guess the MIME type of a stored object from its extension."""
    ext = file_extension(object_name)
    if ext in ("jpg", "jpeg"):
        return "image/jpeg"
    if ext == "tif":
        return "image/tiff"
    for ctype, known in _EXT_BY_TYPE.items():
        if known == ext:
            return ctype
    return "application/octet-stream"
