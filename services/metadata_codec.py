"""Encode, decode, and merge the per-record JSON metadata bag."""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional, Union

from utils.errors import CorruptMetadata

RawBag = Optional[Union[str, bytes]]


def decode(raw: RawBag) -> Dict[str, Any]:
    """Decode a stored bag, treating None or an empty value as an empty object.

    Raises:
        CorruptMetadata: If bytes are present but are not a JSON object.
    """
    if raw is None:
        return {}
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CorruptMetadata("Metadata is not valid UTF-8") from exc
    if not raw.strip():
        return {}
    try:
        bag = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise CorruptMetadata(f"Metadata is not valid JSON: {exc.msg}") from exc
    if not isinstance(bag, dict):
        raise CorruptMetadata(f"Metadata must be a JSON object, found {type(bag).__name__}")
    return bag


def encode(bag: Mapping[str, Any]) -> str:
    return json.dumps(dict(bag), ensure_ascii=False)


def merge(existing: RawBag, patch: Mapping[str, Any]) -> str:
    """Shallow-merge `patch` over the existing bag and return the encoded result.

    Patch keys win; every other key, recognized or not, is preserved. An
    undecodable existing bag aborts the merge instead of being reset.
    """
    bag = decode(existing)
    bag.update(patch)
    return encode(bag)
