"""Environment-driven settings for the image enrichment service.

Values are read from the process environment. `main.py` loads a `.env` file
first (python-dotenv), so any key below may also live there.
"""

from __future__ import annotations

import os
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from exc


@dataclass
class Settings:
    """Runtime configuration.

    Attributes:
        database_dir: Directory holding the SQLite database file (required).
        blob_dir: Directory for the local blob store.
        blob_signing_secret: HMAC key used to sign local blob URLs.
        public_base_url: Base URL prefixed to signed local blob URLs.
        storage_backend: "local" or "supabase".
        ocr_provider: "google" or "openai".
        external_timeout_seconds: Upper bound for every external call.
    """

    database_dir: Path
    blob_dir: Path
    blob_signing_secret: str
    public_base_url: str = "http://localhost:8000"
    storage_backend: str = "local"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    supabase_bucket: str = "images"
    ocr_provider: str = "google"
    google_vision_api_key: Optional[str] = None
    openai_ocr_model: str = "gpt-5-mini"
    ocr_language_hints: List[str] = field(default_factory=lambda: ["ko", "en"])
    feature_model_id: str = "google/mobilenet_v1_1.0_224"
    external_timeout_seconds: float = 30.0
    signed_url_ttl_seconds: int = 3600
    fetch_url_ttl_seconds: int = 60
    list_stale_seconds: float = 300.0
    page_size: int = 10
    orphan_grace_seconds: int = 3600
    orphan_sweep_interval_seconds: int = 3600

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables.

        Raises:
            RuntimeError: If DATABASE_DIR is missing or a numeric value is malformed.
        """
        env_dir = os.getenv("DATABASE_DIR")
        if env_dir is None or not env_dir.strip():
            raise RuntimeError(
                "DATABASE_DIR environment variable must be set to a writable "
                "directory path where the SQLite database file will be stored."
            )
        database_dir = Path(env_dir).expanduser()
        blob_dir = Path(os.getenv("BLOB_DIR") or (database_dir / "images")).expanduser()

        hints = os.getenv("OCR_LANGUAGE_HINTS")
        language_hints = [h.strip() for h in hints.split(",") if h.strip()] if hints else ["ko", "en"]

        return cls(
            database_dir=database_dir,
            blob_dir=blob_dir,
            # A random secret still works for a single process; set one to share URLs across restarts.
            blob_signing_secret=os.getenv("BLOB_SIGNING_SECRET") or secrets.token_hex(32),
            public_base_url=(os.getenv("PUBLIC_BASE_URL") or "http://localhost:8000").rstrip("/"),
            storage_backend=(os.getenv("STORAGE_BACKEND") or "local").lower(),
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_key=os.getenv("SUPABASE_KEY") or os.getenv("SUPABASE_ANON_KEY"),
            supabase_bucket=os.getenv("SUPABASE_BUCKET") or "images",
            ocr_provider=(os.getenv("OCR_PROVIDER") or "google").lower(),
            google_vision_api_key=os.getenv("GOOGLE_VISION_API_KEY"),
            openai_ocr_model=os.getenv("OPENAI_OCR_MODEL") or "gpt-5-mini",
            ocr_language_hints=language_hints,
            feature_model_id=os.getenv("FEATURE_MODEL_ID") or "google/mobilenet_v1_1.0_224",
            external_timeout_seconds=_env_float("EXTERNAL_TIMEOUT_SECONDS", 30.0),
            signed_url_ttl_seconds=_env_int("SIGNED_URL_TTL_SECONDS", 3600),
            fetch_url_ttl_seconds=_env_int("FETCH_URL_TTL_SECONDS", 60),
            list_stale_seconds=_env_float("LIST_STALE_SECONDS", 300.0),
            page_size=_env_int("PAGE_SIZE", 10),
            orphan_grace_seconds=_env_int("ORPHAN_GRACE_SECONDS", 3600),
            orphan_sweep_interval_seconds=_env_int("ORPHAN_SWEEP_INTERVAL_SECONDS", 3600),
        )
