"""Build and tear down the shared services attached to `app.state`."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

import httpx
from openai import AsyncOpenAI

from dal.blob_store import LocalBlobStore
from dal.image_dal import ImageDAL
from dal.supabase_blob_store import SupabaseBlobStore
from models.image_metadata import JobKind
from services.enrichment.dispatcher import EnrichmentDispatcher
from services.enrichment.feature_job import FeatureExtractionJob
from services.enrichment.fetcher import BlobFetcher
from services.enrichment.ocr_job import OcrJob
from services.features.mobilenet_runtime import MobileNetRuntime
from services.features.model_handle import FeatureModelHandle
from services.image_manager import ImageManager
from services.image_service import ImageService
from services.ocr.google_vision import GoogleVisionOCR
from services.ocr.openai_vision import OpenAIVisionOCR
from services.orphan_sweeper import OrphanBlobSweeper
from services.signed_url_cache import SignedUrlCache
from utils.config import Settings
from utils.database_init import AsyncDatabaseInitializer


@dataclass
class AppServices:
    """Everything the routes need, created once per process."""

    settings: Settings
    db_initializer: AsyncDatabaseInitializer
    record_store: ImageDAL
    blob_store: Any
    url_cache: SignedUrlCache
    fetcher: BlobFetcher
    ocr_vendor: Any
    feature_model: FeatureModelHandle
    dispatcher: EnrichmentDispatcher
    image_service: ImageService
    image_manager: ImageManager
    sweeper: OrphanBlobSweeper
    _background: List[asyncio.Task] = field(default_factory=list)

    def start_background(self) -> None:
        if self.settings.orphan_sweep_interval_seconds > 0:
            self._background.append(
                asyncio.create_task(self.sweeper.run_periodic(self.settings.orphan_sweep_interval_seconds))
            )

    async def aclose(self) -> None:
        for task in self._background:
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()

        await self.feature_model.close()
        for closable in (self.fetcher, self.ocr_vendor):
            aclose = getattr(closable, "aclose", None)
            if aclose is None:
                continue
            try:
                await aclose()
            except Exception as exc:
                logging.warning("Error closing %s: %s", type(closable).__name__, exc)


def build_blob_store(settings: Settings):
    if settings.storage_backend == "supabase":
        return SupabaseBlobStore(settings.supabase_url, settings.supabase_key, settings.supabase_bucket)
    if settings.storage_backend != "local":
        raise RuntimeError(f"Unknown STORAGE_BACKEND {settings.storage_backend!r}")
    return LocalBlobStore(settings.blob_dir, settings.blob_signing_secret, settings.public_base_url)


def build_ocr_vendor(settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
    if settings.ocr_provider == "openai":
        try:
            client = AsyncOpenAI(timeout=settings.external_timeout_seconds)
        except Exception as exc:
            raise RuntimeError("Failed to initialize OpenAI Async client") from exc
        return OpenAIVisionOCR(client, model=settings.openai_ocr_model)
    if settings.ocr_provider != "google":
        raise RuntimeError(f"Unknown OCR_PROVIDER {settings.ocr_provider!r}")

    return GoogleVisionOCR(
        settings.google_vision_api_key,
        client=http_client,
        timeout_seconds=settings.external_timeout_seconds,
    )


def build_services(
    settings: Settings,
    *,
    blob_store=None,
    ocr_vendor=None,
    feature_runtime=None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> AppServices:
    """Wire every component from `settings`.

    Keyword arguments replace the configured blob store, OCR vendor, feature
    runtime, or HTTP client (tests pass fakes here).
    """
    timeout = settings.external_timeout_seconds

    db_initializer = AsyncDatabaseInitializer(settings.database_dir)
    record_store = ImageDAL(db_initializer)
    blob_store = blob_store or build_blob_store(settings)
    url_cache = SignedUrlCache(
        blob_store,
        default_ttl_seconds=settings.signed_url_ttl_seconds,
        timeout_seconds=timeout,
    )
    fetcher = BlobFetcher(client=http_client, timeout_seconds=timeout)
    ocr_vendor = ocr_vendor or build_ocr_vendor(settings, http_client)
    feature_model = FeatureModelHandle(feature_runtime or MobileNetRuntime(), settings.feature_model_id)

    jobs = {
        JobKind.OCR: OcrJob(
            record_store,
            url_cache,
            fetcher,
            ocr_vendor,
            language_hints=settings.ocr_language_hints,
            timeout_seconds=timeout,
            url_ttl_seconds=settings.signed_url_ttl_seconds,
        ),
        JobKind.FEATURES: FeatureExtractionJob(
            record_store,
            url_cache,
            fetcher,
            feature_model,
            timeout_seconds=timeout,
            url_ttl_seconds=settings.fetch_url_ttl_seconds,
        ),
    }
    dispatcher = EnrichmentDispatcher(record_store, jobs)
    image_service = ImageService(record_store, blob_store, url_cache)
    image_manager = ImageManager(
        image_service,
        dispatcher,
        url_cache,
        page_size=settings.page_size,
        stale_after_seconds=settings.list_stale_seconds,
    )
    sweeper = OrphanBlobSweeper(record_store, blob_store, grace_seconds=settings.orphan_grace_seconds)

    return AppServices(
        settings=settings,
        db_initializer=db_initializer,
        record_store=record_store,
        blob_store=blob_store,
        url_cache=url_cache,
        fetcher=fetcher,
        ocr_vendor=ocr_vendor,
        feature_model=feature_model,
        dispatcher=dispatcher,
        image_service=image_service,
        image_manager=image_manager,
        sweeper=sweeper,
    )
