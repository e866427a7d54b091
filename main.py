import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request

from routes.blob_route import router as blob_router
from routes.image_route import router as image_router
from services.app_services import AppServices, build_services
from utils.config import Settings

load_dotenv()  # Load environment variables from .env file if present

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def create_app(
    settings: Optional[Settings] = None,
    services_factory: Optional[Callable[[Settings], AppServices]] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application instance.

    Args:
        settings: Explicit settings; read from the environment at startup when omitted.
        services_factory: Builds the shared services from settings (defaults to
            `build_services`); tests use it to inject fakes.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Lifespan manager to initialize:
          - the SQLite record store (schema created if missing)
          - the blob store, URL cache, OCR vendor, and feature model handle
          - the periodic orphan blob sweep
        and attach them to `app.state`.
        """
        resolved = settings or Settings.from_env()
        services = (services_factory or build_services)(resolved)

        await services.db_initializer.ensure_database()
        app.state.services = services
        app.state.db_initializer = services.db_initializer
        services.start_background()

        try:
            yield
        finally:
            # Disposes the feature model and closes HTTP clients.
            await services.aclose()

    app = FastAPI(title="Image Enrichment Service", lifespan=lifespan)

    @app.get("/health")
    async def health(request: Request):
        """
        Simple health check reporting whether services are wired and the model is loaded.
        """
        services = getattr(request.app.state, "services", None)
        return {
            "ok": services is not None,
            "db_initialized": hasattr(request.app.state, "db_initializer"),
            "feature_model_loaded": bool(services and services.feature_model.loaded),
        }

    # Register application routers
    app.include_router(image_router)
    app.include_router(blob_router)

    return app


app = create_app()
