import asyncio
import io
import time
from pathlib import Path
from urllib.parse import unquote

import httpx
import pytest
from PIL import Image

from dal.blob_store import LocalBlobStore
from dal.image_dal import ImageDAL
from models.image_metadata import FEATURE_VECTOR_LENGTH
from services.app_services import build_services
from services.features.color_stats import compute_color_statistics
from services.ocr.ocr_detection import OcrDetection
from utils.config import Settings
from utils.database_init import AsyncDatabaseInitializer

SIGNING_SECRET = "test-secret"
BASE_URL = "http://testserver"


def make_png(color=(200, 30, 30), size=(32, 32)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeOcrVendor:
    """Returns a fixed detection; optionally blocks on `gate` or raises `error`."""

    def __init__(self, text="안녕 hello", confidence=0.93, language_code="ko") -> None:
        self.text = text
        self.confidence = confidence
        self.language_code = language_code
        self.error = None
        self.gate = None
        self.calls = []

    async def detect_text(self, image_b64, language_hints=("ko", "en")):
        self.calls.append((image_b64, list(language_hints)))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return OcrDetection(text=self.text, confidence=self.confidence, language_code=self.language_code)


class FakeFeatureRuntime:
    """Blocking runtime standing in for MobileNet; counts loads."""

    def __init__(self, load_delay: float = 0.0, vector_length: int = FEATURE_VECTOR_LENGTH) -> None:
        self.load_delay = load_delay
        self.vector_length = vector_length
        self.loads = 0
        self.disposed = []
        self.fail_next_load = False

    def load(self, model_uri):
        if self.load_delay:
            time.sleep(self.load_delay)
        if self.fail_next_load:
            self.fail_next_load = False
            raise RuntimeError("model download failed")
        self.loads += 1
        return {"uri": model_uri}

    def infer(self, model, image_bytes):
        result = {"mobileNetFeatures": [1.0 / self.vector_length] * self.vector_length}
        result.update(compute_color_statistics(image_bytes))
        return result

    def dispose(self, model):
        self.disposed.append(model)


def blob_transport(store: LocalBlobStore) -> httpx.MockTransport:
    """Serve signed local-blob URLs the way the /blobs route does."""

    def handler(request: httpx.Request) -> httpx.Response:
        name = unquote(request.url.path.rsplit("/", 1)[-1])
        expires = request.url.params.get("expires")
        signature = request.url.params.get("signature")
        if not expires or not store.verify(name, int(expires), signature):
            return httpx.Response(403)
        path = Path(store.base_dir) / name
        if not path.is_file():
            return httpx.Response(404)
        return httpx.Response(200, content=path.read_bytes())

    return httpx.MockTransport(handler)


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=time.time())


@pytest.fixture
async def db(tmp_path):
    initializer = AsyncDatabaseInitializer(tmp_path / "db")
    await initializer.ensure_database()
    return initializer


@pytest.fixture
def dal(db) -> ImageDAL:
    return ImageDAL(db)


@pytest.fixture
def blob_store(tmp_path, clock) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "blobs", SIGNING_SECRET, BASE_URL, clock=clock)


@pytest.fixture
async def http_client(blob_store):
    client = httpx.AsyncClient(transport=blob_transport(blob_store))
    yield client
    await client.aclose()


@pytest.fixture
def ocr_vendor() -> FakeOcrVendor:
    return FakeOcrVendor()


@pytest.fixture
def feature_runtime() -> FakeFeatureRuntime:
    return FakeFeatureRuntime()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_dir=tmp_path / "db",
        blob_dir=tmp_path / "blobs",
        blob_signing_secret=SIGNING_SECRET,
        public_base_url=BASE_URL,
        external_timeout_seconds=5.0,
        orphan_sweep_interval_seconds=0,
    )


@pytest.fixture
async def services(settings, blob_store, http_client, ocr_vendor, feature_runtime):
    built = build_services(
        settings,
        blob_store=blob_store,
        ocr_vendor=ocr_vendor,
        feature_runtime=feature_runtime,
        http_client=http_client,
    )
    await built.db_initializer.ensure_database()
    yield built
    await built.aclose()


async def wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)
