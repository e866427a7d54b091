import json
from types import SimpleNamespace

import httpx
import pytest

from services.ocr.google_vision import VISION_ENDPOINT, GoogleVisionOCR, parse_annotation
from services.ocr.ocr_schema import FUNCTION_NAME
from services.ocr.openai_vision import OpenAIVisionOCR
from utils.errors import Unavailable, VendorError


def _vision_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_parse_annotation_defaults():
    detection = parse_annotation({})
    assert detection.text == ""
    assert detection.confidence == 0.0
    assert detection.language_code == "unknown"


async def test_google_vision_request_and_parse():
    seen = {}

    def handler(request):
        seen["url"] = request.url
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "responses": [
                    {
                        "textAnnotations": [{"locale": "ko", "description": "안녕"}],
                        "fullTextAnnotation": {"text": "안녕\n", "pages": [{"confidence": 0.87}]},
                    }
                ]
            },
        )

    async with _vision_client(handler) as client:
        vendor = GoogleVisionOCR("key-123", client=client)
        detection = await vendor.detect_text("aGVsbG8=", ["ko", "en"])

    assert str(seen["url"]).startswith(VISION_ENDPOINT)
    assert seen["url"].params["key"] == "key-123"
    request = seen["body"]["requests"][0]
    assert request["image"] == {"content": "aGVsbG8="}
    assert request["features"] == [{"type": "TEXT_DETECTION"}]
    assert request["imageContext"] == {"languageHints": ["ko", "en"]}
    assert detection.text == "안녕\n"
    assert detection.confidence == 0.87
    assert detection.language_code == "ko"


async def test_google_vision_http_error_is_vendor_error():
    def handler(request):
        return httpx.Response(403, json={"error": {"message": "API key not valid"}})

    async with _vision_client(handler) as client:
        with pytest.raises(VendorError, match="API key not valid"):
            await GoogleVisionOCR("bad", client=client).detect_text("eA==")


async def test_google_vision_per_image_error_is_vendor_error():
    def handler(request):
        return httpx.Response(200, json={"responses": [{"error": {"message": "Bad image data"}}]})

    async with _vision_client(handler) as client:
        with pytest.raises(VendorError, match="Bad image data"):
            await GoogleVisionOCR("k", client=client).detect_text("eA==")


@pytest.mark.parametrize(
    "annotation",
    [
        {"fullTextAnnotation": {"text": "hi", "pages": ["not-a-page"]}},
        {"fullTextAnnotation": ["not", "a", "dict"]},
        {"fullTextAnnotation": {"pages": [{"confidence": "high"}]}},
        {"textAnnotations": [None]},
    ],
)
def test_malformed_annotation_is_vendor_error(annotation):
    with pytest.raises(VendorError):
        parse_annotation(annotation)


@pytest.mark.parametrize(
    "payload",
    [
        {"responses": [{"fullTextAnnotation": {"pages": ["not-a-page"]}}]},
        {"responses": ["not-a-response"]},
        {"responses": {"0": {}}},
        {"responses": [{"error": "quota exceeded"}]},
    ],
)
async def test_google_vision_malformed_body_is_vendor_error(payload):
    def handler(request):
        return httpx.Response(200, json=payload)

    async with _vision_client(handler) as client:
        with pytest.raises(VendorError):
            await GoogleVisionOCR("k", client=client).detect_text("eA==")


async def test_google_vision_network_failure_is_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with _vision_client(handler) as client:
        with pytest.raises(Unavailable):
            await GoogleVisionOCR("k", client=client).detect_text("eA==")


def test_google_vision_requires_key():
    with pytest.raises(ValueError):
        GoogleVisionOCR(None)


class _FakeResponses:
    def __init__(self, output):
        self.output = output
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        return SimpleNamespace(output=self.output)


def _openai_client(output):
    return SimpleNamespace(responses=_FakeResponses(output))


async def test_openai_vision_forces_tool_and_parses_arguments():
    call = SimpleNamespace(
        type="function_call",
        name=FUNCTION_NAME,
        arguments=json.dumps({"text": "hello", "confidence": 0.7, "language_code": "en"}),
    )
    client = _openai_client([call])

    detection = await OpenAIVisionOCR(client, model="test-model").detect_text("eA==", ["en"])

    kwargs = client.responses.kwargs
    assert kwargs["model"] == "test-model"
    assert kwargs["tool_choice"] == {"type": "function", "name": FUNCTION_NAME}
    image_part = kwargs["input"][-1]["content"][0]
    assert image_part["image_url"] == "data:image/jpeg;base64,eA=="
    assert (detection.text, detection.confidence, detection.language_code) == ("hello", 0.7, "en")


async def test_openai_vision_without_tool_call_is_vendor_error():
    client = _openai_client([SimpleNamespace(type="message", name=None)])
    with pytest.raises(VendorError):
        await OpenAIVisionOCR(client).detect_text("eA==")
