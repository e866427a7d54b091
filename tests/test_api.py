from urllib.parse import urlparse

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import FakeFeatureRuntime, FakeOcrVendor, make_png
from dal.blob_store import LocalBlobStore
from main import create_app
from services.app_services import build_services


@pytest.fixture
def client(settings):
    app_ref = {}

    def factory(resolved):
        blob_store = LocalBlobStore(resolved.blob_dir, resolved.blob_signing_secret, resolved.public_base_url)
        # Signed URLs point back at this app's /blobs route
        http_client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app_ref["app"]))
        return build_services(
            resolved,
            blob_store=blob_store,
            ocr_vendor=FakeOcrVendor(text="receipt total 1,000"),
            feature_runtime=FakeFeatureRuntime(),
            http_client=http_client,
        )

    app = create_app(settings, services_factory=factory)
    app_ref["app"] = app
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client


def _upload(client, count=1, owner="user-1"):
    files = [("files", (f"{i}.png", make_png(color=(i * 40, 10, 10)), "image/png")) for i in range(count)]
    return client.post("/images", files=files, headers={"X-User-Id": owner})


def test_health(client):
    body = client.get("/health").json()
    assert body["ok"] is True
    assert body["feature_model_loaded"] is False


def test_upload_requires_identity(client):
    response = client.post("/images", files=[("files", ("a.png", make_png(), "image/png"))])
    assert response.status_code == 401


def test_upload_rejects_non_image(client):
    response = client.post(
        "/images",
        files=[("files", ("a.txt", b"hello", "text/plain"))],
        headers={"X-User-Id": "user-1"},
    )
    assert response.status_code == 400


def test_upload_then_list(client):
    created = _upload(client, count=3).json()["images"]
    assert [img["metadata"]["originalName"] for img in created] == ["0.png", "1.png", "2.png"]

    body = client.get("/images", params={"page": 1, "size": 2}).json()
    assert body["total_count"] == 3
    assert body["total_pages"] == 2
    assert [img["id"] for img in body["images"]] == [created[2]["id"], created[1]["id"]]
    assert all(img["enrichment_state"] == "unprocessed" for img in body["images"])
    assert all(img["url"].startswith("http://testserver/blobs/") for img in body["images"])


def test_signed_url_serves_bytes_and_rejects_tampering(client):
    created = _upload(client).json()["images"][0]
    url = urlparse(created["url"])

    ok = client.get(f"{url.path}?{url.query}")
    assert ok.status_code == 200
    assert ok.headers["content-type"] == "image/png"

    tampered = client.get(f"{url.path}?{url.query[:-4]}0000")
    assert tampered.status_code == 403


def test_enrichment_endpoints(client):
    image_id = _upload(client).json()["images"][0]["id"]

    ocr = client.post(f"/images/{image_id}/ocr")
    assert ocr.status_code == 200
    assert ocr.json()["metadata"]["ocrText"] == "receipt total 1,000"
    assert ocr.json()["enrichment_state"] == "ocr_done"

    features = client.post(f"/images/{image_id}/features")
    assert features.status_code == 200
    assert len(features.json()["metadata"]["features"]["mobileNetFeatures"]) == 1001

    body = client.get(f"/images/{image_id}").json()
    assert body["enrichment_state"] == "both"
    assert client.get("/health").json()["feature_model_loaded"] is True


def test_delete_and_missing_image(client):
    image_id = _upload(client).json()["images"][0]["id"]

    assert client.delete(f"/images/{image_id}").json() == {"deleted": image_id}
    assert client.get(f"/images/{image_id}").status_code == 404
    assert client.delete(f"/images/{image_id}").status_code == 404
    assert client.post(f"/images/{image_id}/ocr").status_code == 404


def test_signed_urls_batch_skips_unknown_names(client):
    created = _upload(client).json()["images"][0]
    body = client.post(
        "/images/signed-urls", json={"object_names": [created["blob_ref"], "missing.png"]}
    ).json()
    assert list(body["urls"]) == [created["blob_ref"]]


def test_empty_listing_and_out_of_range(client):
    body = client.get("/images").json()
    assert body["images"] == [] and body["page"] == 1
    assert client.get("/images", params={"page": 2}).status_code == 400
    assert client.get("/images", params={"size": 0}).status_code == 400


def test_corrupt_metadata_is_listed_but_not_enriched(client):
    image_id = _upload(client).json()["images"][0]["id"]
    services = client.app.state.services
    client.portal.call(services.record_store.update_metadata, image_id, "{broken")

    listed = client.get(f"/images/{image_id}").json()
    assert listed["metadata"] is None
    assert "metadata_error" in listed

    assert client.post(f"/images/{image_id}/ocr").status_code == 422


def test_orphan_sweep_route_keeps_referenced_blobs(client):
    created = _upload(client).json()["images"][0]
    assert client.post("/images/orphans/sweep").json() == {"removed": 0}
    assert client.get(f"/images/{created['id']}").json()["url"] is not None
