import pytest

from dal.supabase_blob_store import SupabaseBlobStore
from utils.errors import NotFound, Unavailable


class FakeBucket:
    def __init__(self):
        self.objects = {}
        self.list_calls = []

    def upload(self, name, data, options=None):
        self.objects[name] = data

    def download(self, name):
        if name not in self.objects:
            raise RuntimeError("Object not found")
        return self.objects[name]

    def remove(self, names):
        removed = [{"name": n} for n in names if self.objects.pop(n, None) is not None]
        return removed

    def create_signed_url(self, name, ttl):
        if name not in self.objects:
            raise RuntimeError("404: Object not found")
        return {"signedURL": f"https://storage.example/{name}?token=t&ttl={ttl}"}

    def get_public_url(self, name):
        return f"https://storage.example/public/{name}"

    def list(self, path=None, options=None):
        options = options or {}
        self.list_calls.append(dict(options))
        offset = options.get("offset", 0)
        limit = options.get("limit", 100)
        names = sorted(self.objects)[offset : offset + limit]
        return [{"name": n, "updated_at": "2024-01-01T00:00:00Z"} for n in names]


class FakeStorage:
    def __init__(self, bucket):
        self.bucket = bucket

    def from_(self, name):
        return self.bucket


class FakeClient:
    def __init__(self):
        self.storage = FakeStorage(FakeBucket())


@pytest.fixture
def store():
    return SupabaseBlobStore(None, None, client=FakeClient())


async def test_roundtrip_and_signing(store):
    await store.put("a.png", b"data", "image/png")
    assert await store.get("a.png") == b"data"
    assert (await store.sign_url("a.png", 60)).endswith("ttl=60")
    assert store.public_url("a.png").endswith("/public/a.png")
    objects = await store.list_objects()
    assert [o.name for o in objects] == ["a.png"]
    assert objects[0].modified_at > 0


async def test_missing_objects_are_not_found(store):
    with pytest.raises(NotFound):
        await store.get("missing.png")
    with pytest.raises(NotFound):
        await store.remove("missing.png")
    with pytest.raises(NotFound):
        await store.sign_url("missing.png", 60)


async def test_other_failures_are_unavailable(store, monkeypatch):
    def down(*args, **kwargs):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(store.client.storage.bucket, "download", down)
    with pytest.raises(Unavailable):
        await store.get("a.png")


def test_requires_credentials_without_client():
    with pytest.raises(RuntimeError):
        SupabaseBlobStore(None, None)


async def test_listing_reads_every_page(store):
    bucket = store.client.storage.bucket
    for i in range(250):
        bucket.objects[f"{i:03d}.png"] = b"x"

    objects = await store.list_objects()

    assert len(objects) == 250
    assert {o.name for o in objects} == set(bucket.objects)
    assert [c["offset"] for c in bucket.list_calls] == [0, 100, 200]


async def test_listing_stops_after_an_empty_page(store):
    bucket = store.client.storage.bucket
    for i in range(200):
        bucket.objects[f"{i:03d}.png"] = b"x"

    assert len(await store.list_objects()) == 200
    assert [c["offset"] for c in bucket.list_calls] == [0, 100, 200]
