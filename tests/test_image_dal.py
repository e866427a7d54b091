import asyncio
import json

import pytest

from utils.errors import CorruptMetadata, NotFound


async def test_insert_and_get_roundtrip(dal):
    created = await dal.insert("user-1", "a.png", {"originalName": "a.png", "size": 3, "type": "image/png"})
    fetched = await dal.get(created.id)

    assert fetched.owner_id == "user-1"
    assert fetched.blob_ref == "a.png"
    assert json.loads(fetched.metadata) == {"originalName": "a.png", "size": 3, "type": "image/png"}
    assert fetched.created_at == fetched.updated_at


async def test_get_missing_raises_not_found(dal):
    with pytest.raises(NotFound):
        await dal.get(999)


async def test_list_is_newest_first_with_total(dal):
    ids = [(await dal.insert("u", f"{i}.png")).id for i in range(5)]

    records, total = await dal.list(offset=0, limit=3)
    assert total == 5
    assert [r.id for r in records] == ids[::-1][:3]

    records, _ = await dal.list(offset=3, limit=3)
    assert [r.id for r in records] == ids[::-1][3:]


async def test_count_and_blob_refs(dal):
    await dal.insert("u", "a.png")
    await dal.insert("u", "b.png")
    assert await dal.count() == 2
    assert await dal.blob_refs() == {"a.png", "b.png"}


async def test_merge_metadata_preserves_other_keys_and_advances_updated_at(dal):
    created = await dal.insert("u", "a.png", {"originalName": "a.png", "custom": [1]})

    merged = await dal.merge_metadata(created.id, {"ocrText": "hi", "ocrTimestamp": "t"})
    bag = json.loads(merged.metadata)

    assert bag == {"originalName": "a.png", "custom": [1], "ocrText": "hi", "ocrTimestamp": "t"}
    assert merged.updated_at > created.updated_at
    assert merged.created_at == created.created_at


async def test_concurrent_merges_of_different_groups_both_land(dal):
    created = await dal.insert("u", "a.png", {"originalName": "a.png"})

    await asyncio.gather(
        dal.merge_metadata(created.id, {"ocrText": "x", "ocrTimestamp": "t1"}),
        dal.merge_metadata(created.id, {"features": {"mean": [0, 0, 0]}, "featureTimestamp": "t2"}),
    )

    bag = json.loads((await dal.get(created.id)).metadata)
    assert set(bag) == {"originalName", "ocrText", "ocrTimestamp", "features", "featureTimestamp"}


async def test_record_locks_are_released_after_writes(dal):
    created = [await dal.insert("u", f"{i}.png", {"originalName": f"{i}.png"}) for i in range(5)]

    await asyncio.gather(*(dal.merge_metadata(r.id, {"ocrText": "x"}) for r in created))
    await dal.update_metadata(created[0].id, "{}")
    with pytest.raises(NotFound):
        await dal.merge_metadata(10_000, {"ocrText": "x"})

    assert len(dal._record_locks) == 0


async def test_merge_into_corrupt_metadata_writes_nothing(dal):
    created = await dal.insert("u", "a.png", "{broken")

    with pytest.raises(CorruptMetadata):
        await dal.merge_metadata(created.id, {"ocrText": "x"})

    assert (await dal.get(created.id)).metadata == "{broken"


async def test_update_metadata_accepts_bytes(dal):
    created = await dal.insert("u", "a.png")
    updated = await dal.update_metadata(created.id, b'{"a": 1}')
    assert updated.metadata == '{"a": 1}'
    assert updated.updated_at > created.updated_at


async def test_delete_then_missing(dal):
    created = await dal.insert("u", "a.png")
    await dal.delete(created.id)

    with pytest.raises(NotFound):
        await dal.get(created.id)
    with pytest.raises(NotFound):
        await dal.delete(created.id)


async def test_merge_on_deleted_record_raises_not_found(dal):
    created = await dal.insert("u", "a.png")
    await dal.delete(created.id)
    with pytest.raises(NotFound):
        await dal.merge_metadata(created.id, {"ocrText": "x"})


async def test_records_survive_a_new_initializer(db, dal):
    from dal.image_dal import ImageDAL
    from utils.database_init import AsyncDatabaseInitializer

    created = await dal.insert("u", "a.png")
    reopened = ImageDAL(AsyncDatabaseInitializer(db.db_dir))
    assert (await reopened.get(created.id)).blob_ref == "a.png"
