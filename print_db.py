"""Print every stored image record with its enrichment state.

Reads the same `DATABASE_DIR` as the application (via `utils.config.Settings`)
and walks the `images` table newest first. Records whose metadata cannot be
decoded are reported instead of aborting the listing.

Run: set the `DATABASE_DIR` environment variable and run `python print_db.py`.
"""
import asyncio

from dotenv import load_dotenv

from dal.image_dal import ImageDAL
from models.image_metadata import EnrichmentState, is_features_complete, is_ocr_complete
from models.image_record import ImageRecord
from services.metadata_codec import decode
from utils.config import Settings
from utils.database_init import AsyncDatabaseInitializer
from utils.errors import CorruptMetadata

BATCH_SIZE = 100


def describe(record: ImageRecord) -> str:
    """Return a one-line summary of a record.

    Args:
        record: The record to summarize.

    Returns:
        A string with the id, owner, object name, and enrichment state.
    """
    head = f"id={record.id} owner={record.owner_id!r} blob={record.blob_ref}"
    try:
        bag = decode(record.metadata)
    except CorruptMetadata as exc:
        return f"{head} metadata=CORRUPT ({exc})"

    state = EnrichmentState.from_flags(is_ocr_complete(bag), is_features_complete(bag))
    line = f"{head} state={state.value}"
    text = (bag.get("ocrText") or "").strip()
    if text:
        snippet = text if len(text) <= 60 else text[:57] + "..."
        line += f" ocr={snippet!r}"
    return line


async def main() -> None:
    """Ensure the DB exists and print one line per image record."""
    load_dotenv()
    settings = Settings.from_env()
    initializer = AsyncDatabaseInitializer(settings.database_dir)
    await initializer.ensure_database()
    dal = ImageDAL(initializer)

    offset = 0
    while True:
        records, total = await dal.list(offset, BATCH_SIZE)
        if offset == 0:
            print(f"{total} image record(s)")
        for record in records:
            print("  " + describe(record))
        offset += len(records)
        if not records or offset >= total:
            break


if __name__ == "__main__":
    asyncio.run(main())
