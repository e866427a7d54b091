"""Async Data Access Layer for the images table.

Provides ImageDAL, the durable record store, with async CRUD operations
compatible with `utils.database_init.AsyncDatabaseInitializer`.
"""

from __future__ import annotations

import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, List, Mapping, Optional, Sequence, Set, Tuple, Union

import aiosqlite

from models.image_record import ImageRecord
from services import metadata_codec
from utils.database_init import AsyncDatabaseInitializer
from utils.errors import Conflict, NotFound, Unavailable
from utils.keyed_locks import KeyedLocks


def _utc_now_iso(after: Optional[str] = None) -> str:
    """Return the current UTC time, strictly later than `after` when given."""
    now = datetime.now(timezone.utc)
    if after:
        previous = datetime.fromisoformat(after)
        if now <= previous:
            now = previous + timedelta(microseconds=1)
    return now.isoformat(timespec="microseconds")


@asynccontextmanager
async def _store_errors() -> AsyncIterator[None]:
    """Translate sqlite failures into the store's error taxonomy."""
    try:
        yield
    except sqlite3.IntegrityError as exc:
        raise Conflict(f"Record store rejected the write: {exc}") from exc
    except (sqlite3.OperationalError, sqlite3.DatabaseError, OSError) as exc:
        raise Unavailable(f"Record store unavailable: {exc}") from exc


class ImageDAL:
    """Data access layer for image records.

    The constructor accepts an `AsyncDatabaseInitializer` (or any object
    exposing an async `connection()` context manager that yields an
    `aiosqlite.Connection`).
    """

    _COLUMNS = ("id", "owner_id", "blob_ref", "metadata", "created_at", "updated_at")
    _COLUMN_LIST = ", ".join(_COLUMNS)

    def __init__(self, db_initializer: AsyncDatabaseInitializer) -> None:
        self._db = db_initializer
        self._record_locks = KeyedLocks()

    async def insert(
        self,
        owner_id: str,
        blob_ref: str,
        metadata: Union[Mapping[str, object], str, None] = None,
    ) -> ImageRecord:
        """Insert a new row and return the stored record.

        Args:
            owner_id: Identity of the uploading user.
            blob_ref: Object name of the uploaded bytes.
            metadata: Initial metadata bag (mapping or already-encoded JSON).
        """
        if isinstance(metadata, Mapping):
            metadata = metadata_codec.encode(metadata)
        now = _utc_now_iso()

        async with _store_errors(), self._db.connection() as conn:
            cur = await conn.execute(
                "INSERT INTO images (owner_id, blob_ref, metadata, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (owner_id, blob_ref, metadata, now, now),
            )
            await conn.commit()
            image_id = cur.lastrowid

        return ImageRecord(
            id=image_id,
            owner_id=owner_id,
            blob_ref=blob_ref,
            metadata=metadata,
            created_at=now,
            updated_at=now,
        )

    async def get(self, image_id: int) -> ImageRecord:
        """Return the record for `image_id`.

        Raises:
            NotFound: If no such row exists.
        """
        async with _store_errors(), self._db.connection() as conn:
            cur = await conn.execute(
                f"SELECT {self._COLUMN_LIST} FROM images WHERE id = ?",
                (image_id,),
            )
            row = await cur.fetchone()
        if row is None:
            raise NotFound(f"Image {image_id} not found")
        return self._row_to_record(row)

    async def update_metadata(self, image_id: int, metadata: Union[str, bytes]) -> ImageRecord:
        """Overwrite the metadata column and advance `updated_at`."""
        if isinstance(metadata, bytes):
            metadata = metadata.decode("utf-8")
        async with self._record_locks.hold(image_id):
            async with _store_errors(), self._db.connection() as conn:
                await conn.execute("BEGIN IMMEDIATE")
                current = await self._fetch_row(conn, image_id)
                record = await self._write_metadata(conn, current, metadata)
                await conn.commit()
        return record

    async def merge_metadata(self, image_id: int, patch: Mapping[str, object]) -> ImageRecord:
        """Read-merge-write `patch` into the stored bag as one transaction.

        Raises:
            NotFound: If the record disappeared.
            CorruptMetadata: If the stored bag cannot be decoded; nothing is written.
        """
        async with self._record_locks.hold(image_id):
            async with _store_errors(), self._db.connection() as conn:
                await conn.execute("BEGIN IMMEDIATE")
                try:
                    current = await self._fetch_row(conn, image_id)
                    merged = metadata_codec.merge(current.metadata, patch)
                    record = await self._write_metadata(conn, current, merged)
                except BaseException:
                    await conn.rollback()
                    raise
                await conn.commit()
        return record

    async def delete(self, image_id: int) -> None:
        """Delete the row for `image_id`.

        Raises:
            NotFound: If no row was deleted.
        """
        async with _store_errors(), self._db.connection() as conn:
            cur = await conn.execute("DELETE FROM images WHERE id = ?", (image_id,))
            await conn.commit()
            deleted = cur.rowcount
        if not deleted:
            raise NotFound(f"Image {image_id} not found")

    async def list(self, offset: int = 0, limit: int = 10) -> Tuple[List[ImageRecord], int]:
        """Return one window of rows, newest first, plus the total row count.

        Args:
            offset: Rows to skip.
            limit: Maximum number of rows to return.
        """
        async with _store_errors(), self._db.connection() as conn:
            cur = await conn.execute("SELECT COUNT(*) FROM images")
            (total,) = await cur.fetchone()
            cur = await conn.execute(
                f"SELECT {self._COLUMN_LIST} FROM images "
                "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                (limit, offset),
            )
            rows = await cur.fetchall()
        return [self._row_to_record(r) for r in rows], int(total)

    async def count(self) -> int:
        async with _store_errors(), self._db.connection() as conn:
            cur = await conn.execute("SELECT COUNT(*) FROM images")
            (total,) = await cur.fetchone()
        return int(total)

    async def blob_refs(self) -> Set[str]:
        """Return every object name referenced by a record."""
        async with _store_errors(), self._db.connection() as conn:
            cur = await conn.execute("SELECT DISTINCT blob_ref FROM images")
            rows = await cur.fetchall()
        return {r[0] for r in rows}

    async def _fetch_row(self, conn: aiosqlite.Connection, image_id: int) -> ImageRecord:
        cur = await conn.execute(
            f"SELECT {self._COLUMN_LIST} FROM images WHERE id = ?",
            (image_id,),
        )
        row = await cur.fetchone()
        if row is None:
            raise NotFound(f"Image {image_id} not found")
        return self._row_to_record(row)

    async def _write_metadata(
        self, conn: aiosqlite.Connection, current: ImageRecord, metadata: str
    ) -> ImageRecord:
        updated_at = _utc_now_iso(after=current.updated_at)
        await conn.execute(
            "UPDATE images SET metadata = ?, updated_at = ? WHERE id = ?",
            (metadata, updated_at, current.id),
        )
        current.metadata = metadata
        current.updated_at = updated_at
        return current

    @staticmethod
    def _row_to_record(row: Sequence[object]) -> ImageRecord:
        """Convert a DB row tuple into an ImageRecord."""
        return ImageRecord(
            id=row[0],
            owner_id=row[1],
            blob_ref=row[2],
            metadata=row[3],
            created_at=row[4],
            updated_at=row[5],
        )
