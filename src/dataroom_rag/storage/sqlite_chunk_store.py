"""SQLite-backed read access to indexed chunks."""

from __future__ import annotations

import aiosqlite

from dataroom_rag.models.domain import ChunkRecord
from dataroom_rag.storage.migrations import initialize_corpus_db


class SQLiteChunkStore:
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    async def initialize(self) -> None:
        await initialize_corpus_db(self._db_path)

    async def save_chunks(self, chunks: list[ChunkRecord]) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.executemany(
                "INSERT OR REPLACE INTO chunks (chunk_id, document_id, text, page_number, chunk_index) "
                "VALUES (?, ?, ?, ?, ?)",
                [
                    (c.chunk_id, c.document_id, c.text, c.page_number, i)
                    for i, c in enumerate(chunks)
                ],
            )
            await db.commit()

    async def get_chunks_by_ids(self, chunk_ids: list[str]) -> dict[str, ChunkRecord]:
        if not chunk_ids:
            return {}
        placeholders = ",".join("?" for _ in chunk_ids)
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"SELECT * FROM chunks WHERE chunk_id IN ({placeholders})",
                chunk_ids,
            ) as cursor:
                rows = await cursor.fetchall()
                return {row["chunk_id"]: self._row_to_chunk(row) for row in rows}

    async def get_all_chunks(self) -> list[ChunkRecord]:
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM chunks ORDER BY document_id, chunk_index"
            ) as cursor:
                rows = await cursor.fetchall()
                return [self._row_to_chunk(row) for row in rows]

    async def count_chunks(self) -> int:
        async with aiosqlite.connect(self._db_path) as db:
            async with db.execute("SELECT COUNT(*) FROM chunks") as cursor:
                row = await cursor.fetchone()
                return row[0] if row else 0

    @staticmethod
    def _row_to_chunk(row: aiosqlite.Row) -> ChunkRecord:
        return ChunkRecord(
            chunk_id=row["chunk_id"],
            document_id=row["document_id"],
            text=row["text"],
            page_number=row["page_number"],
        )
