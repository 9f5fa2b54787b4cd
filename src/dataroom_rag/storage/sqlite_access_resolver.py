"""SQLite-backed access resolver: viewer group permissions narrowed to the requested scope."""

from __future__ import annotations

import time
from collections import OrderedDict

import aiosqlite

from dataroom_rag.config.constants import (
    ACCESS_NO_DOCUMENTS,
    ACCESS_NO_MATCH,
    ACCESS_NONE_INDEXED,
    ACCESS_UNAUTHORIZED,
)
from dataroom_rag.exceptions import AccessError
from dataroom_rag.models.domain import AccessResult, DocumentFilters, IndexedDocument
from dataroom_rag.observability.logger import get_logger
from dataroom_rag.storage.migrations import initialize_corpus_db

logger = get_logger("access_resolver")

ALL_DOCUMENTS = "*"


class SQLiteAccessResolver:
    """Resolves which indexed documents a viewer may query in a data room.

    A viewer in no group has default access to every document. A group with
    ``allow_all`` grants ``*``. Otherwise the union of the groups' viewable
    documents applies. The per-viewer document list is cached for
    ``cache_ttl_seconds``; scope narrowing runs on every call.
    """

    def __init__(self, db_path: str, cache_ttl_seconds: int = 900, cache_max_entries: int = 200) -> None:
        self._db_path = db_path
        self._ttl = cache_ttl_seconds
        self._max_entries = cache_max_entries
        self._cache: OrderedDict[tuple[str, str], tuple[float, tuple[IndexedDocument, ...]]] = OrderedDict()

    async def initialize(self) -> None:
        await initialize_corpus_db(self._db_path)

    async def resolve_accessible_documents(
        self, dataroom_id: str, viewer_id: str, filters: DocumentFilters
    ) -> AccessResult:
        documents = await self._accessible_documents(dataroom_id, viewer_id)
        if not documents:
            return AccessResult(access_error=ACCESS_NO_DOCUMENTS)

        indexed = tuple(d for d in documents if d.is_indexed)
        if not indexed:
            return AccessResult(access_error=ACCESS_NONE_INDEXED)

        requested = filters.requested_doc_ids
        if not requested:
            return AccessResult(documents=indexed)

        accessible_ids = {d.document_id for d in indexed}
        unauthorized = requested - accessible_ids
        if unauthorized:
            logger.warning(
                "access_denied",
                dataroom_id=dataroom_id,
                viewer_id=viewer_id,
                unauthorized=len(unauthorized),
            )
            return AccessResult(access_error=ACCESS_UNAUTHORIZED.format(count=len(unauthorized)))

        scoped = tuple(d for d in indexed if d.document_id in requested)
        if not scoped:
            return AccessResult(access_error=ACCESS_NO_MATCH)
        return AccessResult(documents=scoped)

    def invalidate(self, dataroom_id: str, viewer_id: str) -> None:
        self._cache.pop((dataroom_id, viewer_id), None)

    async def _accessible_documents(
        self, dataroom_id: str, viewer_id: str
    ) -> tuple[IndexedDocument, ...]:
        key = (dataroom_id, viewer_id)
        cached = self._cache.get(key)
        now = time.monotonic()
        if cached is not None and cached[0] > now:
            self._cache.move_to_end(key)
            return cached[1]

        try:
            documents = await self._load(dataroom_id, viewer_id)
        except aiosqlite.Error as e:
            raise AccessError(f"Failed to get accessible documents: {e}") from e

        self._cache[key] = (now + self._ttl, documents)
        self._cache.move_to_end(key)
        while len(self._cache) > self._max_entries:
            self._cache.popitem(last=False)
        logger.info(
            "access_resolved",
            dataroom_id=dataroom_id,
            viewer_id=viewer_id,
            documents=len(documents),
        )
        return documents

    async def _load(self, dataroom_id: str, viewer_id: str) -> tuple[IndexedDocument, ...]:
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT viewer_id FROM viewers WHERE viewer_id = ?", (viewer_id,)
            ) as cursor:
                if await cursor.fetchone() is None:
                    logger.info("viewer_not_found", viewer_id=viewer_id)
                    return ()

            permissions = await self._viewer_permissions(db, viewer_id)

            async with db.execute(
                "SELECT * FROM dataroom_documents WHERE dataroom_id = ? ORDER BY name",
                (dataroom_id,),
            ) as cursor:
                rows = await cursor.fetchall()

        return tuple(
            IndexedDocument(
                document_id=row["document_id"],
                name=row["name"],
                num_pages=row["num_pages"],
                doc_type=row["doc_type"] or "pdf",
                is_indexed=row["indexing_status"] == "completed",
            )
            for row in rows
            if permissions is None
            or ALL_DOCUMENTS in permissions
            or row["document_id"] in permissions
        )

    @staticmethod
    async def _viewer_permissions(db: aiosqlite.Connection, viewer_id: str) -> set[str] | None:
        """``None`` means default access: the viewer belongs to no group."""
        async with db.execute(
            "SELECT group_id, allow_all FROM viewer_groups WHERE viewer_id = ?", (viewer_id,)
        ) as cursor:
            groups = await cursor.fetchall()
        if not groups:
            return None
        if any(g["allow_all"] for g in groups):
            return {ALL_DOCUMENTS}

        group_ids = [g["group_id"] for g in groups]
        placeholders = ",".join("?" for _ in group_ids)
        async with db.execute(
            f"SELECT document_id FROM group_document_access "
            f"WHERE can_view = 1 AND group_id IN ({placeholders})",
            group_ids,
        ) as cursor:
            return {row["document_id"] async for row in cursor}
