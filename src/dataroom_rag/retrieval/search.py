"""Scoped lexical, semantic and hybrid search over the chunk corpus."""

from __future__ import annotations

import asyncio

import numpy as np

from dataroom_rag.keyword_search.bm25_index import ChunkKeywordIndex
from dataroom_rag.models.domain import SearchResult
from dataroom_rag.observability.logger import get_logger
from dataroom_rag.protocols.embedder import Embedder
from dataroom_rag.retrieval.rrf import reciprocal_rank_fusion
from dataroom_rag.storage.sqlite_chunk_store import SQLiteChunkStore
from dataroom_rag.vectorstore.faiss_store import ChunkVectorIndex

logger = get_logger("search")


class DocumentSearchService:
    """Every search takes the allowed document-id set; nothing outside it is scored."""

    def __init__(
        self,
        keyword_index: ChunkKeywordIndex,
        vector_index: ChunkVectorIndex,
        chunk_store: SQLiteChunkStore,
        embedder: Embedder,
        rrf_k: int = 60,
    ) -> None:
        self._keyword_index = keyword_index
        self._vector_index = vector_index
        self._chunk_store = chunk_store
        self._embedder = embedder
        self._rrf_k = rrf_k

    async def lexical(
        self,
        query: str,
        document_ids: frozenset[str],
        top_k: int,
        page_numbers: frozenset[int] | None = None,
    ) -> list[SearchResult]:
        hits = await asyncio.to_thread(
            self._keyword_index.search, query, document_ids, top_k, page_numbers
        )
        return [
            SearchResult(
                chunk_id=chunk.chunk_id,
                document_id=chunk.document_id,
                content=chunk.text,
                score=score,
                page_number=chunk.page_number,
                source_method="bm25",
            )
            for chunk, score in hits
        ]

    async def semantic(
        self,
        query: str,
        document_ids: frozenset[str],
        top_k: int,
        similarity_threshold: float = 0.0,
        page_numbers: frozenset[int] | None = None,
    ) -> list[SearchResult]:
        if self._vector_index.size == 0:
            return []
        query_embedding = await self._embedder.embed_query(query)
        hits = await asyncio.to_thread(
            self._vector_index.search,
            np.array(query_embedding, dtype=np.float32),
            document_ids,
            top_k,
            page_numbers,
        )
        hits = [(cid, score) for cid, score in hits if score >= similarity_threshold]
        chunks = await self._chunk_store.get_chunks_by_ids([cid for cid, _ in hits])
        results = []
        for chunk_id, score in hits:
            chunk = chunks.get(chunk_id)
            if chunk is not None:
                results.append(
                    SearchResult(
                        chunk_id=chunk.chunk_id,
                        document_id=chunk.document_id,
                        content=chunk.text,
                        score=score,
                        page_number=chunk.page_number,
                        source_method="vector",
                    )
                )
        return results

    async def hybrid(
        self,
        query: str,
        document_ids: frozenset[str],
        top_k: int,
        similarity_threshold: float = 0.0,
        page_numbers: frozenset[int] | None = None,
    ) -> list[SearchResult]:
        lexical, semantic = await asyncio.gather(
            self.lexical(query, document_ids, top_k, page_numbers),
            self.semantic(query, document_ids, top_k, similarity_threshold, page_numbers),
        )
        logger.info("hybrid_results", bm25_count=len(lexical), vector_count=len(semantic))

        by_id = {r.chunk_id: r for r in [*semantic, *lexical]}
        fused = reciprocal_rank_fusion(
            [
                [(r.chunk_id, r.score) for r in semantic],
                [(r.chunk_id, r.score) for r in lexical],
            ],
            k=self._rrf_k,
        )
        return [
            SearchResult(
                chunk_id=chunk_id,
                document_id=by_id[chunk_id].document_id,
                content=by_id[chunk_id].content,
                score=score,
                page_number=by_id[chunk_id].page_number,
                source_method="hybrid",
            )
            for chunk_id, score in fused[:top_k]
        ]

    async def page_chunks(
        self, document_ids: frozenset[str], page_numbers: frozenset[int], limit: int
    ) -> list[SearchResult]:
        """Chunks on the requested pages in document order, for questions with no usable keywords."""
        chunks = self._keyword_index.chunks_on_pages(document_ids, page_numbers)
        return [
            SearchResult(
                chunk_id=c.chunk_id,
                document_id=c.document_id,
                content=c.text,
                score=0.0,
                page_number=c.page_number,
                source_method="page",
            )
            for c in chunks[:limit]
        ]
