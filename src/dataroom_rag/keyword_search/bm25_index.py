"""BM25 keyword search index using rank_bm25, restricted per query to a document scope."""

from __future__ import annotations

import asyncio

import numpy as np
from rank_bm25 import BM25Okapi

from dataroom_rag.keyword_search.tokenizer import tokenize
from dataroom_rag.models.domain import ChunkRecord
from dataroom_rag.observability.logger import get_logger

logger = get_logger("bm25_index")


class ChunkKeywordIndex:
    def __init__(self) -> None:
        self._bm25: BM25Okapi | None = None
        self._chunks: list[ChunkRecord] = []
        self._write_lock = asyncio.Lock()

    def build(self, chunks: list[ChunkRecord]) -> None:
        """Build the BM25 index from a list of chunks. Replaces existing index."""
        self._chunks = list(chunks)
        tokenized_corpus = [tokenize(c.text) for c in self._chunks]
        if any(tokenized_corpus):
            self._bm25 = BM25Okapi(tokenized_corpus)
        else:
            self._bm25 = None
        logger.info("bm25_built", size=len(self._chunks))

    async def rebuild(self, chunks: list[ChunkRecord]) -> None:
        """Thread-safe rebuild of the BM25 index."""
        async with self._write_lock:
            await asyncio.to_thread(self.build, chunks)

    def search(
        self,
        query: str,
        document_ids: frozenset[str],
        top_k: int = 50,
        page_numbers: frozenset[int] | None = None,
    ) -> list[tuple[ChunkRecord, float]]:
        """Score only chunks that belong to ``document_ids`` (and ``page_numbers`` if given).

        Returns (chunk, score) pairs, best first, with non-positive scores dropped.
        """
        if self._bm25 is None or not self._chunks or not document_ids:
            return []
        tokenized_query = tokenize(query)
        if not tokenized_query:
            return []
        allowed = np.array(
            [
                c.document_id in document_ids
                and (not page_numbers or c.page_number in page_numbers)
                for c in self._chunks
            ],
            dtype=bool,
        )
        if not allowed.any():
            return []
        scores = self._bm25.get_scores(tokenized_query)
        scores = np.where(allowed, scores, -np.inf)
        top_indices = np.argsort(scores)[::-1][:top_k]
        return [
            (self._chunks[i], float(scores[i]))
            for i in top_indices
            if allowed[i] and scores[i] > 0
        ]

    def chunks_on_pages(
        self, document_ids: frozenset[str], page_numbers: frozenset[int]
    ) -> list[ChunkRecord]:
        return [
            c
            for c in self._chunks
            if c.document_id in document_ids and c.page_number in page_numbers
        ]

    @property
    def size(self) -> int:
        return len(self._chunks)
