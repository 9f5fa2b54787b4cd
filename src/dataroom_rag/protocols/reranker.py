"""Protocol for reranking providers."""

from __future__ import annotations

from typing import Protocol

from dataroom_rag.models.domain import SearchResult


class Reranker(Protocol):
    async def rerank(
        self,
        query: str,
        candidates: list[SearchResult],
        top_n: int = 10,
    ) -> list[SearchResult]: ...
