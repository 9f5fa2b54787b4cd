"""Protocol for scoped document search."""

from __future__ import annotations

from typing import Protocol

from dataroom_rag.models.domain import SearchResult


class DocumentSearcher(Protocol):
    async def lexical(
        self,
        query: str,
        document_ids: frozenset[str],
        top_k: int,
        page_numbers: frozenset[int] | None = None,
    ) -> list[SearchResult]: ...

    async def semantic(
        self,
        query: str,
        document_ids: frozenset[str],
        top_k: int,
        similarity_threshold: float = 0.0,
        page_numbers: frozenset[int] | None = None,
    ) -> list[SearchResult]: ...

    async def hybrid(
        self,
        query: str,
        document_ids: frozenset[str],
        top_k: int,
        similarity_threshold: float = 0.0,
        page_numbers: frozenset[int] | None = None,
    ) -> list[SearchResult]: ...

    async def page_chunks(
        self, document_ids: frozenset[str], page_numbers: frozenset[int], limit: int
    ) -> list[SearchResult]: ...
