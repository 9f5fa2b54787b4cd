"""Protocol for query embedding providers."""

from __future__ import annotations

from typing import Protocol


class Embedder(Protocol):
    @property
    def dimensions(self) -> int: ...

    async def embed_query(self, query: str) -> list[float]: ...
