"""Protocol for the access resolver."""

from __future__ import annotations

from typing import Protocol

from dataroom_rag.models.domain import AccessResult, DocumentFilters


class AccessResolver(Protocol):
    async def resolve_accessible_documents(
        self, dataroom_id: str, viewer_id: str, filters: DocumentFilters
    ) -> AccessResult: ...
