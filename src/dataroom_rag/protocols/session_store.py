"""Protocol for chat session persistence."""

from __future__ import annotations

from typing import Any, Protocol

from dataroom_rag.models.domain import ChatScope, MessageRole


class SessionStore(Protocol):
    async def get_or_create_session(
        self, scope: ChatScope, title: str, session_id: str | None = None
    ) -> str: ...

    async def append_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> str: ...
