"""Read access to stored conversations, scoped to the asking viewer."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from dataroom_rag.api.dependencies import get_session_store
from dataroom_rag.exceptions import SessionStoreError
from dataroom_rag.models.domain import ChatMessage, ChatScope
from dataroom_rag.models.schemas import (
    LastMessage,
    MessageOut,
    Pagination,
    SessionListResponse,
    SessionMessagesResponse,
    SessionSummary,
)
from dataroom_rag.storage.sqlite_session_store import SQLiteSessionStore

router = APIRouter()


def _scope(
    dataroom_id: str = Query(min_length=1),
    link_id: str = Query(min_length=1),
    viewer_id: str = Query(min_length=1),
) -> ChatScope:
    return ChatScope(dataroom_id=dataroom_id, link_id=link_id, viewer_id=viewer_id)


def _message_out(message: ChatMessage) -> MessageOut:
    return MessageOut(
        id=message.message_id,
        role=message.role.value,
        content=message.content,
        created_at=message.created_at.isoformat(),
        metadata=message.metadata or None,
    )


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    scope: ChatScope = Depends(_scope),
    limit: int = Query(20, ge=1, le=100),
    cursor: str | None = None,
    store: SQLiteSessionStore = Depends(get_session_store),
) -> SessionListResponse:
    sessions, total, next_cursor = await store.list_sessions(scope, limit=limit, cursor=cursor)
    summaries = []
    for session in sessions:
        last = session.last_message
        summaries.append(
            SessionSummary(
                id=session.session_id,
                title=session.title,
                created_at=session.created_at.isoformat(),
                updated_at=session.updated_at.isoformat(),
                message_count=session.message_count,
                last_message=(
                    LastMessage(
                        content=last.content,
                        role=last.role.value,
                        created_at=last.created_at.isoformat(),
                    )
                    if last is not None
                    else None
                ),
            )
        )
    return SessionListResponse(
        sessions=summaries,
        pagination=Pagination(
            limit=limit,
            total=total,
            has_next=next_cursor is not None,
            next_cursor=next_cursor,
        ),
    )


@router.get("/sessions/{session_id}/messages", response_model=SessionMessagesResponse)
async def session_messages(
    session_id: str,
    scope: ChatScope = Depends(_scope),
    store: SQLiteSessionStore = Depends(get_session_store),
) -> SessionMessagesResponse:
    try:
        messages = await store.get_session_messages(session_id, scope)
    except SessionStoreError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return SessionMessagesResponse(
        session_id=session_id,
        messages=[_message_out(m) for m in messages],
    )
