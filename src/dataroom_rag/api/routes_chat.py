"""Chat endpoint: one question in, a Server-Sent Events answer stream out."""

from __future__ import annotations

import asyncio
import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from dataroom_rag.config.constants import SESSION_HEADER_NAME
from dataroom_rag.api.dependencies import get_chat_pipeline
from dataroom_rag.exceptions import CancellationError
from dataroom_rag.models.domain import DocumentFilters, Query
from dataroom_rag.models.schemas import ChatMetadataEvent, ChatRequest
from dataroom_rag.observability.logger import get_logger
from dataroom_rag.pipeline.cancellation import CancellationToken
from dataroom_rag.pipeline.chat_pipeline import ChatPipeline, ChatReply, ReplyKind

logger = get_logger("routes_chat")

router = APIRouter()

DISCONNECT_POLL_S = 0.25

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _sse(event: str, data: str) -> str:
    return f"event: {event}\ndata: {data}\n\n"


def to_query(body: ChatRequest) -> Query:
    return Query(
        text=body.question,
        viewer_id=body.viewer_id,
        dataroom_id=body.dataroom_id,
        link_id=body.link_id,
        filters=DocumentFilters(
            selected_doc_ids=tuple(body.selected_doc_ids),
            selected_folder_ids=tuple(body.selected_folder_ids),
            folder_doc_ids=tuple(body.folder_doc_ids),
        ),
        session_id=body.session_id,
    )


def to_history(body: ChatRequest) -> list[tuple[str, str]]:
    return [
        (m.role, m.content)
        for m in body.history
        if m.role in ("user", "assistant") and m.content.strip()
    ]


async def _watch_disconnect(request: Request, token: CancellationToken) -> None:
    while not token.is_cancelled:
        if await request.is_disconnected():
            token.cancel("client disconnected")
            return
        await asyncio.sleep(DISCONNECT_POLL_S)


@router.post("/chat")
async def chat(
    body: ChatRequest,
    request: Request,
    pipeline: ChatPipeline = Depends(get_chat_pipeline),
) -> Response:
    token = CancellationToken()
    watcher = asyncio.create_task(_watch_disconnect(request, token))
    try:
        reply = await pipeline.handle(to_query(body), token, history=to_history(body))
    finally:
        watcher.cancel()

    if reply.kind is ReplyKind.REJECTED:
        return JSONResponse(status_code=reply.status_code, content={"detail": reply.message})
    if reply.kind is ReplyKind.ABORTED or reply.stream is None:
        return Response(status_code=reply.status_code)

    headers = dict(_SSE_HEADERS)
    if reply.session_id:
        headers[SESSION_HEADER_NAME] = reply.session_id
    return StreamingResponse(
        _event_stream(reply, token),
        media_type="text/event-stream",
        headers=headers,
    )


async def _event_stream(reply: ChatReply, token: CancellationToken):
    stream = reply.stream
    metadata = ChatMetadataEvent(session_id=reply.session_id, kind=reply.kind.value)
    try:
        yield _sse("metadata", metadata.model_dump_json())
        try:
            async for piece in stream:
                yield _sse("token", json.dumps({"text": piece}))
        except CancellationError:
            yield _sse("aborted", json.dumps({"trace_id": reply.trace_id}))
            return
        yield _sse("done", json.dumps({"trace_id": reply.trace_id, "status": stream.status.value}))
    finally:
        if not stream.finished:
            token.cancel("response stream closed")
        await stream.aclose()
