"""FastAPI dependency injection helpers."""

from __future__ import annotations

from fastapi import Request

from dataroom_rag.config.settings import Settings
from dataroom_rag.keyword_search.bm25_index import ChunkKeywordIndex
from dataroom_rag.pipeline.chat_pipeline import ChatPipeline
from dataroom_rag.storage.sqlite_chunk_store import SQLiteChunkStore
from dataroom_rag.storage.sqlite_session_store import SQLiteSessionStore
from dataroom_rag.vectorstore.faiss_store import ChunkVectorIndex


def get_chat_pipeline(request: Request) -> ChatPipeline:
    return request.app.state.chat_pipeline


def get_session_store(request: Request) -> SQLiteSessionStore:
    return request.app.state.session_store


def get_chunk_store(request: Request) -> SQLiteChunkStore:
    return request.app.state.chunk_store


def get_keyword_index(request: Request) -> ChunkKeywordIndex:
    return request.app.state.keyword_index


def get_vector_index(request: Request) -> ChunkVectorIndex:
    return request.app.state.vector_index


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
