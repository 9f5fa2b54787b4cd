"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from dataroom_rag.api.dependencies import get_chunk_store, get_vector_index
from dataroom_rag.models.schemas import HealthResponse
from dataroom_rag.storage.sqlite_chunk_store import SQLiteChunkStore
from dataroom_rag.vectorstore.faiss_store import ChunkVectorIndex

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(
    chunk_store: SQLiteChunkStore = Depends(get_chunk_store),
    vector_index: ChunkVectorIndex = Depends(get_vector_index),
) -> HealthResponse:
    return HealthResponse(
        status="ok",
        chunk_count=await chunk_store.count_chunks(),
        vector_index_size=vector_index.size,
    )
