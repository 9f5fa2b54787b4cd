"""FastAPI application factory with lifespan management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from dataroom_rag.api.middleware import RequestTimingMiddleware
from dataroom_rag.api.routes_chat import router as chat_router
from dataroom_rag.api.routes_health import router as health_router
from dataroom_rag.api.routes_sessions import router as sessions_router
from dataroom_rag.config.settings import Settings
from dataroom_rag.embeddings.openai_embedder import OpenAIEmbedder
from dataroom_rag.exceptions import ConfigurationError
from dataroom_rag.generation.answer_generator import AnswerGenerator
from dataroom_rag.generation.fallback import FallbackResponder
from dataroom_rag.generation.gemini_provider import GeminiProvider
from dataroom_rag.keyword_search.bm25_index import ChunkKeywordIndex
from dataroom_rag.observability.logger import get_logger, setup_logging
from dataroom_rag.pipeline.chat_pipeline import ChatPipeline
from dataroom_rag.pipeline.session_tracker import SessionTracker
from dataroom_rag.query.rewriting import QueryRewriter
from dataroom_rag.query.strategy import StrategySelector
from dataroom_rag.query.understanding import QueryAnalyzer
from dataroom_rag.retrieval.compression import ContextCompressor
from dataroom_rag.retrieval.grading import DocumentGrader
from dataroom_rag.retrieval.orchestrator import RetrievalOrchestrator
from dataroom_rag.retrieval.reranker_cross_encoder import CrossEncoderReranker
from dataroom_rag.retrieval.search import DocumentSearchService
from dataroom_rag.storage.sqlite_access_resolver import SQLiteAccessResolver
from dataroom_rag.storage.sqlite_chunk_store import SQLiteChunkStore
from dataroom_rag.storage.sqlite_session_store import SQLiteSessionStore
from dataroom_rag.storage.sqlite_telemetry_store import SQLiteTelemetryStore
from dataroom_rag.vectorstore.faiss_store import ChunkVectorIndex

logger = get_logger("app")

# Upper bound on waiting for detached session writes at shutdown.
SHUTDOWN_DRAIN_S = 5.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = Settings()
    setup_logging(settings.log_level, settings.json_logs)

    for path in [settings.corpus_db_path, settings.session_db_path, settings.telemetry_db_path]:
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    # Storage
    chunk_store = SQLiteChunkStore(settings.corpus_db_path)
    await chunk_store.initialize()
    access_resolver = SQLiteAccessResolver(
        settings.corpus_db_path,
        cache_ttl_seconds=settings.access_cache_ttl_seconds,
        cache_max_entries=settings.access_cache_max_entries,
    )
    await access_resolver.initialize()
    session_store = SQLiteSessionStore(settings.session_db_path)
    await session_store.initialize()
    telemetry_store = SQLiteTelemetryStore(settings.telemetry_db_path)
    await telemetry_store.initialize()

    # Indexes
    keyword_index = ChunkKeywordIndex()
    all_chunks = await chunk_store.get_all_chunks()
    if all_chunks:
        keyword_index.build(all_chunks)
    vector_index = ChunkVectorIndex(
        dimensions=settings.embedding_dimensions,
        index_path=settings.faiss_index_path,
    )
    if vector_index.dimensions != settings.embedding_dimensions:
        raise ConfigurationError(
            f"FAISS index has {vector_index.dimensions} dimensions, "
            f"embedding model is configured for {settings.embedding_dimensions}"
        )

    # Providers
    embedder = OpenAIEmbedder(
        api_key=settings.openai_api_key,
        model=settings.embedding_model,
        dimensions=settings.embedding_dimensions,
    )
    llm = GeminiProvider(api_key=settings.google_api_key, model=settings.gemini_model)

    # Pipeline
    searcher = DocumentSearchService(
        keyword_index=keyword_index,
        vector_index=vector_index,
        chunk_store=chunk_store,
        embedder=embedder,
        rrf_k=settings.rrf_k,
    )
    generator = AnswerGenerator(
        llm, temperature=settings.gemini_temperature, max_tokens=settings.gemini_max_tokens
    )
    reranker = CrossEncoderReranker(settings.reranker_model) if settings.rerank_enabled else None
    grader = (
        DocumentGrader(
            llm,
            relevance_threshold=settings.grading_relevance_threshold,
            concurrency=settings.grading_concurrency,
        )
        if settings.grading_enabled
        else None
    )
    compressor = (
        ContextCompressor(llm, max_tokens=settings.compression_max_tokens)
        if settings.compression_enabled
        else None
    )
    sessions = SessionTracker(session_store, telemetry_store)
    chat_pipeline = ChatPipeline(
        analyzer=QueryAnalyzer(settings, rewriter=QueryRewriter(llm)),
        selector=StrategySelector(settings),
        access_resolver=access_resolver,
        orchestrator=RetrievalOrchestrator(
            searcher, generator, settings, reranker=reranker, grader=grader, compressor=compressor
        ),
        fallback=FallbackResponder(),
        sessions=sessions,
        settings=settings,
    )

    app.state.chat_pipeline = chat_pipeline
    app.state.session_store = session_store
    app.state.chunk_store = chunk_store
    app.state.keyword_index = keyword_index
    app.state.vector_index = vector_index
    app.state.settings = settings

    logger.info(
        "startup_complete",
        chunks=keyword_index.size,
        vector_index_size=vector_index.size,
    )

    yield

    await sessions.drain(timeout=SHUTDOWN_DRAIN_S)
    logger.info("shutdown_complete")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Data Room RAG",
        version="1.0.0",
        description="Time-boxed, cancelable question answering over permission-scoped data rooms",
        lifespan=lifespan,
    )
    app.add_middleware(RequestTimingMiddleware)
    app.include_router(health_router, tags=["health"])
    app.include_router(chat_router, tags=["chat"])
    app.include_router(sessions_router, tags=["sessions"])
    return app
