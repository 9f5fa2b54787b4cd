"""Shared test fixtures and in-memory collaborators."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from uuid import uuid4

import pytest

from dataroom_rag.config.settings import Settings
from dataroom_rag.exceptions import GenerationError, RetrievalError
from dataroom_rag.generation.answer_generator import AnswerGenerator
from dataroom_rag.generation.fallback import FallbackResponder
from dataroom_rag.models.domain import (
    AccessResult,
    ChatScope,
    IndexedDocument,
    MessageRole,
    SearchResult,
)
from dataroom_rag.pipeline.chat_pipeline import ChatPipeline
from dataroom_rag.pipeline.session_tracker import SessionTracker
from dataroom_rag.query.rewriting import QueryRewriter, RewriteResponse
from dataroom_rag.query.strategy import StrategySelector
from dataroom_rag.query.understanding import QueryAnalyzer
from dataroom_rag.retrieval.compression import DocumentSummary
from dataroom_rag.retrieval.grading import DocumentGrade
from dataroom_rag.retrieval.orchestrator import RetrievalOrchestrator


class FakeProvider:
    """Streams fixed pieces; counts how often the upstream was released."""

    def __init__(
        self,
        pieces=("The termination fee ", "is 5% of annual rent."),
        delay_s: float = 0.0,
        fail_after: int | None = None,
        rewrite: RewriteResponse | None = None,
        grade: DocumentGrade | None = None,
        summary: str = "Condensed excerpt.",
        fail_structured: tuple = (),
    ) -> None:
        self.pieces = list(pieces)
        self.delay_s = delay_s
        self.fail_after = fail_after
        self.rewrite = rewrite or RewriteResponse(rewritten_queries=[])
        self.grade = grade or DocumentGrade(relevance_score=0.9, confidence=0.9, is_relevant=True)
        self.summary = summary
        self.fail_structured = fail_structured
        self.structured_schemas: list[type] = []
        self.structured_prompts: list[str] = []
        self.requests = []
        self.stream_calls = 0
        self.closed = 0
        self.structured_calls = 0

    async def stream(self, request):
        self.stream_calls += 1
        self.requests.append(request)
        try:
            for i, piece in enumerate(self.pieces):
                if self.fail_after is not None and i >= self.fail_after:
                    raise GenerationError("provider failed mid-stream")
                if self.delay_s:
                    await asyncio.sleep(self.delay_s)
                yield piece
            request.usage.update(input_tokens=120, output_tokens=len(self.pieces))
        finally:
            self.closed += 1

    async def generate_structured(self, prompt, response_schema, system=None):
        self.structured_calls += 1
        self.structured_schemas.append(response_schema)
        self.structured_prompts.append(prompt)
        if response_schema in self.fail_structured:
            raise GenerationError(f"structured call failed for {response_schema.__name__}")
        if response_schema is DocumentGrade:
            return self.grade
        if response_schema is DocumentSummary:
            return DocumentSummary(summary=self.summary)
        return self.rewrite


class FakeReranker:
    """Reverses the incoming order; optionally fails."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = 0

    async def rerank(self, query, candidates, top_n=10):
        self.calls += 1
        if self.fail:
            raise RuntimeError("reranker model unavailable")
        return [replace(c, source_method="reranked") for c in reversed(candidates)][:top_n]


class FakeSearcher:
    """Returns the same results for every search; ``fail_queries`` raise."""

    def __init__(self, results=None, fail_queries=(), fail_all: bool = False, delay_s: float = 0.0):
        self.results = list(results or [])
        self.fail_queries = set(fail_queries)
        self.fail_all = fail_all
        self.delay_s = delay_s
        self.calls: list[tuple[str, str, frozenset[str]]] = []

    async def _search(self, mode, query, document_ids):
        self.calls.append((mode, query, frozenset(document_ids)))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.fail_all or query in self.fail_queries:
            raise RetrievalError(f"search failed for {query!r}")
        return list(self.results)

    async def lexical(self, query, document_ids, top_k, page_numbers=None):
        return await self._search("lexical", query, document_ids)

    async def semantic(self, query, document_ids, top_k, similarity_threshold=0.0, page_numbers=None):
        return await self._search("semantic", query, document_ids)

    async def hybrid(self, query, document_ids, top_k, similarity_threshold=0.0, page_numbers=None):
        return await self._search("hybrid", query, document_ids)

    async def page_chunks(self, document_ids, page_numbers, limit):
        return await self._search("page", "", document_ids)


class FakeAccessResolver:
    def __init__(self, result: AccessResult, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls = 0

    async def resolve_accessible_documents(self, dataroom_id, viewer_id, filters):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


class InMemorySessionStore:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.scopes: dict[str, ChatScope] = {}
        self.messages: dict[str, list[tuple[MessageRole, str, dict | None]]] = {}

    async def get_or_create_session(self, scope, title, session_id=None):
        if self.fail:
            raise RuntimeError("session store unavailable")
        if session_id and self.scopes.get(session_id) == scope:
            return session_id
        new_id = str(uuid4())
        self.scopes[new_id] = scope
        self.messages[new_id] = []
        return new_id

    async def append_message(self, session_id, role, content, metadata=None):
        if self.fail:
            raise RuntimeError("session store unavailable")
        self.messages[session_id].append((role, content, metadata))
        return str(uuid4())

    def roles(self, session_id: str) -> list[MessageRole]:
        return [role for role, _, _ in self.messages[session_id]]

    @property
    def all_messages(self):
        return [m for msgs in self.messages.values() for m in msgs]


class InMemoryTelemetryStore:
    def __init__(self) -> None:
        self.snapshots: list[tuple[dict, str | None]] = []

    async def save_snapshot(self, snapshot, session_id=None):
        self.snapshots.append((dict(snapshot), session_id))


class SpyAnalyzer:
    def __init__(self, delegate: QueryAnalyzer) -> None:
        self._delegate = delegate
        self.calls = 0

    async def analyze(self, query, token=None):
        self.calls += 1
        return await self._delegate.analyze(query, token)


class HangingAnalyzer:
    """Never finishes on its own; records whether it was cancelled."""

    def __init__(self) -> None:
        self.calls = 0
        self.cancelled = False

    async def analyze(self, query, token=None):
        self.calls += 1
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            self.cancelled = True
            raise


class SpyOrchestrator:
    def __init__(self, delegate: RetrievalOrchestrator) -> None:
        self._delegate = delegate
        self.calls = 0

    async def process(self, *args, **kwargs):
        self.calls += 1
        return await self._delegate.process(*args, **kwargs)


DOCUMENTS = (
    IndexedDocument(document_id="doc-lease", name="Lease Agreement.pdf", num_pages=24),
    IndexedDocument(document_id="doc-fin", name="Financials 2023.xlsx", doc_type="sheet"),
)


def make_result(chunk_id: str, document_id: str, content: str, score: float, page: int | None = None):
    return SearchResult(
        chunk_id=chunk_id,
        document_id=document_id,
        content=content,
        score=score,
        page_number=page,
        source_method="bm25",
    )


DEFAULT_RESULTS = [
    make_result("c1", "doc-lease", "Early termination requires a fee of 5% of annual rent.", 3.2, 12),
    make_result("c2", "doc-fin", "Rental income for 2023 was 1.2M.", 1.1),
]


@dataclass
class Harness:
    pipeline: ChatPipeline
    settings: Settings
    analyzer: object
    resolver: FakeAccessResolver
    searcher: FakeSearcher
    provider: FakeProvider
    orchestrator: SpyOrchestrator
    session_store: InMemorySessionStore
    telemetry_store: InMemoryTelemetryStore
    sessions: SessionTracker
    extra: dict = field(default_factory=dict)


@pytest.fixture
def settings(tmp_path):
    """Test settings with temp paths and short deadlines."""
    return Settings(
        openai_api_key="test-key",
        google_api_key="test-key",
        request_timeout_ms=5000,
        analysis_timeout_ms=2000,
        rewrite_enabled=False,
        corpus_db_path=str(tmp_path / "corpus.db"),
        session_db_path=str(tmp_path / "sessions.db"),
        telemetry_db_path=str(tmp_path / "telemetry.db"),
        faiss_index_path=str(tmp_path / "faiss_index"),
    )


@pytest.fixture
def make_harness(settings):
    def _make(
        settings_overrides: dict | None = None,
        analyzer=None,
        access_result: AccessResult | None = None,
        access_error: Exception | None = None,
        searcher: FakeSearcher | None = None,
        provider: FakeProvider | None = None,
        session_store: InMemorySessionStore | None = None,
        reranker=None,
        grader=None,
        compressor=None,
    ) -> Harness:
        cfg = settings.model_copy(update=settings_overrides or {})
        provider = provider or FakeProvider()
        searcher = searcher or FakeSearcher(DEFAULT_RESULTS)
        resolver = FakeAccessResolver(access_result or AccessResult(documents=DOCUMENTS), access_error)
        if analyzer is None:
            analyzer = SpyAnalyzer(QueryAnalyzer(cfg, rewriter=QueryRewriter(provider)))
        orchestrator = SpyOrchestrator(
            RetrievalOrchestrator(
                searcher,
                AnswerGenerator(provider),
                cfg,
                reranker=reranker,
                grader=grader,
                compressor=compressor,
            )
        )
        session_store = session_store or InMemorySessionStore()
        telemetry_store = InMemoryTelemetryStore()
        sessions = SessionTracker(session_store, telemetry_store)
        pipeline = ChatPipeline(
            analyzer=analyzer,
            selector=StrategySelector(cfg),
            access_resolver=resolver,
            orchestrator=orchestrator,
            fallback=FallbackResponder(),
            sessions=sessions,
            settings=cfg,
        )
        return Harness(
            pipeline=pipeline,
            settings=cfg,
            analyzer=analyzer,
            resolver=resolver,
            searcher=searcher,
            provider=provider,
            orchestrator=orchestrator,
            session_store=session_store,
            telemetry_store=telemetry_store,
            sessions=sessions,
        )

    return _make


async def collect(stream) -> str:
    return "".join([piece async for piece in stream])
