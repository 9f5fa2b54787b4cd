"""Strategy execution: scoped multi-query retrieval followed by streamed generation."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass

from dataroom_rag.config.settings import Settings
from dataroom_rag.exceptions import (
    AccessError,
    CancellationError,
    GenerationError,
    OrchestratorError,
    PipelineTimeout,
    RetrievalError,
)
from dataroom_rag.generation.answer_generator import AnswerGenerator
from dataroom_rag.generation.streaming import StreamedAnswer, StreamStatus
from dataroom_rag.models.domain import (
    ChatScope,
    ComplexityAnalysis,
    IndexedDocument,
    PipelineState,
    QueryExtraction,
    QueryRewriting,
    RetrievalOutcome,
    SearchResult,
    SearchStrategy,
    StrategyDecision,
)
from dataroom_rag.observability.logger import get_logger
from dataroom_rag.observability.metrics import log_retrieval_metrics
from dataroom_rag.observability.tracing import MetadataTracker
from dataroom_rag.pipeline.cancellation import CancellationToken, Deadline, run_with_deadline
from dataroom_rag.protocols.llm import GenerationRequest
from dataroom_rag.protocols.reranker import Reranker
from dataroom_rag.protocols.retriever import DocumentSearcher
from dataroom_rag.retrieval.compression import ContextCompressor
from dataroom_rag.retrieval.grading import DocumentGrader

logger = get_logger("orchestrator")


@dataclass(frozen=True)
class SearchProfile:
    name: str
    mode: str  # "lexical", "semantic", "hybrid" or "page"
    top_k: int
    similarity_threshold: float
    query_timeout_s: float
    max_queries: int


def profile_for(strategy: SearchStrategy, settings: Settings) -> SearchProfile:
    fast = dict(
        top_k=settings.fast_top_k,
        similarity_threshold=settings.fast_similarity_threshold,
        query_timeout_s=settings.fast_query_timeout_ms / 1000,
        max_queries=settings.max_fast_queries,
    )
    standard = dict(
        top_k=settings.standard_top_k,
        similarity_threshold=settings.standard_similarity_threshold,
        query_timeout_s=settings.standard_query_timeout_ms / 1000,
        max_queries=settings.max_standard_queries,
    )
    expanded = dict(
        top_k=settings.expanded_top_k,
        similarity_threshold=settings.expanded_similarity_threshold,
        query_timeout_s=settings.expanded_query_timeout_ms / 1000,
        max_queries=settings.max_expanded_queries,
    )
    if strategy is SearchStrategy.SINGLE_PASS_LEXICAL:
        return SearchProfile(name="fast", mode="lexical", **fast)
    if strategy is SearchStrategy.SINGLE_PASS_SEMANTIC:
        return SearchProfile(name="fast", mode="semantic", **fast)
    if strategy is SearchStrategy.HYBRID_MULTI_QUERY:
        return SearchProfile(name="standard", mode="hybrid", **standard)
    if strategy is SearchStrategy.HYDE_EXPANDED:
        return SearchProfile(name="expanded", mode="hybrid", **expanded)
    return SearchProfile(name="standard", mode="page", **standard)


def build_queries(
    query: str,
    rewriting: QueryRewriting | None,
    strategy: SearchStrategy,
    max_queries: int,
) -> list[str]:
    """``[original] + variants (capped) + HyDE passage (hyde-expanded only)``, de-duplicated."""
    hyde = None
    if strategy is SearchStrategy.HYDE_EXPANDED and rewriting is not None and rewriting.hyde_passage:
        hyde = rewriting.hyde_passage
    variant_slots = max(0, max_queries - 1 - (1 if hyde else 0))
    variants = list(rewriting.rewritten_queries) if rewriting is not None else []

    queries: list[str] = []
    seen: set[str] = set()

    def _add(candidate: str) -> bool:
        text = candidate.strip()
        key = text.lower()
        if not text or key in seen:
            return False
        seen.add(key)
        queries.append(text)
        return True

    _add(query)
    added = 0
    for variant in variants:
        if added >= variant_slots:
            break
        if _add(variant):
            added += 1
    if hyde:
        _add(hyde)
    return queries[:max(max_queries, 1)]


class RetrievalOrchestrator:
    """The only component that sends retrieved context to the generation model.

    Every search is restricted to the accessible document set, and every
    retrieved chunk is checked against it again before use.
    """

    def __init__(
        self,
        searcher: DocumentSearcher,
        generator: AnswerGenerator,
        settings: Settings,
        reranker: Reranker | None = None,
        grader: DocumentGrader | None = None,
        compressor: ContextCompressor | None = None,
    ) -> None:
        self._searcher = searcher
        self._generator = generator
        self._settings = settings
        self._reranker = reranker
        self._grader = grader
        self._compressor = compressor

    async def process(
        self,
        sanitized_query: str,
        scope: ChatScope,
        documents: Sequence[IndexedDocument],
        history: list[tuple[str, str]],
        decision: StrategyDecision,
        intent: str | None,
        complexity: ComplexityAnalysis,
        extraction: QueryExtraction,
        deadline: Deadline,
        token: CancellationToken,
        rewriting: QueryRewriting | None = None,
        session_id: str | None = None,
        tracker: MetadataTracker | None = None,
    ) -> StreamedAnswer | None:
        """Return a primed answer stream, or ``None`` when retrieval found nothing usable.

        Raises ``CancellationError`` when the token fires, ``PipelineTimeout``
        when the deadline expires, ``AccessError`` for an empty document set
        and ``OrchestratorError`` for anything else.
        """
        if not documents:
            raise AccessError("no accessible documents for this scope")

        tracker = tracker or MetadataTracker.create()
        try:
            return await self._run(
                sanitized_query,
                scope,
                documents,
                history,
                decision,
                intent,
                complexity,
                extraction,
                rewriting,
                deadline,
                token,
                session_id,
                tracker,
            )
        except (CancellationError, PipelineTimeout, OrchestratorError):
            raise
        except Exception as e:
            logger.error(
                "orchestrator_failed",
                trace_id=tracker.trace_id,
                dataroom_id=scope.dataroom_id,
                session_id=session_id,
                exc_info=True,
            )
            tracker.set_error(type(e).__name__, str(e), is_retryable=isinstance(e, GenerationError))
            raise OrchestratorError(f"retrieval/generation failed: {type(e).__name__}") from e

    async def _run(
        self,
        query: str,
        scope: ChatScope,
        documents: Sequence[IndexedDocument],
        history: list[tuple[str, str]],
        decision: StrategyDecision,
        intent: str | None,
        complexity: ComplexityAnalysis,
        extraction: QueryExtraction,
        rewriting: QueryRewriting | None,
        deadline: Deadline,
        token: CancellationToken,
        session_id: str | None,
        tracker: MetadataTracker,
    ) -> StreamedAnswer | None:
        tracker.set_state(PipelineState.ANALYZING_CONTEXT)
        tracker.set_search_strategy(decision)
        token.raise_if_cancelled()

        profile = profile_for(decision.strategy, self._settings)
        allowed = frozenset(d.document_id for d in documents)
        documents_by_id = {d.document_id: d for d in documents}
        queries = build_queries(query, rewriting, decision.strategy, profile.max_queries)
        logger.info(
            "pipeline_started",
            trace_id=tracker.trace_id,
            strategy=decision.strategy.value,
            profile=profile.name,
            queries=len(queries),
            documents=len(allowed),
            intent=intent,
            complexity=complexity.complexity_level.value,
        )

        tracker.set_state(PipelineState.RETRIEVING)
        with tracker.span("retrieval", strategy=decision.strategy.value, queries=len(queries)):
            outcome = await self._retrieve(
                queries, allowed, profile, extraction.page_numbers, deadline, token
            )

        results = outcome.results
        log_retrieval_metrics(
            trace_id=tracker.trace_id,
            strategy=decision.strategy.value,
            top_scores=[r.score for r in results],
            num_results=len(results),
            unique_docs=len({r.document_id for r in results}),
            failed_queries=outcome.queries_failed,
        )
        if not results:
            logger.info("no_usable_context", trace_id=tracker.trace_id, queries=len(queries))
            return None

        tracker.set_retrieval(
            chunk_ids=[r.chunk_id for r in results],
            document_ids=[r.document_id for r in results],
            page_numbers=[r.page_number for r in results if r.page_number is not None],
        )
        if outcome.degraded:
            tracker.mark_degraded(outcome.degraded_reason)

        if profile.name != "fast":
            results = await self._refine(
                query, results, documents_by_id, complexity, deadline, token, tracker
            )

        token.raise_if_cancelled()
        tracker.set_state(PipelineState.GENERATING)
        request, sources = self._generator.build_request(
            question=query,
            results=results,
            documents=documents_by_id,
            history=history,
            context_window_tokens=(
                rewriting.context_window_tokens if rewriting is not None else 4000
            ),
            page_numbers=extraction.page_numbers,
        )
        answer = self._generator.stream(request, sources, token, deadline)
        with tracker.span("first_token"):
            primed = await answer.prime()
        if not primed:
            logger.info("empty_generation", trace_id=tracker.trace_id)
            return None

        tracker.set_state(PipelineState.STREAMING)
        answer.add_finish_callback(lambda a: _record_stream_end(a, tracker, request))
        return answer

    async def _refine(
        self,
        query: str,
        results: list[SearchResult],
        documents_by_id: dict[str, IndexedDocument],
        complexity: ComplexityAnalysis,
        deadline: Deadline,
        token: CancellationToken,
        tracker: MetadataTracker,
    ) -> list[SearchResult]:
        """Rerank, grade, then compress. A failing phase is skipped, not fatal."""
        level = complexity.complexity_level

        async def _phase(name: str, work, fallback: list[SearchResult]) -> list[SearchResult]:
            with tracker.span(name, input_count=len(fallback)):
                try:
                    return await run_with_deadline(
                        work,
                        deadline.remaining_s,
                        token,
                        on_timeout=PipelineTimeout(f"request deadline expired during {name}"),
                    )
                except (CancellationError, PipelineTimeout):
                    raise
                except Exception as e:
                    logger.warning(
                        "refinement_phase_bypassed",
                        trace_id=tracker.trace_id,
                        phase=name,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                    _add_degraded_reason(tracker, f"{name} bypassed")
                    return fallback

        if self._reranker is not None:
            results = await _phase(
                "rerank", self._reranker.rerank(query, results, top_n=len(results)), results
            )

        if self._grader is not None:
            graded = await _phase("grading", self._grader.grade(query, results, level), results)
            if graded:
                results = graded
            else:
                logger.info("grading_rejected_all", trace_id=tracker.trace_id, count=len(results))
                _add_degraded_reason(tracker, "grading rejected all results")

        if self._compressor is not None:
            compressed = await _phase(
                "compression",
                self._compressor.compress(query, results, documents_by_id, level),
                results,
            )
            results = compressed or results
        return results

    async def _retrieve(
        self,
        queries: list[str],
        allowed: frozenset[str],
        profile: SearchProfile,
        page_numbers: frozenset[int],
        deadline: Deadline,
        token: CancellationToken,
    ) -> RetrievalOutcome:
        async def _one(q: str) -> list[SearchResult]:
            return await run_with_deadline(
                self._search(q, allowed, profile, page_numbers),
                deadline.cap(profile.query_timeout_s),
                token,
                on_timeout=RetrievalError(f"search timed out after {profile.query_timeout_s}s"),
            )

        outcomes = await asyncio.gather(*(_one(q) for q in queries), return_exceptions=True)
        token.raise_if_cancelled()

        merged: dict[str, SearchResult] = {}
        failed = 0
        for q, outcome in zip(queries, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                failed += 1
                logger.warning(
                    "query_search_failed",
                    query=q[:80],
                    error_type=type(outcome).__name__,
                    error=str(outcome),
                )
                continue
            for result in outcome:
                if result.document_id not in allowed:
                    logger.warning(
                        "out_of_scope_chunk_dropped",
                        chunk_id=result.chunk_id,
                        document_id=result.document_id,
                    )
                    continue
                best = merged.get(result.chunk_id)
                if best is None or result.score > best.score:
                    merged[result.chunk_id] = result

        if failed == len(queries):
            if deadline.expired:
                raise PipelineTimeout("request deadline expired during retrieval")
            raise RetrievalError(f"all {failed} search queries failed")

        ranked = sorted(merged.values(), key=lambda r: r.score, reverse=True)[: profile.top_k]
        degraded_reason = f"{failed}/{len(queries)} search queries failed" if failed else None
        return RetrievalOutcome(
            results=ranked,
            queries_attempted=len(queries),
            queries_failed=failed,
            degraded_reason=degraded_reason,
        )

    async def _search(
        self,
        query: str,
        allowed: frozenset[str],
        profile: SearchProfile,
        page_numbers: frozenset[int],
    ) -> list[SearchResult]:
        if profile.mode == "lexical":
            return await self._searcher.lexical(query, allowed, profile.top_k)
        if profile.mode == "semantic":
            return await self._searcher.semantic(
                query, allowed, profile.top_k, profile.similarity_threshold
            )
        if profile.mode == "hybrid":
            return await self._searcher.hybrid(
                query, allowed, profile.top_k, profile.similarity_threshold
            )
        results = await self._searcher.lexical(query, allowed, profile.top_k, page_numbers)
        if not results:
            results = await self._searcher.page_chunks(allowed, page_numbers, profile.top_k)
        return results


def _record_stream_end(answer: StreamedAnswer, tracker: MetadataTracker, request: GenerationRequest) -> None:
    usage = request.usage
    if usage:
        tracker.set_token_usage(usage.get("input_tokens", 0), usage.get("output_tokens", 0))
    if answer.status is StreamStatus.ABORTED:
        tracker.set_state(PipelineState.ABORTED)
    elif answer.status is StreamStatus.COMPLETED:
        if tracker.get("degraded_reason") is None:
            tracker.set_state(PipelineState.COMPLETED)
    else:
        tracker.mark_degraded(f"stream ended with status {answer.status.value}")


def _add_degraded_reason(tracker: MetadataTracker, reason: str) -> None:
    existing = tracker.get("degraded_reason")
    tracker.mark_degraded(f"{existing}; {reason}" if existing else reason)
