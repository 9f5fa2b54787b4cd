"""Request-level orchestration: analysis, access, strategy, retrieval/generation, fallback.

Each stage runs behind a small helper that converts whatever happened into
a tagged ``Completed`` / ``Canceled`` / ``Failed`` outcome, so ``handle``
only branches on outcome types and never inspects exception text.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from dataroom_rag.config.constants import (
    FALLBACK_ANALYSIS_TIMEOUT,
    FALLBACK_APOLOGY,
    FALLBACK_NO_DOCUMENTS,
    FALLBACK_TIMEOUT,
    FALLBACK_UNABLE_TO_PROCESS,
    HTTP_CLIENT_CLOSED_REQUEST,
)
from dataroom_rag.config.settings import Settings
from dataroom_rag.exceptions import (
    Aborted,
    AccessError,
    AnalysisTimeout,
    CancellationError,
    InvalidQuery,
    PipelineTimeout,
    RetrievalMiss,
)
from dataroom_rag.generation.fallback import FallbackResponder
from dataroom_rag.generation.streaming import StreamedAnswer, StreamStatus
from dataroom_rag.models.domain import (
    Canceled,
    Completed,
    Failed,
    FailureKind,
    IndexedDocument,
    PipelineState,
    Query,
    QueryAnalysisResult,
    StageOutcome,
    StrategyDecision,
)
from dataroom_rag.observability.logger import get_logger
from dataroom_rag.observability.metrics import (
    log_analysis_metrics,
    log_pipeline_outcome,
    log_strategy_decision,
)
from dataroom_rag.observability.tracing import MetadataTracker
from dataroom_rag.pipeline.cancellation import CancellationToken, Deadline, run_with_deadline
from dataroom_rag.pipeline.session_tracker import ChatTurn, SessionTracker
from dataroom_rag.protocols.access import AccessResolver
from dataroom_rag.query.strategy import StrategySelector
from dataroom_rag.query.understanding import QueryAnalyzer, validate_query
from dataroom_rag.retrieval.orchestrator import RetrievalOrchestrator

logger = get_logger("chat_pipeline")

# How long a reply may wait for the detached session write to report its id.
SESSION_ID_GRACE_S = 0.5

_FALLBACK_MESSAGES = {
    FailureKind.ANALYSIS_TIMEOUT: FALLBACK_ANALYSIS_TIMEOUT,
    FailureKind.ACCESS_ERROR: FALLBACK_NO_DOCUMENTS,
    FailureKind.RETRIEVAL_MISS: FALLBACK_UNABLE_TO_PROCESS,
    FailureKind.ORCHESTRATOR_ERROR: FALLBACK_APOLOGY,
    FailureKind.PIPELINE_TIMEOUT: FALLBACK_TIMEOUT,
    FailureKind.INTERNAL_ERROR: FALLBACK_APOLOGY,
}


class ReplyKind(str, Enum):
    ANSWER = "answer"
    CANNED = "canned"
    FALLBACK = "fallback"
    ABORTED = "aborted"
    REJECTED = "rejected"


@dataclass
class ChatReply:
    kind: ReplyKind
    status_code: int
    trace_id: str
    stream: StreamedAnswer | None = None
    session_id: str | None = None
    message: str | None = None
    failure: Failed | Canceled | None = None


class ChatPipeline:
    def __init__(
        self,
        analyzer: QueryAnalyzer,
        selector: StrategySelector,
        access_resolver: AccessResolver,
        orchestrator: RetrievalOrchestrator,
        fallback: FallbackResponder,
        sessions: SessionTracker,
        settings: Settings,
    ) -> None:
        self._analyzer = analyzer
        self._selector = selector
        self._access = access_resolver
        self._orchestrator = orchestrator
        self._fallback = fallback
        self._sessions = sessions
        self._settings = settings

    async def handle(
        self,
        query: Query,
        token: CancellationToken,
        history: list[tuple[str, str]] | None = None,
    ) -> ChatReply:
        tracker = MetadataTracker.create()
        try:
            validate_query(query.text)
        except InvalidQuery as e:
            logger.info("query_rejected", trace_id=tracker.trace_id, reason=str(e))
            return ChatReply(
                kind=ReplyKind.REJECTED,
                status_code=400,
                trace_id=tracker.trace_id,
                message=str(e),
                failure=Failed(FailureKind.INVALID_QUERY, str(e), e),
            )

        if token.is_cancelled:
            return self._abort(Canceled("before_analysis"), tracker, turn=None, session_id=query.session_id)

        deadline = Deadline(self._settings.request_timeout_s)
        turn = self._sessions.start_turn(query.scope, query.text, query.session_id)
        try:
            return await self._run(query, history or [], token, deadline, tracker, turn)
        except Exception as e:
            logger.error("pipeline_backstop", trace_id=tracker.trace_id, exc_info=True)
            if token.is_cancelled:
                return self._abort(Canceled("backstop"), tracker, turn)
            tracker.set_error(type(e).__name__, str(e))
            return await self._fallback_reply(
                Failed(FailureKind.INTERNAL_ERROR, "unhandled pipeline error", e), token, tracker, turn
            )

    async def _run(
        self,
        query: Query,
        history: list[tuple[str, str]],
        token: CancellationToken,
        deadline: Deadline,
        tracker: MetadataTracker,
        turn: ChatTurn,
    ) -> ChatReply:
        outcome = await self._analyze(query, token, deadline, tracker)
        if not isinstance(outcome, Completed):
            return await self._settle(outcome, token, tracker, turn)
        analysis: QueryAnalysisResult = outcome.value
        if token.is_cancelled:
            return self._abort(Canceled("after_analysis"), tracker, turn)

        if not analysis.is_informational:
            tracker.set_query_analysis(analysis.classification.value)
            answer = StreamedAnswer.from_text(analysis.response, token)
            return await self._reply(ReplyKind.CANNED, answer, tracker, turn)

        tracker.set_query_analysis(
            analysis.classification.value, analysis.intent, analysis.complexity
        )

        outcome = await self._resolve_access(query, token, deadline, tracker)
        if not isinstance(outcome, Completed):
            return await self._settle(outcome, token, tracker, turn)
        documents = outcome.value

        decision = self._selector.select_for(analysis, corpus_size=len(documents))
        tracker.set_search_strategy(decision)
        log_strategy_decision(tracker.trace_id, decision, corpus_size=len(documents))

        if token.is_cancelled:
            return self._abort(Canceled("before_orchestrator"), tracker, turn)

        outcome = await self._orchestrate(
            query, analysis, documents, decision, history, token, deadline, tracker, turn
        )
        if not isinstance(outcome, Completed):
            return await self._settle(outcome, token, tracker, turn)
        answer: StreamedAnswer = outcome.value
        if token.is_cancelled:
            await answer.aclose()
            return self._abort(Canceled("after_orchestrator"), tracker, turn)
        return await self._reply(ReplyKind.ANSWER, answer, tracker, turn)

    async def _analyze(
        self, query: Query, token: CancellationToken, deadline: Deadline, tracker: MetadataTracker
    ) -> StageOutcome:
        tracker.set_state(PipelineState.ANALYZING_CONTEXT)
        budget = deadline.cap(self._settings.analysis_timeout_s)
        try:
            with tracker.span("query_analysis"):
                analysis = await run_with_deadline(
                    self._analyzer.analyze(query, token),
                    budget,
                    token,
                    on_timeout=AnalysisTimeout(f"analysis exceeded {budget:.2f}s"),
                    on_cancel=Aborted,
                )
        except CancellationError:
            return Canceled("analysis")
        except AnalysisTimeout as e:
            logger.warning("analysis_timeout", trace_id=tracker.trace_id, budget_s=round(budget, 3))
            return Failed(FailureKind.ANALYSIS_TIMEOUT, str(e), e)
        except Exception as e:
            logger.error("analysis_failed", trace_id=tracker.trace_id, exc_info=True)
            tracker.set_error(type(e).__name__, str(e))
            return Failed(FailureKind.INTERNAL_ERROR, "query analysis failed", e)

        log_analysis_metrics(tracker.trace_id, analysis, tracker.spans[-1].duration_ms)
        return Completed(analysis)

    async def _resolve_access(
        self, query: Query, token: CancellationToken, deadline: Deadline, tracker: MetadataTracker
    ) -> StageOutcome:
        try:
            with tracker.span("access_resolution"):
                result = await run_with_deadline(
                    self._access.resolve_accessible_documents(
                        query.dataroom_id, query.viewer_id, query.filters
                    ),
                    deadline.remaining_s,
                    token,
                    on_timeout=PipelineTimeout("request deadline expired during access resolution"),
                )
        except CancellationError:
            return Canceled("access_resolution")
        except PipelineTimeout as e:
            return Failed(FailureKind.PIPELINE_TIMEOUT, str(e), e)
        except AccessError as e:
            logger.warning("access_resolution_failed", trace_id=tracker.trace_id, error=str(e))
            return Failed(FailureKind.ACCESS_ERROR, FALLBACK_NO_DOCUMENTS, e)
        except Exception as e:
            logger.error("access_resolution_crashed", trace_id=tracker.trace_id, exc_info=True)
            return Failed(FailureKind.INTERNAL_ERROR, "access resolution failed", e)

        if result.access_error or not result.documents:
            reason = result.access_error or FALLBACK_NO_DOCUMENTS
            logger.info("no_accessible_documents", trace_id=tracker.trace_id, reason=reason)
            return Failed(FailureKind.ACCESS_ERROR, reason)
        return Completed(result.documents)

    async def _orchestrate(
        self,
        query: Query,
        analysis: QueryAnalysisResult,
        documents: tuple[IndexedDocument, ...],
        decision: StrategyDecision,
        history: list[tuple[str, str]],
        token: CancellationToken,
        deadline: Deadline,
        tracker: MetadataTracker,
        turn: ChatTurn,
    ) -> StageOutcome:
        try:
            with tracker.span("orchestration", strategy=decision.strategy.value):
                answer = await run_with_deadline(
                    self._orchestrator.process(
                        analysis.sanitization.sanitized_query,
                        query.scope,
                        documents,
                        history,
                        decision,
                        analysis.intent,
                        analysis.complexity,
                        analysis.extraction,
                        deadline,
                        token,
                        rewriting=analysis.rewriting,
                        session_id=turn.known_session_id,
                        tracker=tracker,
                    ),
                    deadline.remaining_s,
                    token,
                    on_timeout=PipelineTimeout("request deadline expired during retrieval/generation"),
                )
        except CancellationError:
            return Canceled("orchestration")
        except PipelineTimeout as e:
            logger.warning("pipeline_timeout", trace_id=tracker.trace_id)
            return Failed(FailureKind.PIPELINE_TIMEOUT, str(e), e)
        except AccessError as e:
            return Failed(FailureKind.ACCESS_ERROR, FALLBACK_NO_DOCUMENTS, e)
        except Exception as e:
            logger.error("orchestration_failed", trace_id=tracker.trace_id, error_type=type(e).__name__)
            return Failed(FailureKind.ORCHESTRATOR_ERROR, "retrieval/generation failed", e)

        if answer is None:
            miss = RetrievalMiss("no usable context retrieved")
            return Failed(FailureKind.RETRIEVAL_MISS, str(miss), miss)
        return Completed(answer)

    async def _settle(
        self,
        outcome: Failed | Canceled,
        token: CancellationToken,
        tracker: MetadataTracker,
        turn: ChatTurn,
    ) -> ChatReply:
        if isinstance(outcome, Canceled) or token.is_cancelled:
            stage = outcome.stage if isinstance(outcome, Canceled) else "fallback"
            return self._abort(Canceled(stage), tracker, turn)
        return await self._fallback_reply(outcome, token, tracker, turn)

    async def _fallback_reply(
        self, failure: Failed, token: CancellationToken, tracker: MetadataTracker, turn: ChatTurn
    ) -> ChatReply:
        if failure.kind is FailureKind.ACCESS_ERROR:
            message = failure.reason
        else:
            message = _FALLBACK_MESSAGES.get(failure.kind, FALLBACK_APOLOGY)
        tracker.mark_degraded(failure.kind.value)
        answer = self._fallback.respond(
            message, token, kind=failure.kind, session_id=turn.known_session_id, tracker=tracker
        )
        reply = await self._reply(ReplyKind.FALLBACK, answer, tracker, turn)
        reply.failure = failure
        return reply

    async def _reply(
        self, kind: ReplyKind, answer: StreamedAnswer, tracker: MetadataTracker, turn: ChatTurn
    ) -> ChatReply:
        answer.add_finish_callback(lambda a: self._on_stream_finished(a, kind, tracker, turn))
        session_id = await turn.session_id(SESSION_ID_GRACE_S)
        return ChatReply(
            kind=kind,
            status_code=200,
            trace_id=tracker.trace_id,
            stream=answer,
            session_id=session_id,
        )

    def _abort(
        self,
        canceled: Canceled,
        tracker: MetadataTracker,
        turn: ChatTurn | None,
        session_id: str | None = None,
    ) -> ChatReply:
        session_id = turn.known_session_id if turn is not None else session_id
        self._fallback.abort(canceled.stage, session_id=session_id, tracker=tracker)
        tracker.set_state(PipelineState.ABORTED)
        self._flush(tracker, ReplyKind.ABORTED, turn, assistant_text=None)
        return ChatReply(
            kind=ReplyKind.ABORTED,
            status_code=HTTP_CLIENT_CLOSED_REQUEST,
            trace_id=tracker.trace_id,
            session_id=session_id,
            failure=canceled,
        )

    def _on_stream_finished(
        self, answer: StreamedAnswer, kind: ReplyKind, tracker: MetadataTracker, turn: ChatTurn
    ) -> None:
        if answer.status is StreamStatus.ABORTED:
            tracker.set_state(PipelineState.ABORTED)
            self._flush(tracker, ReplyKind.ABORTED, turn, assistant_text=None)
            return
        if kind is ReplyKind.CANNED:
            tracker.set_state(PipelineState.COMPLETED)
        self._flush(tracker, kind, turn, assistant_text=answer.text)

    @staticmethod
    def _flush(
        tracker: MetadataTracker,
        kind: ReplyKind,
        turn: ChatTurn | None,
        assistant_text: str | None,
    ) -> None:
        snapshot = tracker.flush()
        if snapshot is None:
            return
        log_pipeline_outcome(
            tracker.trace_id,
            kind=kind.value,
            state=snapshot.get("state", "pending"),
            duration_ms=snapshot["total_time_ms"],
        )
        if turn is None:
            return
        if assistant_text:
            turn.record_assistant(assistant_text, metadata=snapshot)
        turn.persist_telemetry(snapshot)
