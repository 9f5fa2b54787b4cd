"""Metric recording helpers for pipeline stages."""

from __future__ import annotations

from dataroom_rag.models.domain import QueryAnalysisResult, StrategyDecision
from dataroom_rag.observability.logger import get_logger

logger = get_logger("metrics")


def log_analysis_metrics(
    trace_id: str, analysis: QueryAnalysisResult, duration_ms: float
) -> None:
    fields = {
        "trace_id": trace_id,
        "classification": analysis.classification.value,
        "duration_ms": round(duration_ms, 2),
    }
    if analysis.is_informational:
        fields.update(
            intent=analysis.intent,
            complexity=round(analysis.complexity.complexity_score, 4),
            keywords=len(analysis.extraction.keywords),
            pages=sorted(analysis.extraction.page_numbers),
            variants=analysis.rewriting.rewritten_query_count,
            sanitized=analysis.sanitization.was_modified,
        )
    logger.info("analysis_metrics", **fields)


def log_strategy_decision(trace_id: str, decision: StrategyDecision, corpus_size: int) -> None:
    logger.info(
        "strategy_selected",
        trace_id=trace_id,
        strategy=decision.strategy.value,
        confidence=round(decision.confidence, 4),
        rules_skipped=decision.rules_skipped,
        corpus_size=corpus_size,
    )


def log_retrieval_metrics(
    trace_id: str,
    strategy: str,
    top_scores: list[float],
    num_results: int,
    unique_docs: int,
    failed_queries: int,
) -> None:
    logger.info(
        "retrieval_metrics",
        trace_id=trace_id,
        strategy=strategy,
        top_scores=[round(s, 4) for s in top_scores[:5]],
        num_results=num_results,
        unique_docs=unique_docs,
        failed_queries=failed_queries,
    )


def log_pipeline_outcome(trace_id: str, kind: str, state: str, duration_ms: float) -> None:
    logger.info(
        "pipeline_outcome",
        trace_id=trace_id,
        kind=kind,
        state=state,
        duration_ms=round(duration_ms, 2),
    )
