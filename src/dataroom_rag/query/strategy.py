"""Deterministic retrieval strategy selection."""

from __future__ import annotations

from dataclasses import dataclass

from dataroom_rag.config.settings import Settings
from dataroom_rag.models.domain import QueryAnalysisResult, SearchStrategy, StrategyDecision

# Confidence lost for every rule skipped on the way to a decision.
CONFIDENCE_STEP = 0.15


@dataclass(frozen=True)
class QueryContext:
    page_numbers: frozenset[int] = frozenset()
    intent: str | None = None


@dataclass(frozen=True)
class AnalysisSignals:
    requires_hyde: bool = False
    rewritten_query_count: int = 0


@dataclass(frozen=True)
class SelectorThresholds:
    low_complexity: float = 0.35
    high_complexity: float = 0.65
    small_corpus_max_documents: int = 10
    min_multi_query_variants: int = 2
    min_multi_query_words: int = 4

    @classmethod
    def from_settings(cls, settings: Settings) -> "SelectorThresholds":
        return cls(
            low_complexity=settings.low_complexity_threshold,
            high_complexity=settings.high_complexity_threshold,
            small_corpus_max_documents=settings.small_corpus_max_documents,
            min_multi_query_variants=settings.min_multi_query_variants,
            min_multi_query_words=settings.min_multi_query_words,
        )


def select(
    query_length: int,
    complexity_score: float,
    corpus_size: int,
    query_context: QueryContext,
    analysis_signals: AnalysisSignals,
    thresholds: SelectorThresholds = SelectorThresholds(),
) -> StrategyDecision:
    """Walk the tie-break rules in order and stop at the first that applies.

    Rules, in precedence order:
      0. explicit page numbers            -> page-targeted
      1. low complexity, small corpus     -> single-pass-lexical
      2. low complexity, large corpus     -> single-pass-semantic
      3. high complexity or HyDE needed   -> hyde-expanded
      4. moderate, enough query variants  -> hybrid-multi-query
      5. default                          -> single-pass-semantic

    Confidence is ``1 - CONFIDENCE_STEP * rules_skipped``.
    """
    low = complexity_score < thresholds.low_complexity
    small_corpus = corpus_size <= thresholds.small_corpus_max_documents

    rules = (
        (
            bool(query_context.page_numbers),
            SearchStrategy.PAGE_TARGETED,
            "explicit page reference",
        ),
        (
            low and small_corpus,
            SearchStrategy.SINGLE_PASS_LEXICAL,
            "low complexity over a small corpus",
        ),
        (
            low and not small_corpus,
            SearchStrategy.SINGLE_PASS_SEMANTIC,
            "low complexity over a large corpus",
        ),
        (
            complexity_score >= thresholds.high_complexity or analysis_signals.requires_hyde,
            SearchStrategy.HYDE_EXPANDED,
            "high complexity or hypothetical-document expansion requested",
        ),
        (
            analysis_signals.rewritten_query_count >= thresholds.min_multi_query_variants
            and query_length >= thresholds.min_multi_query_words,
            SearchStrategy.HYBRID_MULTI_QUERY,
            "moderate complexity with multiple query variants",
        ),
        (
            True,
            SearchStrategy.SINGLE_PASS_SEMANTIC,
            "default",
        ),
    )

    for skipped, (applies, strategy, reasoning) in enumerate(rules):
        if applies:
            return StrategyDecision(
                strategy=strategy,
                confidence=round(max(0.0, 1.0 - CONFIDENCE_STEP * skipped), 4),
                reasoning=reasoning,
                rules_skipped=skipped,
            )
    raise AssertionError("unreachable: default rule always applies")


class StrategySelector:
    """Binds configured thresholds to ``select``."""

    def __init__(self, settings: Settings) -> None:
        self._thresholds = SelectorThresholds.from_settings(settings)

    def select(
        self,
        query_length: int,
        complexity_score: float,
        corpus_size: int,
        query_context: QueryContext,
        analysis_signals: AnalysisSignals,
    ) -> StrategyDecision:
        return select(
            query_length,
            complexity_score,
            corpus_size,
            query_context,
            analysis_signals,
            self._thresholds,
        )

    def select_for(self, analysis: QueryAnalysisResult, corpus_size: int) -> StrategyDecision:
        """Convenience over an informational ``QueryAnalysisResult``."""
        return self.select(
            query_length=analysis.complexity.word_count,
            complexity_score=analysis.complexity.complexity_score,
            corpus_size=corpus_size,
            query_context=QueryContext(
                page_numbers=analysis.extraction.page_numbers,
                intent=analysis.intent,
            ),
            analysis_signals=AnalysisSignals(
                requires_hyde=analysis.rewriting.requires_hyde,
                rewritten_query_count=analysis.rewriting.rewritten_query_count,
            ),
        )
