"""Answer generation: prompt assembly within a token budget, then a streamed provider call."""

from __future__ import annotations

from dataroom_rag.generation.prompt_templates import (
    ANSWER_GENERATION_SYSTEM,
    format_context_block,
    format_page_instruction,
    format_sources_block,
)
from dataroom_rag.generation.streaming import StreamedAnswer
from dataroom_rag.keyword_search.tokenizer import count_tokens
from dataroom_rag.models.domain import IndexedDocument, SearchResult, Source
from dataroom_rag.observability.logger import get_logger
from dataroom_rag.pipeline.cancellation import CancellationToken, Deadline
from dataroom_rag.protocols.llm import GenerationProvider, GenerationRequest

logger = get_logger("generation")

# Share of the context window given to document excerpts; history gets the rest.
EXCERPT_SHARE = 0.75


class AnswerGenerator:
    def __init__(self, provider: GenerationProvider, temperature: float = 0.1, max_tokens: int = 2048) -> None:
        self._provider = provider
        self._temperature = temperature
        self._max_tokens = max_tokens

    def build_request(
        self,
        question: str,
        results: list[SearchResult],
        documents: dict[str, IndexedDocument],
        history: list[tuple[str, str]],
        context_window_tokens: int,
        page_numbers: frozenset[int] = frozenset(),
    ) -> tuple[GenerationRequest, tuple[Source, ...]]:
        excerpt_budget = int(context_window_tokens * EXCERPT_SHARE)
        used = 0
        excerpts: list[tuple[str, str]] = []
        sources: list[Source] = []
        for result in results:
            cost = count_tokens(result.content)
            if excerpts and used + cost > excerpt_budget:
                break
            used += cost
            doc = documents[result.document_id]
            label = doc.name if result.page_number is None else f"{doc.name}, p.{result.page_number}"
            excerpts.append((label, result.content))
            sources.append(
                Source(
                    document_id=doc.document_id,
                    document_name=doc.name,
                    chunk_id=result.chunk_id,
                    page_number=result.page_number,
                    score=result.score,
                )
            )

        kept_history = self._bound_history(history, max(context_window_tokens - used, 0))

        system = ANSWER_GENERATION_SYSTEM.format(
            page_instruction=format_page_instruction(page_numbers),
            context_block=format_context_block(excerpts),
            sources_block=format_sources_block(_unique_sources(sources)),
        )
        request = GenerationRequest(
            system=system,
            messages=[*kept_history, ("user", question)],
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        logger.info(
            "prompt_built",
            excerpts=len(excerpts),
            excerpt_tokens=used,
            history_messages=len(kept_history),
            dropped_history=len(history) - len(kept_history),
        )
        return request, tuple(sources)

    def stream(
        self,
        request: GenerationRequest,
        sources: tuple[Source, ...],
        token: CancellationToken,
        deadline: Deadline | None = None,
    ) -> StreamedAnswer:
        return StreamedAnswer(self._provider.stream(request), token, deadline=deadline, sources=sources)

    @staticmethod
    def _bound_history(history: list[tuple[str, str]], budget: int) -> list[tuple[str, str]]:
        """Keep the most recent turns that fit in ``budget`` tokens."""
        kept: list[tuple[str, str]] = []
        used = 0
        for role, content in reversed(history):
            if role not in ("user", "assistant") or not content.strip():
                continue
            cost = count_tokens(content)
            if used + cost > budget:
                break
            used += cost
            kept.append((role, content))
        kept.reverse()
        return kept


def _unique_sources(sources: list[Source]) -> list[Source]:
    seen: set[tuple[str, int | None]] = set()
    out = []
    for s in sources:
        key = (s.document_id, s.page_number)
        if key not in seen:
            seen.add(key)
            out.append(s)
    return out
