"""Context compression: fit retrieved chunks into a token budget.

Two strategies, picked per request:

* ``summary`` asks the model for one condensed excerpt per document. Used
  for high-complexity queries and whenever the context spans several
  documents, since per-chunk trimming loses cross-chunk structure there.
* ``ranked`` keeps the sentences sharing the most terms with the query,
  in their original order, until the budget is spent. No model call.

Context already inside the budget is returned untouched.
"""

from __future__ import annotations

import re
from dataclasses import replace

from pydantic import BaseModel

from dataroom_rag.generation.prompt_templates import DOCUMENT_SUMMARY_PROMPT
from dataroom_rag.keyword_search.tokenizer import count_tokens, tokenize
from dataroom_rag.models.domain import ComplexityLevel, IndexedDocument, SearchResult
from dataroom_rag.observability.logger import get_logger

logger = get_logger("compression")

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
MIN_SENTENCE_CHARS = 10
MAX_SENTENCES = 100


class DocumentSummary(BaseModel):
    summary: str


class ContextCompressor:
    def __init__(self, llm, max_tokens: int = 3000) -> None:
        self._llm = llm
        self._max_tokens = max_tokens

    def choose_mode(self, results: list[SearchResult], complexity: ComplexityLevel) -> str:
        if sum(count_tokens(r.content) for r in results) <= self._max_tokens:
            return "none"
        if complexity is ComplexityLevel.HIGH or len({r.document_id for r in results}) > 1:
            return "summary"
        return "ranked"

    async def compress(
        self,
        query: str,
        results: list[SearchResult],
        documents: dict[str, IndexedDocument],
        complexity: ComplexityLevel,
    ) -> list[SearchResult]:
        mode = self.choose_mode(results, complexity)
        if mode == "none":
            return results
        if mode == "summary":
            compressed = await self._summarize(query, results, documents)
        else:
            compressed = self._rank_sentences(query, results)

        logger.info(
            "context_compressed",
            mode=mode,
            chunks_in=len(results),
            chunks_out=len(compressed),
            tokens_in=sum(count_tokens(r.content) for r in results),
            tokens_out=sum(count_tokens(r.content) for r in compressed),
        )
        return compressed

    async def _summarize(
        self,
        query: str,
        results: list[SearchResult],
        documents: dict[str, IndexedDocument],
    ) -> list[SearchResult]:
        grouped: dict[str, list[SearchResult]] = {}
        for result in results:
            grouped.setdefault(result.document_id, []).append(result)

        per_document = max(1, self._max_tokens // len(grouped))
        summaries = []
        for document_id, chunks in grouped.items():
            document = documents.get(document_id)
            prompt = DOCUMENT_SUMMARY_PROMPT.format(
                document_name=document.name if document is not None else document_id,
                query=query,
                content="\n\n".join(c.content for c in chunks),
                max_words=max(1, int(per_document * 0.75)),
            )
            response = await self._llm.generate_structured(prompt, DocumentSummary)
            summary = response.summary.strip()
            if not summary:
                continue
            # The summary stands in for the document's best chunk.
            summaries.append(replace(chunks[0], content=summary, source_method="summary"))
        return summaries

    def _rank_sentences(self, query: str, results: list[SearchResult]) -> list[SearchResult]:
        query_terms = set(tokenize(query))
        candidates: list[tuple[float, int, int, str]] = []
        for i, result in enumerate(results):
            for j, sentence in enumerate(_SENTENCE_SPLIT.split(result.content)):
                sentence = sentence.strip()
                if len(sentence) <= MIN_SENTENCE_CHARS:
                    continue
                terms = set(tokenize(sentence))
                overlap = len(terms & query_terms) / len(query_terms) if query_terms else 0.0
                candidates.append((overlap, i, j, sentence))
                if len(candidates) >= MAX_SENTENCES:
                    break
            if len(candidates) >= MAX_SENTENCES:
                break

        # Highest overlap first; ties keep document order.
        candidates.sort(key=lambda c: (-c[0], c[1], c[2]))
        budget = self._max_tokens
        selected: dict[int, list[tuple[int, str]]] = {}
        for _, i, j, sentence in candidates:
            cost = count_tokens(sentence)
            if cost > budget:
                continue
            budget -= cost
            selected.setdefault(i, []).append((j, sentence))

        compressed = []
        for i, result in enumerate(results):
            if i not in selected:
                continue
            text = " ".join(sentence for _, sentence in sorted(selected[i]))
            compressed.append(replace(result, content=text))
        return compressed
