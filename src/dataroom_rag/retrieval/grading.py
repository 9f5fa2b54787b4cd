"""LLM relevance grading of retrieved chunks."""

from __future__ import annotations

import asyncio

from pydantic import BaseModel

from dataroom_rag.generation.prompt_templates import DOCUMENT_GRADING_PROMPT
from dataroom_rag.models.domain import ComplexityLevel, SearchResult
from dataroom_rag.observability.logger import get_logger

logger = get_logger("grading")

# How many of the top results are sent for grading, by query complexity.
GRADING_LIMITS = {
    ComplexityLevel.HIGH: 15,
    ComplexityLevel.MEDIUM: 10,
    ComplexityLevel.LOW: 8,
}


class DocumentGrade(BaseModel):
    relevance_score: float
    confidence: float = 0.5
    is_relevant: bool


class DocumentGrader:
    def __init__(self, llm, relevance_threshold: float = 0.05, concurrency: int = 3) -> None:
        self._llm = llm
        self._threshold = relevance_threshold
        self._concurrency = max(1, concurrency)

    async def grade(
        self, query: str, results: list[SearchResult], complexity: ComplexityLevel
    ) -> list[SearchResult]:
        """Keep the graded results judged relevant, in their incoming order.

        Results past the grading limit are dropped. Provider errors propagate.
        """
        candidates = results[: GRADING_LIMITS[complexity]]
        if not candidates:
            return []

        semaphore = asyncio.Semaphore(self._concurrency)

        async def _one(result: SearchResult) -> DocumentGrade:
            prompt = DOCUMENT_GRADING_PROMPT.format(query=query, content=result.content)
            async with semaphore:
                return await self._llm.generate_structured(prompt, DocumentGrade)

        grades = await asyncio.gather(*(_one(r) for r in candidates))

        kept = [
            result
            for result, grade in zip(candidates, grades)
            if grade.is_relevant and grade.relevance_score >= self._threshold
        ]
        logger.info(
            "documents_graded",
            graded=len(candidates),
            kept=len(kept),
            threshold=self._threshold,
        )
        return kept
