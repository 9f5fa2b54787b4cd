"""Cross-encoder reranker using sentence-transformers."""

from __future__ import annotations

import asyncio
from dataclasses import replace

from sentence_transformers import CrossEncoder

from dataroom_rag.models.domain import SearchResult
from dataroom_rag.observability.logger import get_logger

logger = get_logger("reranker")


class CrossEncoderReranker:
    def __init__(self, model_name: str = "cross-encoder/ms-marco-MiniLM-L-6-v2", model=None) -> None:
        self._model = model if model is not None else CrossEncoder(model_name)

    async def rerank(
        self,
        query: str,
        candidates: list[SearchResult],
        top_n: int = 10,
    ) -> list[SearchResult]:
        if not candidates:
            return []

        pairs = [(query, c.content) for c in candidates]

        # predict is synchronous
        scores = await asyncio.to_thread(self._model.predict, pairs)

        scored = sorted(zip(candidates, scores), key=lambda x: float(x[1]), reverse=True)
        result = [
            replace(candidate, score=float(score), source_method="reranked")
            for candidate, score in scored[:top_n]
        ]

        logger.info(
            "reranked",
            input_count=len(candidates),
            output_count=len(result),
            top_score=round(result[0].score, 4) if result else 0.0,
        )
        return result
