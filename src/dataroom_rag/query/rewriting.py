"""LLM-backed query variant and hypothetical-passage generation."""

from __future__ import annotations

from pydantic import BaseModel

from dataroom_rag.generation.prompt_templates import (
    HYDE_INSTRUCTION,
    NO_HYDE_INSTRUCTION,
    QUERY_REWRITE_PROMPT,
)
from dataroom_rag.observability.logger import get_logger

logger = get_logger("rewriting")


class RewriteResponse(BaseModel):
    rewritten_queries: list[str]
    hyde_passage: str = ""


class QueryRewriter:
    def __init__(self, llm, max_variants: int = 4) -> None:
        self._llm = llm
        self._max_variants = max_variants

    async def rewrite(self, query: str, want_hyde: bool) -> tuple[list[str], str | None]:
        """Return (variants, hyde_passage). Provider failures yield no variants."""
        prompt = QUERY_REWRITE_PROMPT.format(
            query=query,
            max_variants=self._max_variants,
            hyde_instruction=HYDE_INSTRUCTION if want_hyde else NO_HYDE_INSTRUCTION,
        )
        try:
            result = await self._llm.generate_structured(prompt, RewriteResponse)
        except Exception:
            logger.warning("rewrite_failed", query=query, exc_info=True)
            return [], None

        seen = {query.strip().lower()}
        variants: list[str] = []
        for candidate in result.rewritten_queries:
            text = candidate.strip()
            if text and text.lower() not in seen:
                seen.add(text.lower())
                variants.append(text)
        variants = variants[: self._max_variants]
        hyde = result.hyde_passage.strip() if want_hyde else ""

        logger.info("query_rewritten", variants=len(variants), hyde=bool(hyde))
        return variants, hyde or None
