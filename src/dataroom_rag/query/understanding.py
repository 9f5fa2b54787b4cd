"""Query classification, extraction, complexity scoring, rewriting and sanitization."""

from __future__ import annotations

import re
import unicodedata

from langdetect import DetectorFactory, detect

from dataroom_rag.config.constants import (
    ABUSIVE_TOKENS,
    CANNED_RESPONSES,
    CHITCHAT_TOKENS,
    FAREWELL_TOKENS,
    GREETING_TOKENS,
    INTENT_KEYWORDS,
    MAX_KEYWORDS,
    MAX_PAGE_RANGE_SPAN,
    MAX_QUERY_CHARS,
    MAX_SANITIZED_CHARS,
    STOPWORDS,
    SYNONYMS,
    THANKS_TOKENS,
)
from dataroom_rag.config.settings import Settings
from dataroom_rag.exceptions import Aborted, InvalidQuery
from dataroom_rag.keyword_search.tokenizer import tokenize
from dataroom_rag.models.domain import (
    Classification,
    ComplexityAnalysis,
    ComplexityLevel,
    ExpansionStrategy,
    Query,
    QueryAnalysisResult,
    QueryExtraction,
    QueryRewriting,
    Sanitization,
)
from dataroom_rag.observability.logger import get_logger
from dataroom_rag.pipeline.cancellation import CancellationToken
from dataroom_rag.query.rewriting import QueryRewriter

logger = get_logger("query_understanding")

DetectorFactory.seed = 0

_WORD_RE = re.compile(r"[a-z0-9]+(?:'[a-z]+)?")

_PAGE_RE = re.compile(
    r"\b(?:pages?|pg\.?|pp\.?|p\.)\s*"
    r"(\d+(?:\s*(?:-|–|to|through)\s*\d+)?"
    r"(?:\s*(?:,|and|&)\s*\d+(?:\s*(?:-|–|to|through)\s*\d+)?)*)",
    re.IGNORECASE,
)
_PAGE_PART_RE = re.compile(r"(\d+)(?:\s*(?:-|–|to|through)\s*(\d+))?")

_INJECTION_PATTERNS = (
    ("ignore_instructions", re.compile(
        r"\b(?:ignore|disregard|forget)\s+(?:all\s+|any\s+)?(?:of\s+)?(?:the\s+|your\s+)?"
        r"(?:previous|prior|above|earlier|system)?\s*(?:instructions?|prompts?|rules|context)\b",
        re.IGNORECASE,
    )),
    ("role_override", re.compile(
        r"\b(?:you\s+are\s+now|pretend\s+(?:to\s+be|you\s+are))\b[^.?!\n]*",
        re.IGNORECASE,
    )),
    ("prompt_exfiltration", re.compile(
        r"\b(?:reveal|show|print|repeat)\s+(?:me\s+)?(?:your|the)\s+(?:system\s+)?prompt\b",
        re.IGNORECASE,
    )),
    ("role_marker", re.compile(r"(?:^|\s)(?:system|assistant)\s*:", re.IGNORECASE)),
    ("markup_tag", re.compile(r"</?\s*(?:system|instructions?|prompt)\s*>", re.IGNORECASE)),
    ("code_fence", re.compile(r"```")),
)

_ANALYTIC_INTENTS = frozenset({"comparison", "analysis", "summarization"})
_EXPLANATORY_INTENTS = frozenset({"verification", "concept_explanation"})

_CONTEXT_WINDOW_TOKENS = {
    ComplexityLevel.LOW: 2000,
    ComplexityLevel.MEDIUM: 4000,
    ComplexityLevel.HIGH: 8000,
}


def validate_query(text: str | None) -> str:
    """Reject malformed input. Runs before any deadline starts."""
    if text is None or not text.strip():
        raise InvalidQuery("Query must not be empty")
    if len(text) > MAX_QUERY_CHARS:
        raise InvalidQuery(f"Query too long (max {MAX_QUERY_CHARS} characters)")
    return text


class QueryAnalyzer:
    """Turns a raw question into a ``QueryAnalysisResult``.

    Classification, extraction, complexity and sanitization are local
    heuristics. Query variants and the hypothetical passage for HyDE come
    from an optional ``QueryRewriter``; when it is absent or fails the
    analysis still completes with whatever lexical variants exist.
    """

    def __init__(self, settings: Settings, rewriter: QueryRewriter | None = None) -> None:
        self._settings = settings
        self._rewriter = rewriter

    async def analyze(
        self, query: Query, token: CancellationToken | None = None
    ) -> QueryAnalysisResult:
        validate_query(query.text)
        token = token or CancellationToken()
        token.raise_if_cancelled(Aborted)

        normalized = self._normalize(query.text)
        sanitization = self._sanitize(normalized)

        classification, response = self._classify(sanitization.sanitized_query)
        if classification is not Classification.INFORMATIONAL:
            logger.info(
                "query_classified",
                classification=classification.value,
                viewer_id=query.viewer_id,
                dataroom_id=query.dataroom_id,
            )
            return QueryAnalysisResult(classification=classification, response=response)

        text = sanitization.sanitized_query
        intent = self._classify_intent(text)
        complexity = self._score_complexity(text, intent)
        extraction = QueryExtraction(
            keywords=self._extract_keywords(text),
            page_numbers=self.extract_page_numbers(text),
        )
        rewriting = self._plan_rewriting(text, intent, complexity, extraction)

        if self._rewriter is not None and self._settings.rewrite_enabled and rewriting.expansion_strategy in (
            ExpansionStrategy.MULTI_QUERY,
            ExpansionStrategy.HYDE,
        ):
            token.raise_if_cancelled(Aborted)
            variants, hyde = await self._rewriter.rewrite(text, want_hyde=rewriting.requires_hyde)
            token.raise_if_cancelled(Aborted)
            rewriting.rewritten_queries = _dedupe([*rewriting.rewritten_queries, *variants], text)
            rewriting.hyde_passage = hyde

        try:
            language = detect(text)
        except Exception:
            language = "en"

        logger.info(
            "query_processed",
            classification=classification.value,
            intent=intent,
            language=language,
            complexity=round(complexity.complexity_score, 4),
            pages=sorted(extraction.page_numbers),
            variants=rewriting.rewritten_query_count,
            sanitized=sanitization.was_modified,
        )

        return QueryAnalysisResult(
            classification=classification,
            intent=intent,
            language=language,
            complexity=complexity,
            extraction=extraction,
            rewriting=rewriting,
            sanitization=sanitization,
        )

    @staticmethod
    def _normalize(text: str) -> str:
        text = unicodedata.normalize("NFKC", text)
        text = re.sub(r"\s+", " ", text).strip()
        return text

    @staticmethod
    def _sanitize(text: str) -> Sanitization:
        cleaned = text
        removed: list[str] = []
        for name, pattern in _INJECTION_PATTERNS:
            cleaned, count = pattern.subn(" ", cleaned)
            if count:
                removed.append(name)
        cleaned = re.sub(r"\s+", " ", cleaned).strip(" ,;:")
        cleaned = cleaned[:MAX_SANITIZED_CHARS].strip()
        return Sanitization(
            sanitized_query=cleaned,
            was_modified=cleaned != text,
            removed_patterns=removed,
        )

    @staticmethod
    def _classify(text: str) -> tuple[Classification, str | None]:
        words = _WORD_RE.findall(text.lower().replace("’", "'"))
        words = [w.replace("'", "") for w in words]
        content = [
            w for w in words
            if w not in CHITCHAT_TOKENS and w not in ABUSIVE_TOKENS and w not in STOPWORDS
        ]
        if content:
            return Classification.INFORMATIONAL, None

        vocabulary = set(words)
        if vocabulary & ABUSIVE_TOKENS:
            return Classification.ABUSIVE, CANNED_RESPONSES["abusive"]
        if vocabulary & THANKS_TOKENS:
            key = "thanks"
        elif vocabulary & FAREWELL_TOKENS:
            key = "farewell"
        elif vocabulary & GREETING_TOKENS:
            key = "greeting"
        elif vocabulary & {"who", "name", "bot"}:
            key = "identity"
        else:
            key = "generic"
        return Classification.CHITCHAT, CANNED_RESPONSES[key]

    @staticmethod
    def _classify_intent(query: str) -> str:
        q = f" {query.lower()} "
        for intent, phrases in INTENT_KEYWORDS:
            if any(p in q for p in phrases):
                return intent
        return "general_inquiry"

    def _score_complexity(self, text: str, intent: str) -> ComplexityAnalysis:
        lowered = f" {text.lower()} "
        word_count = len(text.split())

        score = min(word_count / 40, 0.4)
        clauses = sum(lowered.count(m) for m in (" and ", " or ", " but ", " whereas ", ",", ";"))
        score += min(0.05 * clauses, 0.2)
        if intent in _ANALYTIC_INTENTS:
            score += 0.25
        elif intent in _EXPLANATORY_INTENTS:
            score += 0.1
        if text.count("?") > 1:
            score += 0.1
        if len(set(tokenize(text))) > 6:
            score += 0.05
        score = max(0.0, min(score, 1.0))

        if score < self._settings.low_complexity_threshold:
            level = ComplexityLevel.LOW
        elif score < self._settings.high_complexity_threshold:
            level = ComplexityLevel.MEDIUM
        else:
            level = ComplexityLevel.HIGH
        return ComplexityAnalysis(word_count=word_count, complexity_score=score, complexity_level=level)

    @staticmethod
    def _extract_keywords(text: str) -> list[str]:
        keywords: list[str] = []
        for tok in tokenize(text):
            if tok.isdigit() or tok in keywords:
                continue
            keywords.append(tok)
        return keywords[:MAX_KEYWORDS]

    @staticmethod
    def extract_page_numbers(text: str) -> frozenset[int]:
        """Literal page mentions: "page 12" -> {12}, "pg. 3-5" -> {3, 4, 5}."""
        pages: set[int] = set()
        for match in _PAGE_RE.finditer(text):
            for part in _PAGE_PART_RE.finditer(match.group(1)):
                start = int(part.group(1))
                end = int(part.group(2)) if part.group(2) else start
                if start > end:
                    start, end = end, start
                end = min(end, start + MAX_PAGE_RANGE_SPAN - 1)
                pages.update(p for p in range(start, end + 1) if p > 0)
        return frozenset(pages)

    @staticmethod
    def _plan_rewriting(
        text: str,
        intent: str,
        complexity: ComplexityAnalysis,
        extraction: QueryExtraction,
    ) -> QueryRewriting:
        level = complexity.complexity_level
        requires_hyde = level is ComplexityLevel.HIGH or (
            intent == "concept_explanation" and len(extraction.keywords) <= 2
        )
        lexical = _synonym_variants(text, extraction.keywords)

        if requires_hyde:
            strategy = ExpansionStrategy.HYDE
        elif level is ComplexityLevel.MEDIUM:
            strategy = ExpansionStrategy.MULTI_QUERY
        elif lexical:
            strategy = ExpansionStrategy.LEXICAL
        else:
            strategy = ExpansionStrategy.NONE

        return QueryRewriting(
            expansion_strategy=strategy,
            requires_hyde=requires_hyde,
            context_window_tokens=_CONTEXT_WINDOW_TOKENS[level],
            rewritten_queries=lexical,
        )


def _synonym_variants(text: str, keywords: list[str]) -> list[str]:
    variants: list[str] = []
    for keyword in keywords:
        for synonym in SYNONYMS.get(keyword, ())[:1]:
            pattern = re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE)
            variant = pattern.sub(synonym, text)
            if variant != text:
                variants.append(variant)
    return _dedupe(variants, text)


def _dedupe(candidates: list[str], original: str) -> list[str]:
    seen = {original.strip().lower()}
    out: list[str] = []
    for c in candidates:
        key = c.strip().lower()
        if key and key not in seen:
            seen.add(key)
            out.append(c.strip())
    return out
