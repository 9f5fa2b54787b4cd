"""Core domain objects used throughout the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class Classification(str, Enum):
    INFORMATIONAL = "informational"
    CHITCHAT = "chitchat"
    ABUSIVE = "abusive"


class ComplexityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ExpansionStrategy(str, Enum):
    NONE = "none"
    LEXICAL = "lexical"
    MULTI_QUERY = "multi_query"
    HYDE = "hyde"


class SearchStrategy(str, Enum):
    SINGLE_PASS_LEXICAL = "single-pass-lexical"
    SINGLE_PASS_SEMANTIC = "single-pass-semantic"
    HYBRID_MULTI_QUERY = "hybrid-multi-query"
    HYDE_EXPANDED = "hyde-expanded"
    PAGE_TARGETED = "page-targeted"


class PipelineState(str, Enum):
    PENDING = "pending"
    ANALYZING_CONTEXT = "analyzing-context"
    RETRIEVING = "retrieving"
    GENERATING = "generating"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"
    DEGRADED = "degraded"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatScope:
    dataroom_id: str
    link_id: str
    viewer_id: str


@dataclass(frozen=True)
class DocumentFilters:
    selected_doc_ids: tuple[str, ...] = ()
    selected_folder_ids: tuple[str, ...] = ()
    folder_doc_ids: tuple[str, ...] = ()

    @property
    def requested_doc_ids(self) -> frozenset[str]:
        return frozenset(self.selected_doc_ids) | frozenset(self.folder_doc_ids)


@dataclass(frozen=True)
class Query:
    text: str
    viewer_id: str
    dataroom_id: str
    link_id: str
    filters: DocumentFilters = DocumentFilters()
    session_id: str | None = None

    @property
    def scope(self) -> ChatScope:
        return ChatScope(
            dataroom_id=self.dataroom_id, link_id=self.link_id, viewer_id=self.viewer_id
        )


@dataclass
class ComplexityAnalysis:
    word_count: int
    complexity_score: float
    complexity_level: ComplexityLevel


@dataclass
class QueryExtraction:
    keywords: list[str]
    page_numbers: frozenset[int] = frozenset()


@dataclass
class QueryRewriting:
    expansion_strategy: ExpansionStrategy
    requires_hyde: bool
    context_window_tokens: int
    rewritten_queries: list[str] = field(default_factory=list)
    hyde_passage: str | None = None

    @property
    def rewritten_query_count(self) -> int:
        return len(self.rewritten_queries)


@dataclass
class Sanitization:
    sanitized_query: str
    was_modified: bool
    removed_patterns: list[str] = field(default_factory=list)


@dataclass
class QueryAnalysisResult:
    classification: Classification
    response: str | None = None
    intent: str | None = None
    language: str | None = None
    complexity: ComplexityAnalysis | None = None
    extraction: QueryExtraction | None = None
    rewriting: QueryRewriting | None = None
    sanitization: Sanitization | None = None

    def __post_init__(self) -> None:
        detail = (self.complexity, self.extraction, self.rewriting, self.sanitization)
        if self.classification is Classification.INFORMATIONAL:
            if any(part is None for part in detail):
                raise ValueError("informational analysis requires all analysis fields")
        else:
            if not self.response:
                raise ValueError("non-informational analysis requires a canned response")
            if any(part is not None for part in detail):
                raise ValueError("non-informational analysis carries only a classification")

    @property
    def is_informational(self) -> bool:
        return self.classification is Classification.INFORMATIONAL


@dataclass(frozen=True)
class StrategyDecision:
    strategy: SearchStrategy
    confidence: float
    reasoning: str
    rules_skipped: int


@dataclass(frozen=True)
class IndexedDocument:
    document_id: str
    name: str
    num_pages: int | None = None
    doc_type: str = "pdf"
    is_indexed: bool = True


@dataclass(frozen=True)
class AccessResult:
    documents: tuple[IndexedDocument, ...] = ()
    access_error: str | None = None


@dataclass
class ChatMessage:
    role: MessageRole
    content: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    message_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatSession:
    session_id: str
    scope: ChatScope
    title: str
    created_at: datetime
    updated_at: datetime
    message_count: int = 0
    last_message: ChatMessage | None = None


@dataclass(frozen=True)
class ChunkRecord:
    chunk_id: str
    document_id: str
    text: str
    page_number: int | None = None


@dataclass(frozen=True)
class SearchResult:
    chunk_id: str
    document_id: str
    content: str
    score: float
    page_number: int | None
    source_method: str  # "bm25", "vector", "hybrid", "page"


@dataclass(frozen=True)
class Source:
    document_id: str
    document_name: str
    chunk_id: str
    page_number: int | None
    score: float


@dataclass
class RetrievalOutcome:
    results: list[SearchResult]
    queries_attempted: int
    queries_failed: int = 0
    degraded_reason: str | None = None

    @property
    def degraded(self) -> bool:
        return self.degraded_reason is not None


class FailureKind(str, Enum):
    INVALID_QUERY = "invalid_query"
    ANALYSIS_TIMEOUT = "analysis_timeout"
    ACCESS_ERROR = "access_error"
    RETRIEVAL_MISS = "retrieval_miss"
    ORCHESTRATOR_ERROR = "orchestrator_error"
    PIPELINE_TIMEOUT = "pipeline_timeout"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True)
class Completed:
    value: Any = None


@dataclass(frozen=True)
class Canceled:
    stage: str


@dataclass(frozen=True)
class Failed:
    kind: FailureKind
    reason: str
    error: BaseException | None = None


StageOutcome = Completed | Canceled | Failed
