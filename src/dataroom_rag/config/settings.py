"""Central configuration via Pydantic Settings. All values driven by env vars."""

from __future__ import annotations

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # API Keys
    openai_api_key: str = ""
    google_api_key: str = ""

    # Deadlines
    request_timeout_ms: int = 60000
    analysis_timeout_ms: int = 10000

    # Embedding
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536

    # LLM / Gemini
    gemini_model: str = "gemini-2.0-flash"
    gemini_temperature: float = 0.1
    gemini_max_tokens: int = 2048
    rewrite_enabled: bool = True

    # Search (per strategy profile)
    fast_top_k: int = 8
    fast_similarity_threshold: float = 0.3
    fast_query_timeout_ms: int = 45000
    standard_top_k: int = 12
    standard_similarity_threshold: float = 0.25
    standard_query_timeout_ms: int = 50000
    expanded_top_k: int = 20
    expanded_similarity_threshold: float = 0.2
    expanded_query_timeout_ms: int = 55000
    rrf_k: int = 60

    # Refinement (standard and expanded profiles only)
    rerank_enabled: bool = True
    reranker_model: str = "cross-encoder/ms-marco-MiniLM-L-6-v2"
    grading_enabled: bool = True
    grading_relevance_threshold: float = 0.05
    grading_concurrency: int = 3
    compression_enabled: bool = True
    compression_max_tokens: int = 3000

    # Query variants per strategy profile
    max_fast_queries: int = 3
    max_standard_queries: int = 15
    max_expanded_queries: int = 20

    # Strategy selection
    low_complexity_threshold: float = 0.35
    high_complexity_threshold: float = 0.65
    small_corpus_max_documents: int = 10
    min_multi_query_variants: int = 2
    min_multi_query_words: int = 4

    # Access cache
    access_cache_ttl_seconds: int = 900
    access_cache_max_entries: int = 200

    # Storage paths
    corpus_db_path: str = "data/corpus.db"
    session_db_path: str = "data/sessions.db"
    telemetry_db_path: str = "data/telemetry.db"
    faiss_index_path: str = "data/faiss_index"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Logging
    log_level: str = "INFO"
    json_logs: bool = True

    model_config = {"env_file": ".env", "env_prefix": "RAG_"}

    @model_validator(mode="after")
    def _check_deadlines(self) -> "Settings":
        if self.analysis_timeout_ms <= 0 or self.request_timeout_ms <= 0:
            raise ValueError("deadlines must be positive")
        if self.analysis_timeout_ms >= self.request_timeout_ms:
            raise ValueError(
                "analysis_timeout_ms must be strictly shorter than request_timeout_ms"
            )
        return self

    @property
    def request_timeout_s(self) -> float:
        return self.request_timeout_ms / 1000

    @property
    def analysis_timeout_s(self) -> float:
        return self.analysis_timeout_ms / 1000
