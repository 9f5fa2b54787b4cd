"""Per-request pipeline telemetry with span timing."""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping
from uuid import uuid4

from dataroom_rag.models.domain import (
    ComplexityAnalysis,
    FailureKind,
    PipelineState,
    StrategyDecision,
)


@dataclass
class Span:
    name: str
    start_ms: float
    end_ms: float = 0.0
    metadata: dict = field(default_factory=dict)

    @property
    def duration_ms(self) -> float:
        return self.end_ms - self.start_ms


class MetadataTracker:
    """Mutable accumulator for one request's telemetry.

    Built once at request entry and passed explicitly to every stage.
    ``flush()`` is the final step: it freezes a snapshot, and later
    writes to the tracker are ignored.
    """

    def __init__(self, trace_id: str | None = None) -> None:
        self.trace_id = trace_id or str(uuid4())
        self.spans: list[Span] = []
        self.start_time = time.monotonic()
        self._epoch = time.time()
        self._fields: dict[str, Any] = {"state": PipelineState.PENDING.value}
        self._flushed = False

    @classmethod
    def create(cls) -> "MetadataTracker":
        return cls()

    @contextmanager
    def span(self, name: str, **metadata):
        s = Span(
            name=name,
            start_ms=(time.monotonic() - self.start_time) * 1000,
            metadata=metadata,
        )
        try:
            yield s
        finally:
            s.end_ms = (time.monotonic() - self.start_time) * 1000
            if not self._flushed:
                self.spans.append(s)

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.start_time) * 1000

    @property
    def flushed(self) -> bool:
        return self._flushed

    @property
    def state(self) -> PipelineState:
        return PipelineState(self._fields["state"])

    def _set(self, **values: Any) -> None:
        if self._flushed:
            return
        self._fields.update({k: v for k, v in values.items() if v is not None})

    def set_state(self, state: PipelineState) -> None:
        # degraded is sticky until a terminal state overrides it
        if self.state is PipelineState.DEGRADED and state in (
            PipelineState.GENERATING,
            PipelineState.STREAMING,
        ):
            return
        self._set(state=state.value)

    def set_query_analysis(
        self,
        classification: str,
        intent: str | None = None,
        complexity: ComplexityAnalysis | None = None,
    ) -> None:
        self._set(
            query_type=classification,
            intent=intent,
            complexity_level=complexity.complexity_level.value if complexity else None,
            complexity_score=round(complexity.complexity_score, 4) if complexity else None,
        )

    def set_search_strategy(self, decision: StrategyDecision) -> None:
        self._set(
            search_strategy=decision.strategy.value,
            strategy_confidence=round(decision.confidence, 4),
            strategy_reasoning=decision.reasoning,
        )

    def set_retrieval(
        self, chunk_ids: list[str], document_ids: list[str], page_numbers: list[int]
    ) -> None:
        self._set(
            chunk_ids=list(chunk_ids),
            document_ids=sorted(set(document_ids)),
            page_ranges=[str(p) for p in sorted(set(page_numbers))],
        )

    def mark_degraded(self, reason: str) -> None:
        self._set(degraded_reason=reason)
        self.set_state(PipelineState.DEGRADED)

    def set_fallback(self, kind: FailureKind | None, message: str) -> None:
        self._set(fallback_reason=kind.value if kind else "unspecified", fallback_message=message)

    def set_error(self, error_type: str, message: str, is_retryable: bool = False) -> None:
        self._set(error_type=error_type, error_message=message, is_retryable=is_retryable)

    def set_token_usage(self, input_tokens: int, output_tokens: int) -> None:
        self._set(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
        )

    def get(self, key: str, default: Any = None) -> Any:
        return self._fields.get(key, default)

    def flush(self) -> Mapping[str, Any] | None:
        """Freeze and return the snapshot. Returns ``None`` on repeat calls."""
        if self._flushed:
            return None
        snapshot = dict(self._fields)
        snapshot["trace_id"] = self.trace_id
        snapshot["timestamp"] = datetime.fromtimestamp(self._epoch, tz=timezone.utc).isoformat()
        snapshot["total_time_ms"] = round(self.elapsed_ms, 2)
        snapshot["spans"] = [
            {
                "name": s.name,
                "start_ms": round(s.start_ms, 2),
                "end_ms": round(s.end_ms, 2),
                "duration_ms": round(s.duration_ms, 2),
                **s.metadata,
            }
            for s in self.spans
        ]
        self._flushed = True
        return MappingProxyType(snapshot)
