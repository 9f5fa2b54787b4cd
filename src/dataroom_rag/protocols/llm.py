"""Protocol for generation providers."""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Protocol

from pydantic import BaseModel


@dataclass
class GenerationRequest:
    system: str
    messages: list[tuple[str, str]]  # (role, content), oldest first
    temperature: float = 0.1
    max_tokens: int = 2048
    usage: dict[str, int] = field(default_factory=dict)


class GenerationProvider(Protocol):
    def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        """Yield text deltas. Closing the iterator releases the upstream call."""
        ...

    async def generate_structured(
        self,
        prompt: str,
        response_schema: type[BaseModel],
        system: str | None = None,
    ) -> BaseModel: ...
