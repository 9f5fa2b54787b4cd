"""Protocol for pipeline telemetry persistence."""

from __future__ import annotations

from typing import Any, Mapping, Protocol


class TelemetryStore(Protocol):
    async def save_snapshot(
        self, snapshot: Mapping[str, Any], session_id: str | None = None
    ) -> None: ...
