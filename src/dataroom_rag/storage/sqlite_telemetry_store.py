"""SQLite-backed pipeline telemetry store for observability."""

from __future__ import annotations

import json
from typing import Any, Mapping

import aiosqlite

from dataroom_rag.storage.migrations import initialize_telemetry_db


class SQLiteTelemetryStore:
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    async def initialize(self) -> None:
        await initialize_telemetry_db(self._db_path)

    async def save_snapshot(self, snapshot: Mapping[str, Any], session_id: str | None = None) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                "INSERT OR REPLACE INTO pipeline_telemetry "
                "(trace_id, session_id, timestamp, state, search_strategy, fallback_reason, total_time_ms, data) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    snapshot["trace_id"],
                    session_id,
                    snapshot["timestamp"],
                    snapshot.get("state", "pending"),
                    snapshot.get("search_strategy"),
                    snapshot.get("fallback_reason"),
                    snapshot.get("total_time_ms", 0.0),
                    json.dumps(dict(snapshot), default=str),
                ),
            )
            await db.commit()

    async def get_snapshot(self, trace_id: str) -> dict[str, Any] | None:
        async with aiosqlite.connect(self._db_path) as db:
            async with db.execute(
                "SELECT data FROM pipeline_telemetry WHERE trace_id = ?", (trace_id,)
            ) as cursor:
                row = await cursor.fetchone()
                if row is None:
                    return None
                return json.loads(row[0])

    async def get_recent(self, limit: int = 100) -> list[dict[str, Any]]:
        async with aiosqlite.connect(self._db_path) as db:
            async with db.execute(
                "SELECT data FROM pipeline_telemetry ORDER BY timestamp DESC LIMIT ?", (limit,)
            ) as cursor:
                rows = await cursor.fetchall()
                return [json.loads(row[0]) for row in rows]
