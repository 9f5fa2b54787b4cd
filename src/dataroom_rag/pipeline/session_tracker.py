"""Best-effort conversation and telemetry persistence on detached tasks."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Mapping
from typing import Any

from dataroom_rag.models.domain import ChatScope, MessageRole
from dataroom_rag.observability.logger import get_logger
from dataroom_rag.protocols.session_store import SessionStore
from dataroom_rag.protocols.telemetry_store import TelemetryStore

logger = get_logger("session_tracker")

TITLE_MAX_CHARS = 60


class SessionTracker:
    """Owns the detached write tasks of every in-flight request.

    Nothing on the response path awaits these writes. Their failures are
    logged and dropped. ``drain()`` waits for whatever is still pending,
    for shutdown and tests.
    """

    def __init__(
        self, store: SessionStore | None, telemetry_store: TelemetryStore | None = None
    ) -> None:
        self._store = store
        self._telemetry_store = telemetry_store
        self._tasks: set[asyncio.Task] = set()

    @property
    def store(self) -> SessionStore | None:
        return self._store

    @property
    def telemetry_store(self) -> TelemetryStore | None:
        return self._telemetry_store

    def start_turn(
        self, scope: ChatScope, question: str, session_id: str | None = None
    ) -> "ChatTurn":
        return ChatTurn(self, scope, question, session_id)

    def spawn(self, work: Awaitable[Any], name: str) -> asyncio.Task:
        task = asyncio.ensure_future(self._guard(work, name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = None) -> None:
        if not self._tasks:
            return
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning("session_writes_pending", count=len(pending))

    @staticmethod
    async def _guard(work: Awaitable[Any], name: str) -> Any:
        try:
            return await work
        except Exception:
            logger.warning("session_write_failed", operation=name, exc_info=True)
            return None


class ChatTurn:
    """One request's writes, applied in order: session, user message, assistant message."""

    def __init__(
        self,
        tracker: SessionTracker,
        scope: ChatScope,
        question: str,
        requested_session_id: str | None,
    ) -> None:
        self._tracker = tracker
        self._scope = scope
        self._question = question
        self._requested_session_id = requested_session_id
        self._open_task = tracker.spawn(self._open(), "open_session")

    async def _open(self) -> str | None:
        store = self._tracker.store
        if store is None:
            return self._requested_session_id
        title = self._question.strip()[:TITLE_MAX_CHARS]
        try:
            session_id = await store.get_or_create_session(
                self._scope, title, self._requested_session_id
            )
        except Exception:
            logger.warning("session_create_failed", dataroom_id=self._scope.dataroom_id, exc_info=True)
            return None
        try:
            await store.append_message(session_id, MessageRole.USER, self._question)
        except Exception:
            logger.warning("user_message_append_failed", session_id=session_id, exc_info=True)
        return session_id

    @property
    def known_session_id(self) -> str | None:
        if self._open_task.done() and not self._open_task.cancelled():
            return self._open_task.result()
        return None

    async def session_id(self, wait_s: float) -> str | None:
        """The session id if it becomes known within ``wait_s``. Never raises."""
        if not self._open_task.done():
            await asyncio.wait({self._open_task}, timeout=max(wait_s, 0.0))
        return self.known_session_id

    def record_assistant(self, content: str, metadata: Mapping[str, Any] | None = None) -> None:
        self._tracker.spawn(self._append_assistant(content, metadata), "append_assistant")

    def persist_telemetry(self, snapshot: Mapping[str, Any]) -> None:
        if self._tracker.telemetry_store is None:
            return
        self._tracker.spawn(self._save_telemetry(snapshot), "save_telemetry")

    async def _append_assistant(self, content: str, metadata: Mapping[str, Any] | None) -> None:
        session_id = await self._open_task
        store = self._tracker.store
        if session_id is None or store is None:
            return
        await store.append_message(
            session_id,
            MessageRole.ASSISTANT,
            content,
            dict(metadata) if metadata else None,
        )

    async def _save_telemetry(self, snapshot: Mapping[str, Any]) -> None:
        session_id = await self._open_task
        await self._tracker.telemetry_store.save_snapshot(snapshot, session_id)
