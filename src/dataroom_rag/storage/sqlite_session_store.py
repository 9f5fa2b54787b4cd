"""SQLite-backed chat session and message store."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import aiosqlite

from dataroom_rag.exceptions import SessionStoreError
from dataroom_rag.models.domain import ChatMessage, ChatScope, ChatSession, MessageRole
from dataroom_rag.observability.logger import get_logger
from dataroom_rag.storage.migrations import initialize_session_db

logger = get_logger("session_store")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def default_session_title() -> str:
    return f"Chat {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')}"


class SQLiteSessionStore:
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    async def initialize(self) -> None:
        await initialize_session_db(self._db_path)

    async def get_or_create_session(
        self, scope: ChatScope, title: str, session_id: str | None = None
    ) -> str:
        """Reuse ``session_id`` only when its scope matches exactly; otherwise create one."""
        try:
            async with aiosqlite.connect(self._db_path) as db:
                db.row_factory = aiosqlite.Row
                if session_id:
                    async with db.execute(
                        "SELECT dataroom_id, link_id, viewer_id FROM chat_sessions WHERE session_id = ?",
                        (session_id,),
                    ) as cursor:
                        row = await cursor.fetchone()
                    if row is not None and (
                        row["dataroom_id"] == scope.dataroom_id
                        and row["link_id"] == scope.link_id
                        and row["viewer_id"] == scope.viewer_id
                    ):
                        return session_id
                    logger.info("session_scope_mismatch", session_id=session_id)

                new_id = str(uuid4())
                now = _now()
                await db.execute(
                    "INSERT INTO chat_sessions "
                    "(session_id, dataroom_id, link_id, viewer_id, title, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        new_id,
                        scope.dataroom_id,
                        scope.link_id,
                        scope.viewer_id,
                        title or default_session_title(),
                        now,
                        now,
                    ),
                )
                await db.commit()
        except aiosqlite.Error as e:
            raise SessionStoreError(f"get_or_create_session failed: {e}") from e
        logger.info("session_created", session_id=new_id)
        return new_id

    async def append_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        message_id = str(uuid4())
        now = _now()
        try:
            async with aiosqlite.connect(self._db_path) as db:
                await db.execute(
                    "INSERT INTO chat_messages (message_id, session_id, role, content, metadata, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        message_id,
                        session_id,
                        role.value,
                        content,
                        json.dumps(metadata) if metadata else None,
                        now,
                    ),
                )
                await db.execute(
                    "UPDATE chat_sessions SET updated_at = ? WHERE session_id = ?",
                    (now, session_id),
                )
                await db.commit()
        except aiosqlite.Error as e:
            raise SessionStoreError(f"append_message failed: {e}") from e
        return message_id

    async def get_session_messages(self, session_id: str, scope: ChatScope) -> list[ChatMessage]:
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT session_id FROM chat_sessions "
                "WHERE session_id = ? AND dataroom_id = ? AND link_id = ? AND viewer_id = ?",
                (session_id, scope.dataroom_id, scope.link_id, scope.viewer_id),
            ) as cursor:
                if await cursor.fetchone() is None:
                    raise SessionStoreError("Session not found or access denied")
            async with db.execute(
                "SELECT * FROM chat_messages WHERE session_id = ? ORDER BY created_at, rowid",
                (session_id,),
            ) as cursor:
                rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    async def list_sessions(
        self, scope: ChatScope, limit: int = 20, cursor: str | None = None
    ) -> tuple[list[ChatSession], int, str | None]:
        """Most recently updated first. Returns (sessions, total, next_cursor)."""
        params: list[Any] = [scope.dataroom_id, scope.link_id, scope.viewer_id]
        where = "s.dataroom_id = ? AND s.link_id = ? AND s.viewer_id = ?"
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"SELECT COUNT(*) AS total FROM chat_sessions s WHERE {where}", params
            ) as cur:
                total = (await cur.fetchone())["total"]

            page_where = where
            page_params = list(params)
            if cursor:
                page_where += " AND s.updated_at < ?"
                page_params.append(cursor)
            async with db.execute(
                f"SELECT s.*, (SELECT COUNT(*) FROM chat_messages m WHERE m.session_id = s.session_id) "
                f"AS message_count FROM chat_sessions s WHERE {page_where} "
                f"ORDER BY s.updated_at DESC LIMIT ?",
                [*page_params, limit],
            ) as cur:
                rows = await cur.fetchall()

            sessions = []
            for row in rows:
                async with db.execute(
                    "SELECT * FROM chat_messages WHERE session_id = ? "
                    "ORDER BY created_at DESC, rowid DESC LIMIT 1",
                    (row["session_id"],),
                ) as cur:
                    last = await cur.fetchone()
                sessions.append(
                    ChatSession(
                        session_id=row["session_id"],
                        scope=scope,
                        title=row["title"],
                        created_at=datetime.fromisoformat(row["created_at"]),
                        updated_at=datetime.fromisoformat(row["updated_at"]),
                        message_count=row["message_count"],
                        last_message=self._row_to_message(last) if last else None,
                    )
                )

        next_cursor = rows[-1]["updated_at"] if rows and len(rows) == limit else None
        return sessions, total, next_cursor

    @staticmethod
    def _row_to_message(row: aiosqlite.Row) -> ChatMessage:
        return ChatMessage(
            role=MessageRole(row["role"]),
            content=row["content"],
            created_at=datetime.fromisoformat(row["created_at"]),
            message_id=row["message_id"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
        )
