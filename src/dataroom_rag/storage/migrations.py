"""Idempotent database schema creation."""

from __future__ import annotations

import aiosqlite

DATAROOM_DOCUMENTS_TABLE = """
CREATE TABLE IF NOT EXISTS dataroom_documents (
    dataroom_id TEXT NOT NULL,
    document_id TEXT NOT NULL,
    name TEXT NOT NULL,
    doc_type TEXT NOT NULL DEFAULT 'pdf',
    num_pages INTEGER,
    indexing_status TEXT NOT NULL DEFAULT 'pending',
    PRIMARY KEY (dataroom_id, document_id)
)
"""

VIEWERS_TABLE = """
CREATE TABLE IF NOT EXISTS viewers (
    viewer_id TEXT PRIMARY KEY,
    email TEXT
)
"""

VIEWER_GROUPS_TABLE = """
CREATE TABLE IF NOT EXISTS viewer_groups (
    viewer_id TEXT NOT NULL,
    group_id TEXT NOT NULL,
    allow_all INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (viewer_id, group_id)
)
"""

GROUP_DOCUMENT_ACCESS_TABLE = """
CREATE TABLE IF NOT EXISTS group_document_access (
    group_id TEXT NOT NULL,
    document_id TEXT NOT NULL,
    can_view INTEGER NOT NULL DEFAULT 1,
    PRIMARY KEY (group_id, document_id)
)
"""

CHUNKS_TABLE = """
CREATE TABLE IF NOT EXISTS chunks (
    chunk_id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL,
    text TEXT NOT NULL,
    page_number INTEGER,
    chunk_index INTEGER NOT NULL DEFAULT 0
)
"""

CHUNKS_DOC_INDEX = """
CREATE INDEX IF NOT EXISTS idx_chunks_document_id ON chunks(document_id)
"""

CHAT_SESSIONS_TABLE = """
CREATE TABLE IF NOT EXISTS chat_sessions (
    session_id TEXT PRIMARY KEY,
    dataroom_id TEXT NOT NULL,
    link_id TEXT NOT NULL,
    viewer_id TEXT NOT NULL,
    title TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""

CHAT_SESSIONS_SCOPE_INDEX = """
CREATE INDEX IF NOT EXISTS idx_chat_sessions_scope
ON chat_sessions(dataroom_id, link_id, viewer_id, updated_at)
"""

CHAT_MESSAGES_TABLE = """
CREATE TABLE IF NOT EXISTS chat_messages (
    message_id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    metadata TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (session_id) REFERENCES chat_sessions(session_id)
)
"""

CHAT_MESSAGES_SESSION_INDEX = """
CREATE INDEX IF NOT EXISTS idx_chat_messages_session ON chat_messages(session_id, created_at)
"""

PIPELINE_TELEMETRY_TABLE = """
CREATE TABLE IF NOT EXISTS pipeline_telemetry (
    trace_id TEXT PRIMARY KEY,
    session_id TEXT,
    timestamp TEXT NOT NULL,
    state TEXT NOT NULL,
    search_strategy TEXT,
    fallback_reason TEXT,
    total_time_ms REAL NOT NULL,
    data TEXT NOT NULL DEFAULT '{}'
)
"""

PIPELINE_TELEMETRY_TIMESTAMP_INDEX = """
CREATE INDEX IF NOT EXISTS idx_pipeline_telemetry_timestamp ON pipeline_telemetry(timestamp)
"""


async def initialize_corpus_db(db_path: str) -> None:
    async with aiosqlite.connect(db_path) as db:
        await db.execute(DATAROOM_DOCUMENTS_TABLE)
        await db.execute(VIEWERS_TABLE)
        await db.execute(VIEWER_GROUPS_TABLE)
        await db.execute(GROUP_DOCUMENT_ACCESS_TABLE)
        await db.execute(CHUNKS_TABLE)
        await db.execute(CHUNKS_DOC_INDEX)
        await db.commit()


async def initialize_session_db(db_path: str) -> None:
    async with aiosqlite.connect(db_path) as db:
        await db.execute(CHAT_SESSIONS_TABLE)
        await db.execute(CHAT_SESSIONS_SCOPE_INDEX)
        await db.execute(CHAT_MESSAGES_TABLE)
        await db.execute(CHAT_MESSAGES_SESSION_INDEX)
        await db.commit()


async def initialize_telemetry_db(db_path: str) -> None:
    async with aiosqlite.connect(db_path) as db:
        await db.execute(PIPELINE_TELEMETRY_TABLE)
        await db.execute(PIPELINE_TELEMETRY_TIMESTAMP_INDEX)
        await db.commit()
