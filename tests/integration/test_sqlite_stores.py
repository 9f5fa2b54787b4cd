"""Integration tests for the SQLite access, session, telemetry and chunk stores."""

import asyncio
from pathlib import Path

import aiosqlite
import pytest

from dataroom_rag.config.constants import (
    ACCESS_NO_DOCUMENTS,
    ACCESS_NONE_INDEXED,
    ACCESS_UNAUTHORIZED,
)
from dataroom_rag.exceptions import SessionStoreError
from dataroom_rag.models.domain import ChatScope, ChunkRecord, DocumentFilters, MessageRole
from dataroom_rag.storage.sqlite_access_resolver import SQLiteAccessResolver
from dataroom_rag.storage.sqlite_chunk_store import SQLiteChunkStore
from dataroom_rag.storage.sqlite_session_store import SQLiteSessionStore
from dataroom_rag.storage.sqlite_telemetry_store import SQLiteTelemetryStore

SCOPE = ChatScope(dataroom_id="dr1", link_id="l1", viewer_id="v1")


async def _seed(db_path: str, statements: list[tuple[str, tuple]]) -> None:
    async with aiosqlite.connect(db_path) as db:
        for sql, params in statements:
            await db.execute(sql, params)
        await db.commit()


def _doc(document_id: str, name: str, status: str = "completed", dataroom_id: str = "dr1"):
    return (
        "INSERT INTO dataroom_documents (dataroom_id, document_id, name, indexing_status) "
        "VALUES (?, ?, ?, ?)",
        (dataroom_id, document_id, name, status),
    )


def _viewer(viewer_id: str):
    return ("INSERT INTO viewers (viewer_id) VALUES (?)", (viewer_id,))


def _group(viewer_id: str, group_id: str, allow_all: int = 0):
    return (
        "INSERT INTO viewer_groups (viewer_id, group_id, allow_all) VALUES (?, ?, ?)",
        (viewer_id, group_id, allow_all),
    )


def _grant(group_id: str, document_id: str, can_view: int = 1):
    return (
        "INSERT INTO group_document_access (group_id, document_id, can_view) VALUES (?, ?, ?)",
        (group_id, document_id, can_view),
    )


@pytest.fixture
async def resolver(tmp_path):
    db_path = str(Path(tmp_path) / "corpus.db")
    store = SQLiteAccessResolver(db_path, cache_ttl_seconds=60)
    await store.initialize()
    await _seed(
        db_path,
        [
            _doc("d-lease", "Lease.pdf"),
            _doc("d-fin", "Financials.xlsx"),
            _doc("d-draft", "Draft.docx", status="pending"),
            _doc("d-other", "Other room.pdf", dataroom_id="dr2"),
            _viewer("v-default"),
            _viewer("v-limited"),
            _viewer("v-admin"),
            _group("v-limited", "g-legal"),
            _grant("g-legal", "d-lease"),
            _grant("g-legal", "d-fin", can_view=0),
            _group("v-admin", "g-admin", allow_all=1),
        ],
    )
    store.db_path = db_path
    return store


async def _ids(resolver, viewer_id, filters=DocumentFilters()):
    result = await resolver.resolve_accessible_documents("dr1", viewer_id, filters)
    return sorted(d.document_id for d in result.documents), result.access_error


async def test_unknown_viewer_has_no_documents(resolver):
    assert await _ids(resolver, "v-missing") == ([], ACCESS_NO_DOCUMENTS)


async def test_viewer_without_groups_sees_all_indexed(resolver):
    assert await _ids(resolver, "v-default") == (["d-fin", "d-lease"], None)


async def test_group_grants_limit_access(resolver):
    assert await _ids(resolver, "v-limited") == (["d-lease"], None)


async def test_allow_all_group(resolver):
    assert await _ids(resolver, "v-admin") == (["d-fin", "d-lease"], None)


async def test_requested_subset_narrows_scope(resolver):
    ids = await _ids(resolver, "v-default", DocumentFilters(selected_doc_ids=("d-fin",)))
    assert ids == (["d-fin"], None)


async def test_unauthorized_request_is_reported(resolver):
    ids = await _ids(
        resolver, "v-limited", DocumentFilters(selected_doc_ids=("d-lease",), folder_doc_ids=("d-fin",))
    )
    assert ids == ([], ACCESS_UNAUTHORIZED.format(count=1))


async def test_only_unindexed_documents(tmp_path):
    db_path = str(Path(tmp_path) / "corpus.db")
    store = SQLiteAccessResolver(db_path)
    await store.initialize()
    await _seed(db_path, [_doc("d-draft", "Draft.docx", status="processing"), _viewer("v1")])
    result = await store.resolve_accessible_documents("dr1", "v1", DocumentFilters())
    assert result.access_error == ACCESS_NONE_INDEXED


async def test_document_list_is_cached_until_invalidated(resolver):
    assert (await _ids(resolver, "v-default"))[0] == ["d-fin", "d-lease"]
    await _seed(resolver.db_path, [_doc("d-new", "New.pdf")])
    assert (await _ids(resolver, "v-default"))[0] == ["d-fin", "d-lease"]
    resolver.invalidate("dr1", "v-default")
    assert (await _ids(resolver, "v-default"))[0] == ["d-fin", "d-lease", "d-new"]


@pytest.fixture
async def session_store(tmp_path):
    store = SQLiteSessionStore(str(Path(tmp_path) / "sessions.db"))
    await store.initialize()
    return store


async def test_session_reuse_requires_exact_scope(session_store):
    session_id = await session_store.get_or_create_session(SCOPE, "Lease questions")
    assert await session_store.get_or_create_session(SCOPE, "ignored", session_id) == session_id

    other = ChatScope(dataroom_id="dr1", link_id="l2", viewer_id="v1")
    assert await session_store.get_or_create_session(other, "t", session_id) != session_id
    assert await session_store.get_or_create_session(SCOPE, "t", "no-such-id") != session_id


async def test_messages_round_trip_in_order(session_store):
    session_id = await session_store.get_or_create_session(SCOPE, "")
    await session_store.append_message(session_id, MessageRole.USER, "What is the rent?")
    await session_store.append_message(
        session_id, MessageRole.ASSISTANT, "10k per month.", {"state": "completed"}
    )
    messages = await session_store.get_session_messages(session_id, SCOPE)
    assert [(m.role, m.content) for m in messages] == [
        (MessageRole.USER, "What is the rent?"),
        (MessageRole.ASSISTANT, "10k per month."),
    ]
    assert messages[1].metadata == {"state": "completed"}


async def test_messages_are_scope_checked(session_store):
    session_id = await session_store.get_or_create_session(SCOPE, "t")
    stranger = ChatScope(dataroom_id="dr1", link_id="l1", viewer_id="v2")
    with pytest.raises(SessionStoreError):
        await session_store.get_session_messages(session_id, stranger)


async def test_list_sessions_paginates_newest_first(session_store):
    ids = []
    for i in range(3):
        session_id = await session_store.get_or_create_session(SCOPE, f"Chat {i}")
        await session_store.append_message(session_id, MessageRole.USER, f"question {i}")
        ids.append(session_id)
        await asyncio.sleep(0.01)

    page, total, cursor = await session_store.list_sessions(SCOPE, limit=2)
    assert total == 3
    assert [s.session_id for s in page] == [ids[2], ids[1]]
    assert page[0].message_count == 1
    assert page[0].last_message.content == "question 2"
    assert cursor is not None

    rest, _, cursor = await session_store.list_sessions(SCOPE, limit=2, cursor=cursor)
    assert [s.session_id for s in rest] == [ids[0]]
    assert cursor is None


async def test_empty_title_gets_default(session_store):
    session_id = await session_store.get_or_create_session(SCOPE, "")
    sessions, _, _ = await session_store.list_sessions(SCOPE)
    assert sessions[0].session_id == session_id
    assert sessions[0].title.startswith("Chat ")


async def test_telemetry_snapshots(tmp_path):
    store = SQLiteTelemetryStore(str(Path(tmp_path) / "telemetry.db"))
    await store.initialize()
    snapshot = {
        "trace_id": "t1",
        "timestamp": "2026-01-01T00:00:00+00:00",
        "state": "completed",
        "search_strategy": "single-pass-lexical",
        "total_time_ms": 812.5,
        "spans": [{"name": "retrieval", "duration_ms": 40.1}],
    }
    await store.save_snapshot(snapshot, session_id="s1")
    assert (await store.get_snapshot("t1"))["spans"][0]["name"] == "retrieval"
    assert await store.get_snapshot("missing") is None
    assert [s["trace_id"] for s in await store.get_recent()] == ["t1"]


async def test_chunk_store(tmp_path):
    store = SQLiteChunkStore(str(Path(tmp_path) / "corpus.db"))
    await store.initialize()
    chunks = [ChunkRecord(f"c{i}", "d-lease", f"chunk {i}", page_number=i + 1) for i in range(3)]
    await store.save_chunks(chunks)
    assert await store.count_chunks() == 3
    found = await store.get_chunks_by_ids(["c1", "missing"])
    assert list(found) == ["c1"]
    assert found["c1"].page_number == 2
    assert [c.chunk_id for c in await store.get_all_chunks()] == ["c0", "c1", "c2"]
    assert await store.get_chunks_by_ids([]) == {}
